from __future__ import annotations

import argparse
import io
import logging
import queue
import threading
import webbrowser
from datetime import date, datetime
from pathlib import Path
from tkinter import filedialog, messagebox

import customtkinter as ctk
from PIL import Image

from . import __version__
from .config import configure_logging
from .controller import AppController
from .errors import CapacityExceeded, DecodeFailure
from .imaging import DownscaledImage, decode_data_uri, downscale_file, downscale_in_background
from .models import MOODS, ChatMessage, DueDate, Goal, JournalEntry, MessageRole, VisionItem

logger = logging.getLogger(__name__)

NO_MOOD = "No mood"
IMAGE_FILETYPES = [("Images", "*.png *.jpg *.jpeg *.gif *.bmp *.webp"), ("All files", "*.*")]
ACCENT = "#14b8a6"
LAVENDER = "#a78bfa"
CORK = "#d8b98c"
MUTED = "#94a3b8"
TILE_SIZE = 220


class ClarityComfortApp(ctk.CTk):
    def __init__(self, controller: AppController):
        super().__init__()
        self.controller = controller
        self.events: queue.Queue[tuple[str, object]] = queue.Queue()
        self._closing = False
        self._affirmation_playing = False
        self._affirmation_loading = False
        self._uploading = False
        self._chat_image: str | None = None
        self._image_refs: dict[str, ctk.CTkImage] = {}
        self._caption_entries: dict[str, ctk.CTkEntry] = {}

        self.title("Clarity & Comfort")
        width = int(controller.config.get("window_width", 1280))
        height = int(controller.config.get("window_height", 860))
        self.geometry(f"{width}x{height}")
        self.minsize(1000, 720)
        ctk.set_appearance_mode(str(controller.config.get("appearance_mode", "light")))
        ctk.set_default_color_theme("blue")

        self.affirmation_var = ctk.StringVar(value="Loading a gentle thought for you...")
        self.vision_count_var = ctk.StringVar(value="")
        self.status_var = ctk.StringVar(value="One breath at a time.")

        self._build_shell()
        self._refresh_journal()
        self._refresh_goals()
        self._render_messages()
        self._refresh_vision_board()
        self._load_affirmation(force=False)

        self.protocol("WM_DELETE_WINDOW", self._on_close)
        self.after(200, self._drain_events)

    # Layout

    def _build_shell(self) -> None:
        header = ctk.CTkFrame(self, height=60, corner_radius=0, fg_color="white")
        header.pack(fill="x")
        ctk.CTkLabel(
            header,
            text="Clarity & Comfort",
            font=ctk.CTkFont(family="Georgia", size=22, weight="bold"),
            text_color="#334155",
        ).pack(side="left", padx=24, pady=14)
        ctk.CTkButton(
            header,
            text="Settings",
            command=self._show_settings,
            width=90,
            fg_color="transparent",
            text_color="#64748b",
            hover_color="#f1f5f9",
        ).pack(side="right", padx=16)
        ctk.CTkLabel(header, textvariable=self.status_var, text_color=MUTED).pack(side="right", padx=8)

        self._build_affirmation_card()

        self.view_switch = ctk.CTkSegmentedButton(
            self,
            values=["My Day", "Vision Board"],
            command=self._show_view,
        )
        self.view_switch.pack(pady=(4, 12))
        self.view_switch.set("My Day")

        self.content = ctk.CTkFrame(self, fg_color="transparent")
        self.content.pack(fill="both", expand=True, padx=24, pady=(0, 16))

        self.day_view = ctk.CTkFrame(self.content, fg_color="transparent")
        self.day_view.columnconfigure(0, weight=5)
        self.day_view.columnconfigure(1, weight=7)
        self.day_view.rowconfigure(0, weight=3)
        self.day_view.rowconfigure(1, weight=2)
        self._build_journal(self.day_view)
        self._build_goals(self.day_view)
        self._build_companion(self.day_view)

        self.vision_view = ctk.CTkFrame(self.content, fg_color=CORK, corner_radius=16)
        self._build_vision_board(self.vision_view)

        self._show_view("My Day")

    def _show_view(self, name: str) -> None:
        self._flush_captions()
        if name == "Vision Board":
            self.day_view.pack_forget()
            self.vision_view.pack(fill="both", expand=True)
        else:
            self.vision_view.pack_forget()
            self.day_view.pack(fill="both", expand=True)

    def _build_affirmation_card(self) -> None:
        card = ctk.CTkFrame(self, corner_radius=18, fg_color="#ede9fe")
        card.pack(fill="x", padx=24, pady=16)
        ctk.CTkLabel(
            card,
            text="TODAY'S AFFIRMATION",
            font=ctk.CTkFont(size=11, weight="bold"),
            text_color="#7c3aed",
        ).pack(pady=(16, 4))
        ctk.CTkLabel(
            card,
            textvariable=self.affirmation_var,
            font=ctk.CTkFont(family="Georgia", size=20, slant="italic"),
            text_color="#334155",
            wraplength=820,
            justify="center",
        ).pack(padx=24, pady=6)

        buttons = ctk.CTkFrame(card, fg_color="transparent")
        buttons.pack(pady=(4, 16))
        self.listen_button = ctk.CTkButton(buttons, text="Listen", width=110, command=self._play_affirmation)
        self.listen_button.pack(side="left", padx=6)
        self.new_card_button = ctk.CTkButton(
            buttons,
            text="New Card",
            width=110,
            fg_color="white",
            text_color="#475569",
            hover_color="#f8fafc",
            command=lambda: self._load_affirmation(force=True),
        )
        self.new_card_button.pack(side="left", padx=6)

    def _build_journal(self, parent: ctk.CTkFrame) -> None:
        frame = ctk.CTkFrame(parent, corner_radius=16, fg_color="white")
        frame.grid(row=0, column=0, sticky="nsew", padx=(0, 12), pady=(0, 12))
        ctk.CTkLabel(
            frame,
            text="My Clarity Journal",
            font=ctk.CTkFont(size=17, weight="bold"),
        ).pack(anchor="w", padx=16, pady=(14, 6))

        self.journal_input = ctk.CTkTextbox(frame, height=90, wrap="word")
        self.journal_input.pack(fill="x", padx=16)
        actions = ctk.CTkFrame(frame, fg_color="transparent")
        actions.pack(fill="x", padx=16, pady=8)
        self.mood_var = ctk.StringVar(value=NO_MOOD)
        ctk.CTkOptionMenu(actions, variable=self.mood_var, values=[NO_MOOD, *MOODS], width=120).pack(side="left")
        ctk.CTkButton(actions, text="Save Note", width=110, fg_color=ACCENT, command=self._save_journal_entry).pack(
            side="right"
        )

        self.journal_list = ctk.CTkScrollableFrame(frame, fg_color="transparent")
        self.journal_list.pack(fill="both", expand=True, padx=8, pady=(0, 10))

    def _build_goals(self, parent: ctk.CTkFrame) -> None:
        frame = ctk.CTkFrame(parent, corner_radius=16, fg_color="white")
        frame.grid(row=1, column=0, sticky="nsew", padx=(0, 12))
        top = ctk.CTkFrame(frame, fg_color="transparent")
        top.pack(fill="x", padx=16, pady=(14, 4))
        ctk.CTkLabel(top, text="Small Wins & Goals", font=ctk.CTkFont(size=17, weight="bold")).pack(side="left")
        ctk.CTkButton(top, text="+", width=32, fg_color=LAVENDER, command=self._open_goal_dialog).pack(side="right")

        self.goal_list = ctk.CTkScrollableFrame(frame, fg_color="transparent")
        self.goal_list.pack(fill="both", expand=True, padx=8, pady=(0, 10))

    def _build_companion(self, parent: ctk.CTkFrame) -> None:
        frame = ctk.CTkFrame(parent, corner_radius=16, fg_color="white")
        frame.grid(row=0, column=1, rowspan=2, sticky="nsew")
        ctk.CTkLabel(
            frame,
            text="Companion",
            font=ctk.CTkFont(size=17, weight="bold"),
        ).pack(anchor="w", padx=16, pady=(14, 6))

        self.chat_list = ctk.CTkScrollableFrame(frame, fg_color="#f8fafc")
        self.chat_list.pack(fill="both", expand=True, padx=12)

        self.chat_attachment_label = ctk.CTkLabel(frame, text="", text_color=MUTED)
        self.chat_attachment_label.pack(anchor="w", padx=16)

        bar = ctk.CTkFrame(frame, fg_color="transparent")
        bar.pack(fill="x", padx=12, pady=12)
        ctk.CTkButton(bar, text="Photo", width=64, fg_color="#e2e8f0", text_color="#475569",
                      hover_color="#cbd5e1", command=self._attach_chat_image).pack(side="left")
        self.chat_input = ctk.CTkEntry(bar, placeholder_text="Type your question or message here...")
        self.chat_input.pack(side="left", fill="x", expand=True, padx=8)
        self.chat_input.bind("<Return>", lambda _event: self._send_chat())
        self.send_button = ctk.CTkButton(bar, text="Send", width=72, fg_color=ACCENT, command=self._send_chat)
        self.send_button.pack(side="right")

    def _build_vision_board(self, parent: ctk.CTkFrame) -> None:
        top = ctk.CTkFrame(parent, fg_color="transparent")
        top.pack(fill="x", padx=20, pady=(16, 8))
        ctk.CTkLabel(
            top,
            text="My Vision",
            font=ctk.CTkFont(family="Georgia", size=22, weight="bold"),
            text_color="#3f2d1c",
        ).pack(side="left")
        ctk.CTkLabel(top, textvariable=self.vision_count_var, text_color="#5b4630").pack(side="left", padx=12)
        self.pin_button = ctk.CTkButton(top, text="Pin Photo", width=120, fg_color="#7c3aed", command=self._pin_photo)
        self.pin_button.pack(side="right")

        self.vision_grid = ctk.CTkFrame(parent, fg_color="transparent")
        self.vision_grid.pack(fill="both", expand=True, padx=20, pady=(0, 20))
        for index in range(3):
            self.vision_grid.columnconfigure(index, weight=1, uniform="vision")
            self.vision_grid.rowconfigure(index, weight=1, uniform="vision")

    # Affirmation

    def _load_affirmation(self, force: bool) -> None:
        if self._affirmation_loading:
            return
        self._affirmation_loading = True
        self._update_affirmation_buttons()
        if not force:
            cached = self.controller.affirmations.cached()
            if cached is not None:
                self.events.put(("affirmation", cached.text))
                return
        self.affirmation_var.set("Loading a gentle thought for you...")

        def _worker() -> None:
            if force:
                text = self.controller.new_affirmation()
            else:
                text = self.controller.todays_affirmation()
            self.events.put(("affirmation", text))

        threading.Thread(target=_worker, name="clarity-affirmation", daemon=True).start()

    def _play_affirmation(self) -> None:
        if self._affirmation_playing or self._affirmation_loading:
            return
        self._affirmation_playing = True
        self._update_affirmation_buttons()
        text = self.affirmation_var.get()

        def _worker() -> None:
            audio = self.controller.gateway.synthesize_speech(text)
            if not audio:
                self.events.put(("affirmation_audio_done", None))
                return
            self.controller.player.play(audio, on_finished=lambda: self.events.put(("affirmation_audio_done", None)))

        threading.Thread(target=_worker, name="clarity-affirmation-tts", daemon=True).start()

    def _update_affirmation_buttons(self) -> None:
        busy = self._affirmation_loading or self._affirmation_playing
        self.listen_button.configure(
            state="disabled" if busy else "normal",
            text="Listening..." if self._affirmation_playing else "Listen",
        )
        self.new_card_button.configure(state="disabled" if self._affirmation_loading else "normal")

    # Journal

    def _save_journal_entry(self) -> None:
        content = self.journal_input.get("1.0", "end").strip()
        if not content:
            return
        mood = self.mood_var.get()
        self.controller.journal.add_entry(content, mood=None if mood == NO_MOOD else mood)
        self.journal_input.delete("1.0", "end")
        self.mood_var.set(NO_MOOD)
        self._refresh_journal()
        self._append_log("Journal note saved.")

    def _refresh_journal(self) -> None:
        for widget in self.journal_list.winfo_children():
            widget.destroy()
        entries = self.controller.journal.list()
        if not entries:
            ctk.CTkLabel(
                self.journal_list,
                text="Your thoughts are safe here. Start writing whenever you're ready.",
                text_color=MUTED,
                wraplength=360,
            ).pack(pady=20)
            return
        for entry in entries:
            self._journal_card(entry)

    def _journal_card(self, entry: JournalEntry) -> None:
        card = ctk.CTkFrame(self.journal_list, corner_radius=10, fg_color="#f8fafc")
        card.pack(fill="x", pady=4, padx=4)
        top = ctk.CTkFrame(card, fg_color="transparent")
        top.pack(fill="x", padx=10, pady=(6, 0))
        stamp = _friendly_datetime(entry.date)
        if entry.mood:
            stamp = f"{stamp}  ·  {entry.mood}"
        ctk.CTkLabel(top, text=stamp, text_color=MUTED, font=ctk.CTkFont(size=11)).pack(side="left")
        ctk.CTkButton(
            top,
            text="x",
            width=24,
            height=20,
            fg_color="transparent",
            text_color=MUTED,
            hover_color="#fee2e2",
            command=lambda entry_id=entry.id: self._delete_journal_entry(entry_id),
        ).pack(side="right")
        ctk.CTkLabel(card, text=entry.content, wraplength=380, justify="left", anchor="w").pack(
            fill="x", padx=10, pady=(0, 8)
        )

    def _delete_journal_entry(self, entry_id: str) -> None:
        if not messagebox.askyesno("Clarity & Comfort", "Delete this note?", parent=self):
            return
        self.controller.journal.remove(entry_id)
        self._refresh_journal()

    # Goals

    def _open_goal_dialog(self) -> None:
        GoalDialog(self, on_save=self._add_goal)

    def _add_goal(self, text: str, due: DueDate) -> None:
        self.controller.goals.add_goal(text, due)
        self._refresh_goals()
        self._append_log("Goal added.")

    def _toggle_goal(self, goal_id: str) -> None:
        self.controller.goals.toggle(goal_id)
        self._refresh_goals()

    def _delete_goal(self, goal_id: str) -> None:
        self.controller.goals.remove(goal_id)
        self._refresh_goals()

    def _refresh_goals(self) -> None:
        for widget in self.goal_list.winfo_children():
            widget.destroy()
        goals = self.controller.goals.list()
        if not goals:
            ctk.CTkLabel(self.goal_list, text="No goals yet. Add a small win for today.", text_color=MUTED).pack(
                pady=16
            )
            return
        for goal in goals:
            self._goal_row(goal)

    def _goal_row(self, goal: Goal) -> None:
        row = ctk.CTkFrame(self.goal_list, corner_radius=10, fg_color="#f8fafc" if goal.completed else "white")
        row.pack(fill="x", pady=3, padx=4)
        done = ctk.BooleanVar(value=goal.completed)
        ctk.CTkCheckBox(
            row,
            text=goal.text,
            variable=done,
            fg_color=LAVENDER,
            text_color=MUTED if goal.completed else "#334155",
            command=lambda goal_id=goal.id: self._toggle_goal(goal_id),
        ).pack(side="left", padx=8, pady=6)
        label = _due_label(goal)
        if label:
            ctk.CTkLabel(row, text=label, text_color="#7c3aed", font=ctk.CTkFont(size=11)).pack(side="left", padx=4)
        ctk.CTkButton(
            row,
            text="Delete",
            width=56,
            height=24,
            fg_color="transparent",
            text_color=MUTED,
            hover_color="#fee2e2",
            command=lambda goal_id=goal.id: self._delete_goal(goal_id),
        ).pack(side="right", padx=6)

    # Companion

    def _attach_chat_image(self) -> None:
        path = filedialog.askopenfilename(parent=self, title="Share a photo", filetypes=IMAGE_FILETYPES)
        if not path:
            return
        try:
            image = downscale_file(Path(path))
        except DecodeFailure as exc:
            messagebox.showerror("Clarity & Comfort", f"That photo could not be opened.\n{exc}", parent=self)
            return
        self._chat_image = image.data_uri
        self.chat_attachment_label.configure(text=f"Attached: {Path(path).name}  (press Send)")

    def _send_chat(self) -> None:
        text = self.chat_input.get().strip()
        session = self.controller.companion
        if not session.can_send(text, self._chat_image):
            return
        turn = session.begin_turn(text, self._chat_image)
        self.chat_input.delete(0, "end")
        self._chat_image = None
        self.chat_attachment_label.configure(text="")
        self._render_messages()

        def _worker() -> None:
            try:
                reply = session.run_turn(turn)
            except Exception as exc:  # noqa: BLE001
                session.complete_turn(None)
                self.events.put(("chat_error", exc))
                return
            session.complete_turn(reply)
            self.events.put(("chat_reply", reply))

        threading.Thread(target=_worker, name="clarity-chat", daemon=True).start()

    def _speak_message(self, message_id: str) -> None:
        session = self.controller.companion
        text = session.begin_speaking(message_id)
        if text is None:
            return

        def _worker() -> None:
            session.play_speech(
                message_id,
                text,
                self.controller.player,
                on_finished=lambda finished_id: self.events.put(("message_audio_done", finished_id)),
            )

        self._render_messages()
        threading.Thread(target=_worker, name="clarity-message-tts", daemon=True).start()

    def _render_messages(self) -> None:
        for widget in self.chat_list.winfo_children():
            widget.destroy()
        session = self.controller.companion
        for message in session.messages:
            self._message_bubble(message)
        if session.is_waiting:
            ctk.CTkLabel(self.chat_list, text="...", text_color=MUTED).pack(anchor="w", padx=12, pady=4)
        self.send_button.configure(state="disabled" if session.is_waiting else "normal")
        self.after(50, lambda: self.chat_list._parent_canvas.yview_moveto(1.0))

    def _message_bubble(self, message: ChatMessage) -> None:
        is_user = message.role is MessageRole.USER
        bubble = ctk.CTkFrame(
            self.chat_list,
            corner_radius=14,
            fg_color=ACCENT if is_user else "white",
        )
        bubble.pack(anchor="e" if is_user else "w", padx=8, pady=4)

        if message.image_url:
            photo = self._thumbnail(f"chat:{message.id}", message.image_url, 180)
            if photo is not None:
                ctk.CTkLabel(bubble, image=photo, text="").pack(padx=10, pady=(10, 0))
        if message.text:
            ctk.CTkLabel(
                bubble,
                text=message.text,
                wraplength=460,
                justify="left",
                text_color="white" if is_user else "#334155",
            ).pack(anchor="w", padx=12, pady=8)

        for source in message.sources:
            link = ctk.CTkLabel(bubble, text=source.title, text_color="#0d9488", cursor="hand2",
                                font=ctk.CTkFont(size=11, underline=True))
            link.pack(anchor="w", padx=14)
            link.bind("<Button-1>", lambda _event, uri=source.uri: webbrowser.open(uri))

        if message.role is MessageRole.MODEL:
            ctk.CTkButton(
                bubble,
                text="Speaking..." if message.is_speaking else "Read aloud",
                width=90,
                height=22,
                fg_color="transparent",
                text_color="#64748b",
                hover_color="#f1f5f9",
                state="disabled" if message.is_speaking else "normal",
                command=lambda message_id=message.id: self._speak_message(message_id),
            ).pack(anchor="e", padx=8, pady=(0, 6))

    # Vision board

    def _pin_photo(self) -> None:
        if self._uploading or self.controller.vision_board.is_full:
            return
        path = filedialog.askopenfilename(parent=self, title="Pin a photo", filetypes=IMAGE_FILETYPES)
        if not path:
            return
        try:
            raw = Path(path).read_bytes()
        except OSError as exc:
            messagebox.showerror("Clarity & Comfort", f"Could not read that file.\n{exc}", parent=self)
            return
        self._uploading = True
        self._update_pin_button()
        downscale_in_background(
            raw,
            on_done=lambda image: self.events.put(("vision_done", image)),
            on_error=lambda exc: self.events.put(("vision_error", exc)),
        )

    def _update_pin_button(self) -> None:
        board = self.controller.vision_board
        count = len(board)
        self.vision_count_var.set(f"{count} / {board.capacity} visions pinned")
        if count >= board.capacity:
            self.pin_button.pack_forget()
            return
        if not self.pin_button.winfo_ismapped():
            self.pin_button.pack(side="right")
        self.pin_button.configure(
            state="disabled" if self._uploading else "normal",
            text="Adding..." if self._uploading else "Pin Photo",
        )

    def _refresh_vision_board(self) -> None:
        self._flush_captions()
        self._caption_entries.clear()
        for widget in self.vision_grid.winfo_children():
            widget.destroy()
        items = self.controller.vision_board.list()
        for index in range(self.controller.vision_board.capacity):
            row, column = divmod(index, 3)
            if index < len(items):
                self._vision_tile(items[index], row, column)
            else:
                slot = ctk.CTkFrame(self.vision_grid, corner_radius=8, fg_color="#e7d3b1", border_width=2,
                                    border_color="#c9a978")
                slot.grid(row=row, column=column, sticky="nsew", padx=10, pady=10)
                ctk.CTkLabel(slot, text="Empty slot", text_color="#a08360").place(relx=0.5, rely=0.5, anchor="center")
        self._update_pin_button()

    def _vision_tile(self, item: VisionItem, row: int, column: int) -> None:
        tile = ctk.CTkFrame(self.vision_grid, corner_radius=4, fg_color="white")
        tile.grid(row=row, column=column, sticky="nsew", padx=10, pady=10)
        photo = self._thumbnail(f"vision:{item.id}", item.image_url, TILE_SIZE, item.rotation)
        if photo is not None:
            ctk.CTkLabel(tile, image=photo, text="").pack(padx=8, pady=(8, 4))

        caption = ctk.CTkEntry(tile, placeholder_text="Write a caption...", border_width=0, justify="center")
        if item.caption:
            caption.insert(0, item.caption)
        caption.pack(fill="x", padx=8)
        self._caption_entries[item.id] = caption
        caption.bind("<Return>", lambda _event, item_id=item.id, entry=caption: self._save_caption(item_id, entry))
        caption.bind("<FocusOut>", lambda _event, item_id=item.id, entry=caption: self._save_caption(item_id, entry))

        ctk.CTkButton(
            tile,
            text="Remove",
            width=70,
            height=22,
            fg_color="transparent",
            text_color="#b91c1c",
            hover_color="#fee2e2",
            command=lambda item_id=item.id: self._delete_vision_item(item_id),
        ).pack(pady=(2, 6))

    def _save_caption(self, item_id: str, entry: ctk.CTkEntry) -> None:
        current = self.controller.vision_board.get(item_id)
        text = entry.get()
        if current is not None and current.caption != text:
            self.controller.vision_board.set_caption(item_id, text)

    def _flush_captions(self) -> None:
        """Persist caption edits that never saw Return or FocusOut."""
        pending = {item_id: entry.get() for item_id, entry in self._caption_entries.items() if entry.winfo_exists()}
        if pending:
            self.controller.vision_board.set_captions(pending)

    def _delete_vision_item(self, item_id: str) -> None:
        if not messagebox.askyesno("Clarity & Comfort", "Remove this from your board?", parent=self):
            return
        self.controller.vision_board.remove(item_id)
        self._image_refs.pop(f"vision:{item_id}", None)
        self._refresh_vision_board()

    def _thumbnail(self, key: str, data_uri: str, size: int, rotation: int = 0) -> ctk.CTkImage | None:
        cached = self._image_refs.get(key)
        if cached is not None:
            return cached
        try:
            with Image.open(io.BytesIO(decode_data_uri(data_uri))) as source:
                image = source.convert("RGBA")
        except (DecodeFailure, ValueError, OSError) as exc:
            logger.warning("Could not render image %s: %s", key, exc)
            return None
        image.thumbnail((size, size), Image.Resampling.LANCZOS)
        if rotation:
            image = image.rotate(-rotation, resample=Image.Resampling.BICUBIC, expand=True)
        photo = ctk.CTkImage(light_image=image, dark_image=image, size=image.size)
        self._image_refs[key] = photo
        return photo

    # Settings

    def _show_settings(self) -> None:
        SettingsDialog(self, self.controller, on_saved=lambda: self._append_log("Settings saved."))

    # Event loop

    def _drain_events(self) -> None:
        while True:
            try:
                kind, payload = self.events.get_nowait()
            except queue.Empty:
                break
            if self._closing:
                continue

            if kind == "affirmation":
                self._affirmation_loading = False
                self.affirmation_var.set(str(payload))
                self._update_affirmation_buttons()
            elif kind == "affirmation_audio_done":
                self._affirmation_playing = False
                self._update_affirmation_buttons()
            elif kind == "chat_reply":
                self._render_messages()
            elif kind == "chat_error":
                self._append_log(f"Companion error: {payload}")
                self._render_messages()
            elif kind == "message_audio_done":
                self._render_messages()
            elif kind == "vision_done":
                self._uploading = False
                if isinstance(payload, DownscaledImage):
                    try:
                        self.controller.vision_board.pin(payload.data_uri)
                        self._append_log(f"Pinned a {payload.width}x{payload.height} photo.")
                    except CapacityExceeded:
                        self._append_log("Vision board is already full.")
                self._refresh_vision_board()
            elif kind == "vision_error":
                self._uploading = False
                self._update_pin_button()
                messagebox.showerror("Clarity & Comfort", f"That photo could not be pinned.\n{payload}", parent=self)

        if not self._closing:
            self.after(200, self._drain_events)

    def _append_log(self, message: str) -> None:
        logger.info(message)
        self.status_var.set(message)

    def _on_close(self) -> None:
        self._flush_captions()
        self._closing = True
        self.destroy()


class GoalDialog(ctk.CTkToplevel):
    def __init__(self, parent: ctk.CTk, on_save):
        super().__init__(parent)
        self.title("New Goal")
        self.geometry("420x300")
        self.resizable(False, False)
        self._on_save = on_save

        self.text_var = ctk.StringVar()
        self.no_timeline_var = ctk.BooleanVar(value=False)
        self.due_var = ctk.StringVar()
        self.error_var = ctk.StringVar()

        ctk.CTkLabel(self, text="What's one small step?", font=ctk.CTkFont(size=16, weight="bold")).pack(
            anchor="w", padx=20, pady=(18, 6)
        )
        text_entry = ctk.CTkEntry(self, textvariable=self.text_var, placeholder_text="e.g., Call lawyer, 10 min meditation...")
        text_entry.pack(fill="x", padx=20)
        text_entry.focus_set()

        ctk.CTkCheckBox(
            self,
            text="No timeline",
            variable=self.no_timeline_var,
            command=self._sync_due_state,
        ).pack(anchor="w", padx=20, pady=(14, 6))
        self.due_entry = ctk.CTkEntry(self, textvariable=self.due_var, placeholder_text="Due date (YYYY-MM-DD)")
        self.due_entry.pack(fill="x", padx=20)
        ctk.CTkLabel(self, textvariable=self.error_var, text_color="#b91c1c").pack(anchor="w", padx=20, pady=4)

        buttons = ctk.CTkFrame(self, fg_color="transparent")
        buttons.pack(fill="x", padx=20, pady=8)
        ctk.CTkButton(buttons, text="Save Goal", fg_color=LAVENDER, command=self._save).pack(side="right")
        ctk.CTkButton(buttons, text="Cancel", fg_color="#e2e8f0", text_color="#475569", command=self.destroy).pack(
            side="right", padx=8
        )
        self.bind("<Return>", lambda _event: self._save())
        self.after(50, self.grab_set)

    def _sync_due_state(self) -> None:
        self.due_entry.configure(state="disabled" if self.no_timeline_var.get() else "normal")

    def _save(self) -> None:
        text = self.text_var.get().strip()
        if not text:
            self.error_var.set("Please describe the goal.")
            return
        try:
            due = _parse_due_input(self.due_var.get(), self.no_timeline_var.get())
        except ValueError:
            self.error_var.set("Use a date like 2025-03-14.")
            return
        self._on_save(text, due)
        self.destroy()


class SettingsDialog(ctk.CTkToplevel):
    def __init__(self, parent: ctk.CTk, controller: AppController, on_saved):
        super().__init__(parent)
        self.controller = controller
        self._on_saved = on_saved
        self.title("Settings")
        self.geometry("460x300")

        ctk.CTkLabel(self, text="Gemini API Key:", font=ctk.CTkFont(size=14)).pack(anchor="w", padx=20, pady=(18, 4))
        self.api_key_entry = ctk.CTkEntry(self, show="*", placeholder_text="Enter your Gemini API key")
        self.api_key_entry.pack(fill="x", padx=20)
        self.api_key_entry.insert(0, str(controller.config.get("api_key", "") or ""))

        ctk.CTkLabel(self, text="Voice:", font=ctk.CTkFont(size=14)).pack(anchor="w", padx=20, pady=(14, 4))
        self.voice_entry = ctk.CTkEntry(self)
        self.voice_entry.pack(fill="x", padx=20)
        self.voice_entry.insert(0, str(controller.config.get("voice", "Kore")))

        ctk.CTkButton(self, text="Save Settings", command=self._save_settings).pack(pady=24)

    def _save_settings(self) -> None:
        api_key = self.api_key_entry.get().strip()
        if api_key:
            self.controller.config.set("api_key", api_key)
        voice = self.voice_entry.get().strip()
        if voice:
            self.controller.config.set("voice", voice)
        self.controller.reload_gateway()
        self._on_saved()
        self.destroy()


def _parse_due_input(raw: str, no_timeline: bool) -> DueDate:
    if no_timeline:
        return DueDate.no_timeline()
    text = raw.strip()
    if not text:
        return DueDate.unset()
    return DueDate.on(date.fromisoformat(text))


def _due_label(goal: Goal) -> str:
    if goal.completed:
        return ""
    if goal.due.is_dated:
        return f"Due {goal.due.day.strftime('%b')} {goal.due.day.day}"
    return ""


def _friendly_datetime(value: str) -> str:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone()
    return f"{parsed.strftime('%A, %b')} {parsed.day}, {parsed.strftime('%I:%M %p')}"


def _print_affirmation(controller: AppController) -> int:
    print(controller.todays_affirmation())
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="clarity-comfort")
    parser.add_argument("--affirmation", action="store_true", help="Print today's affirmation and exit")
    parser.add_argument("--data-dir", type=Path, default=None, help="Directory for settings and saved data")
    parser.add_argument("--ephemeral", action="store_true", help="Keep data in memory only")
    parser.add_argument("--version", action="store_true", help="Print app version and exit")
    args = parser.parse_args(argv)
    if args.version:
        print(__version__)
        return 0

    configure_logging()
    controller = AppController.open(args.data_dir, ephemeral=args.ephemeral)
    if args.affirmation:
        return _print_affirmation(controller)
    app = ClarityComfortApp(controller)
    app.mainloop()
    return 0
