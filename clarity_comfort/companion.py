"""Chat state behind the companion panel.

Messages only live in memory for the lifetime of a session. The remote call
of a turn is split out (``run_turn``) so the window can run it on a worker
thread while the session itself stays consistent.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, Callable

from .ai import CompanionGateway
from .audio import AudioPlayer
from .imaging import split_data_uri
from .models import ChatMessage, MessageRole
from .stores import new_id

GREETING = (
    "Hi there. I'm here to listen, help you organize your thoughts, or just chat. "
    "How are you holding up today?"
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingTurn:
    user_message: ChatMessage
    history: list[dict[str, Any]]


class CompanionSession:
    def __init__(self, gateway: CompanionGateway):
        self._gateway = gateway
        self._lock = threading.Lock()
        self._messages: list[ChatMessage] = [
            ChatMessage(id="init", role=MessageRole.MODEL, text=GREETING),
        ]
        self._waiting = False

    def use_gateway(self, gateway: CompanionGateway) -> None:
        self._gateway = gateway

    @property
    def messages(self) -> list[ChatMessage]:
        with self._lock:
            return [replace(message, sources=list(message.sources)) for message in self._messages]

    @property
    def is_waiting(self) -> bool:
        with self._lock:
            return self._waiting

    def can_send(self, text: str, image_data_uri: str | None = None) -> bool:
        if not text.strip() and not image_data_uri:
            return False
        return not self.is_waiting

    def history(self) -> list[dict[str, Any]]:
        with self._lock:
            return _as_turns(self._messages)

    def begin_turn(self, text: str, image_data_uri: str | None = None) -> PendingTurn:
        if not text.strip() and not image_data_uri:
            raise ValueError("Write a message or attach a photo first.")
        with self._lock:
            if self._waiting:
                raise RuntimeError("Still waiting for the previous reply.")
            prior = _as_turns(self._messages)
            message = ChatMessage(
                id=new_id(),
                role=MessageRole.USER,
                text=text,
                image_url=image_data_uri,
            )
            self._messages.append(message)
            self._waiting = True
        return PendingTurn(user_message=message, history=prior)

    def run_turn(self, turn: PendingTurn) -> ChatMessage:
        """Ask the gateway for a reply. Does not touch session state."""
        image = turn.user_message.image_url
        if image:
            mime_type, payload = split_data_uri(image)
            text = self._gateway.analyze_image(payload, mime_type, turn.user_message.text)
            return ChatMessage(id=new_id(), role=MessageRole.MODEL, text=text)

        reply = self._gateway.send_message(turn.user_message.text, turn.history)
        return ChatMessage(id=new_id(), role=MessageRole.MODEL, text=reply.text, sources=list(reply.sources))

    def complete_turn(self, reply: ChatMessage | None) -> None:
        with self._lock:
            if reply is not None:
                self._messages.append(reply)
            self._waiting = False

    def send(self, text: str, image_data_uri: str | None = None) -> ChatMessage | None:
        turn = self.begin_turn(text, image_data_uri)
        reply: ChatMessage | None = None
        try:
            reply = self.run_turn(turn)
        finally:
            self.complete_turn(reply)
        return reply

    def set_speaking(self, message_id: str, speaking: bool) -> bool:
        with self._lock:
            for message in self._messages:
                if message.id == message_id:
                    message.is_speaking = speaking
                    return True
        return False

    def begin_speaking(self, message_id: str) -> str | None:
        """Flag a model message as speaking and return its text.

        Returns ``None`` for unknown ids, non-model messages and messages
        that are already being read aloud.
        """
        with self._lock:
            message = next((m for m in self._messages if m.id == message_id), None)
            if message is None or message.role is not MessageRole.MODEL or message.is_speaking:
                return None
            message.is_speaking = True
            return message.text

    def play_speech(
        self,
        message_id: str,
        text: str,
        player: AudioPlayer,
        on_finished: Callable[[str], None] | None = None,
    ) -> bool:
        """Synthesize ``text`` and play it. Blocks on synthesis, not on playback.

        Returns ``True`` when playback started. The speaking flag is cleared
        when playback ends or when no audio came back.
        """

        def _finished() -> None:
            self.set_speaking(message_id, False)
            if on_finished is not None:
                on_finished(message_id)

        audio = self._gateway.synthesize_speech(text)
        if not audio:
            logger.info("No speech returned for message %s", message_id)
            _finished()
            return False
        player.play(audio, on_finished=_finished)
        return True

    def speak(
        self,
        message_id: str,
        player: AudioPlayer,
        on_finished: Callable[[str], None] | None = None,
    ) -> bool:
        text = self.begin_speaking(message_id)
        if text is None:
            return False
        return self.play_speech(message_id, text, player, on_finished)


def _as_turns(messages: list[ChatMessage]) -> list[dict[str, Any]]:
    return [
        {"role": message.role.value, "parts": [{"text": message.text}]}
        for message in messages
        if message.role is not MessageRole.SYSTEM
    ]
