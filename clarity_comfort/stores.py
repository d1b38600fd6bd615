from __future__ import annotations

import logging
import random
import secrets
import time
from dataclasses import replace
from datetime import date, datetime
from typing import Any, Callable, Generic, TypeVar

from .errors import CapacityExceeded
from .models import MOODS, DailyAffirmation, DueDate, DueKind, Goal, JournalEntry, VisionItem
from .storage import LocalStore

JOURNAL_KEY = "journal_entries"
GOALS_KEY = "goals"
VISION_BOARD_KEY = "vision_board"
AFFIRMATION_TEXT_KEY = "daily_affirmation"
AFFIRMATION_DAY_KEY = "daily_affirmation_date"

VISION_BOARD_CAPACITY = 9
MAX_ROTATION_DEGREES = 3

T = TypeVar("T", JournalEntry, Goal, VisionItem)

logger = logging.getLogger(__name__)


def new_id() -> str:
    return f"{int(time.time() * 1000)}{secrets.token_hex(3)}"


def _now_iso() -> str:
    return datetime.now().astimezone().isoformat()


class CollectionStore(Generic[T]):
    """Whole-collection read/modify/write over one key.

    Every operation reloads the persisted collection first, so a store never
    holds a stale in-memory copy between calls.
    """

    key: str = ""

    def __init__(self, local_store: LocalStore):
        self._local = local_store

    def list(self) -> list[T]:
        return self._read()

    def get(self, item_id: str) -> T | None:
        for item in self._read():
            if item.id == item_id:
                return item
        return None

    def __len__(self) -> int:
        return len(self._read())

    def append(self, item: T) -> T:
        items = self._read()
        self._insert(items, item)
        self._write(items)
        return item

    def update(self, item_id: str, mutator: Callable[[T], T]) -> T | None:
        items = self._read()
        for index, item in enumerate(items):
            if item.id != item_id:
                continue
            updated = self._preserve(item, mutator(item))
            items[index] = updated
            self._write(items)
            return updated
        return None

    def remove(self, item_id: str) -> bool:
        items = self._read()
        kept = [item for item in items if item.id != item_id]
        if len(kept) == len(items):
            return False
        self._write(kept)
        return True

    def _insert(self, items: list[T], item: T) -> None:
        items.append(item)

    def _preserve(self, original: T, updated: T) -> T:
        return replace(updated, id=original.id)

    def _read(self) -> list[T]:
        return self._local.load(self.key, self._parse)

    def _write(self, items: list[T]) -> bool:
        return self._local.save(self.key, items, self._dump)

    @staticmethod
    def _parse(raw: Any) -> T:
        raise NotImplementedError

    @staticmethod
    def _dump(item: T) -> dict[str, Any]:
        raise NotImplementedError


class JournalStore(CollectionStore[JournalEntry]):
    key = JOURNAL_KEY

    def add_entry(self, content: str, mood: str | None = None) -> JournalEntry:
        if not content.strip():
            raise ValueError("Journal entry cannot be empty.")
        if mood is not None and mood not in MOODS:
            raise ValueError(f"Unknown mood: {mood}")
        entry = JournalEntry(id=new_id(), content=content, date=_now_iso(), mood=mood)
        return self.append(entry)

    def _insert(self, items: list[JournalEntry], item: JournalEntry) -> None:
        items.insert(0, item)

    @staticmethod
    def _parse(raw: Any) -> JournalEntry:
        mood = raw.get("mood") if isinstance(raw, dict) else None
        return JournalEntry(
            id=_require_str(raw, "id"),
            content=_require_str(raw, "content"),
            date=_require_str(raw, "date"),
            mood=mood if mood in MOODS else None,
        )

    @staticmethod
    def _dump(item: JournalEntry) -> dict[str, Any]:
        data: dict[str, Any] = {"id": item.id, "content": item.content, "date": item.date}
        if item.mood:
            data["mood"] = item.mood
        return data


class GoalStore(CollectionStore[Goal]):
    key = GOALS_KEY

    def add_goal(self, text: str, due: DueDate | None = None) -> Goal:
        if not text.strip():
            raise ValueError("Goal text cannot be empty.")
        goal = Goal(id=new_id(), text=text.strip(), completed=False, due=due or DueDate.unset())
        return self.append(goal)

    def toggle(self, goal_id: str) -> Goal | None:
        return self.update(goal_id, lambda goal: replace(goal, completed=not goal.completed))

    def set_due(self, goal_id: str, due: DueDate) -> Goal | None:
        return self.update(goal_id, lambda goal: replace(goal, due=due))

    @staticmethod
    def _parse(raw: Any) -> Goal:
        completed = raw.get("completed", False) if isinstance(raw, dict) else False
        if not isinstance(completed, bool):
            raise TypeError("completed must be a boolean")
        return Goal(
            id=_require_str(raw, "id"),
            text=_require_str(raw, "text"),
            completed=completed,
            due=_parse_due(raw),
        )

    @staticmethod
    def _dump(item: Goal) -> dict[str, Any]:
        data: dict[str, Any] = {"id": item.id, "text": item.text, "completed": item.completed}
        if item.due.kind is DueKind.NO_TIMELINE:
            data["dueDate"] = None
        elif item.due.is_dated:
            data["dueDate"] = item.due.day.isoformat()
        return data


class VisionBoardStore(CollectionStore[VisionItem]):
    key = VISION_BOARD_KEY
    capacity = VISION_BOARD_CAPACITY

    @property
    def is_full(self) -> bool:
        return len(self) >= self.capacity

    @property
    def remaining_slots(self) -> int:
        return max(0, self.capacity - len(self))

    def append(self, item: VisionItem) -> VisionItem:
        items = self._read()
        if len(items) >= self.capacity:
            raise CapacityExceeded(self.capacity)
        self._insert(items, item)
        self._write(items)
        return item

    def pin(self, image_url: str, rng: random.Random | None = None) -> VisionItem:
        if self.is_full:
            raise CapacityExceeded(self.capacity)
        item = VisionItem(
            id=new_id(),
            image_url=image_url,
            caption="",
            date_added=_now_iso(),
            rotation=(rng or random).randint(-MAX_ROTATION_DEGREES, MAX_ROTATION_DEGREES),
        )
        return self.append(item)

    def set_caption(self, item_id: str, caption: str) -> VisionItem | None:
        return self.update(item_id, lambda item: replace(item, caption=caption))

    def set_captions(self, captions: dict[str, str]) -> int:
        """Apply several caption edits with a single write; returns how many changed."""
        items = self._read()
        changed = 0
        for index, item in enumerate(items):
            caption = captions.get(item.id)
            if caption is None or caption == item.caption:
                continue
            items[index] = replace(item, caption=caption)
            changed += 1
        if changed:
            self._write(items)
        return changed

    def _preserve(self, original: VisionItem, updated: VisionItem) -> VisionItem:
        return replace(updated, id=original.id, rotation=original.rotation, date_added=original.date_added)

    def _read(self) -> list[VisionItem]:
        items = super()._read()
        if len(items) > self.capacity:
            logger.warning("Vision board holds %d items, keeping the first %d", len(items), self.capacity)
            del items[self.capacity :]
        return items

    @staticmethod
    def _parse(raw: Any) -> VisionItem:
        rotation = raw.get("rotation", 0) if isinstance(raw, dict) else 0
        if isinstance(rotation, bool) or not isinstance(rotation, (int, float)):
            raise TypeError("rotation must be a number")
        rotation = max(-MAX_ROTATION_DEGREES, min(MAX_ROTATION_DEGREES, int(rotation)))
        return VisionItem(
            id=_require_str(raw, "id"),
            image_url=_require_str(raw, "imageUrl"),
            caption=str(raw.get("caption") or ""),
            date_added=_require_str(raw, "dateAdded"),
            rotation=rotation,
        )

    @staticmethod
    def _dump(item: VisionItem) -> dict[str, Any]:
        return {
            "id": item.id,
            "imageUrl": item.image_url,
            "caption": item.caption,
            "dateAdded": item.date_added,
            "rotation": item.rotation,
        }


class DailyAffirmationCache:
    """Fetches a new affirmation at most once per calendar day."""

    def __init__(self, local_store: LocalStore, clock: Callable[[], date] = date.today):
        self._local = local_store
        self._clock = clock

    def cached(self, today: date | None = None) -> DailyAffirmation | None:
        day = (today or self._clock()).isoformat()
        text = self._local.get_text(AFFIRMATION_TEXT_KEY)
        stored_day = self._local.get_text(AFFIRMATION_DAY_KEY)
        if text and stored_day == day:
            return DailyAffirmation(text=text, day=day)
        return None

    def today(self, fetch: Callable[[], str], today: date | None = None) -> str:
        hit = self.cached(today)
        if hit is not None:
            return hit.text
        return self.refresh(fetch, today)

    def refresh(self, fetch: Callable[[], str], today: date | None = None) -> str:
        day = (today or self._clock()).isoformat()
        text = fetch()
        self._local.set_text(AFFIRMATION_TEXT_KEY, text)
        self._local.set_text(AFFIRMATION_DAY_KEY, day)
        return text


def _require_str(raw: Any, key: str) -> str:
    if not isinstance(raw, dict):
        raise TypeError("expected an object")
    value = raw[key]
    if not isinstance(value, str):
        raise TypeError(f"{key} must be a string")
    return value


def _parse_due(raw: dict[str, Any]) -> DueDate:
    if "dueDate" not in raw:
        return DueDate.unset()
    value = raw["dueDate"]
    if value is None:
        return DueDate.no_timeline()
    if not isinstance(value, str):
        raise TypeError("dueDate must be a string or null")
    if not value.strip():
        return DueDate.unset()
    return DueDate.on(date.fromisoformat(value.strip()[:10]))
