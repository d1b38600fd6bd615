from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum

MOODS = ("happy", "neutral", "sad", "anxious", "hopeful")


class MessageRole(str, Enum):
    USER = "user"
    MODEL = "model"
    SYSTEM = "system"


class DueKind(str, Enum):
    UNSET = "unset"
    NO_TIMELINE = "no_timeline"
    DATED = "dated"


@dataclass(frozen=True)
class DueDate:
    kind: DueKind = DueKind.UNSET
    day: date | None = None

    @classmethod
    def unset(cls) -> DueDate:
        return cls(DueKind.UNSET)

    @classmethod
    def no_timeline(cls) -> DueDate:
        return cls(DueKind.NO_TIMELINE)

    @classmethod
    def on(cls, day: date) -> DueDate:
        return cls(DueKind.DATED, day)

    @property
    def is_dated(self) -> bool:
        return self.kind is DueKind.DATED and self.day is not None


@dataclass(frozen=True)
class JournalEntry:
    id: str
    content: str
    date: str
    mood: str | None = None


@dataclass(frozen=True)
class Goal:
    id: str
    text: str
    completed: bool = False
    due: DueDate = field(default_factory=DueDate)


@dataclass(frozen=True)
class VisionItem:
    id: str
    image_url: str
    caption: str
    date_added: str
    rotation: int


@dataclass(frozen=True)
class DailyAffirmation:
    text: str
    day: str


@dataclass(frozen=True)
class GroundingSource:
    title: str
    uri: str


@dataclass
class ChatMessage:
    id: str
    role: MessageRole
    text: str
    image_url: str | None = None
    sources: list[GroundingSource] = field(default_factory=list)
    is_speaking: bool = False
