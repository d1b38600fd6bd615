"""Key/value persistence shared by every feature store.

Each logical collection is a single JSON document under a fixed key. Writes
replace the whole document. Two processes writing the same key are not
coordinated: the last write wins.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol, TypeVar

from .errors import StorageCorrupt

T = TypeVar("T")

logger = logging.getLogger(__name__)


class KeyValueStorage(Protocol):
    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


class SqliteKeyValueStorage:
    def __init__(self, db_file: Path):
        self._db_file = Path(db_file)
        self._db_file.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_file, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    @contextmanager
    def _connection(self):
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._lock, self._connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS local_storage (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            conn.commit()

    def get_item(self, key: str) -> str | None:
        with self._lock, self._connection() as conn:
            row = conn.execute(
                "SELECT value FROM local_storage WHERE key = ?",
                (key,),
            ).fetchone()
        if row is None:
            return None
        return str(row["value"])

    def set_item(self, key: str, value: str) -> None:
        with self._lock, self._connection() as conn:
            conn.execute(
                """
                INSERT INTO local_storage(key, value)
                VALUES(?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, value),
            )
            conn.commit()

    def remove_item(self, key: str) -> None:
        with self._lock, self._connection() as conn:
            conn.execute("DELETE FROM local_storage WHERE key = ?", (key,))
            conn.commit()

    def keys(self) -> list[str]:
        with self._lock, self._connection() as conn:
            rows = conn.execute("SELECT key FROM local_storage ORDER BY key ASC").fetchall()
        return [str(row["key"]) for row in rows]


class MemoryKeyValueStorage:
    def __init__(self, initial: dict[str, str] | None = None):
        self._items: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get_item(self, key: str) -> str | None:
        with self._lock:
            return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            self._items[key] = value

    def remove_item(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._items)


class LocalStore:
    """JSON (de)serializing adapter over a :class:`KeyValueStorage`."""

    def __init__(self, storage: KeyValueStorage):
        self._storage = storage

    @property
    def storage(self) -> KeyValueStorage:
        return self._storage

    def load(self, key: str, parse: Callable[[Any], T]) -> list[T]:
        """Return the collection stored under ``key``.

        Missing or unreadable data is an empty collection, never an error.
        """
        raw = self._storage.get_item(key)
        if raw is None:
            return []
        try:
            return _parse_collection(raw, parse)
        except StorageCorrupt as exc:
            logger.warning("Ignoring corrupt data under %r: %s", key, exc)
            return []

    def save(self, key: str, items: Iterable[T], dump: Callable[[T], Any]) -> bool:
        try:
            payload = json.dumps([dump(item) for item in items], ensure_ascii=False)
        except (TypeError, ValueError):
            logger.exception("Could not serialize collection %r", key)
            return False
        try:
            self._storage.set_item(key, payload)
        except (OSError, sqlite3.Error):
            logger.exception("Could not write collection %r", key)
            return False
        return True

    def get_text(self, key: str) -> str | None:
        return self._storage.get_item(key)

    def set_text(self, key: str, value: str) -> bool:
        try:
            self._storage.set_item(key, value)
        except (OSError, sqlite3.Error):
            logger.exception("Could not write %r", key)
            return False
        return True


def _parse_collection(raw: str, parse: Callable[[Any], T]) -> list[T]:
    try:
        document = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise StorageCorrupt(f"invalid JSON: {exc.msg}") from exc
    if not isinstance(document, list):
        raise StorageCorrupt(f"expected a list, found {type(document).__name__}")
    items: list[T] = []
    for index, element in enumerate(document):
        try:
            items.append(parse(element))
        except (KeyError, TypeError, ValueError) as exc:
            raise StorageCorrupt(f"element {index} has an unexpected shape") from exc
    return items
