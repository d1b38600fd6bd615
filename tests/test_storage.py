from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

from clarity_comfort.storage import LocalStore, MemoryKeyValueStorage, SqliteKeyValueStorage


def _parse_name(raw):
    if not isinstance(raw, dict) or not isinstance(raw["name"], str):
        raise TypeError("bad element")
    return raw["name"]


def _dump_name(name: str) -> dict[str, str]:
    return {"name": name}


class SqliteKeyValueStorageTests(unittest.TestCase):
    def test_items_round_trip(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            storage = SqliteKeyValueStorage(Path(tmp_dir) / "local_storage.sqlite3")
            storage.set_item("goals", "[]")
            storage.set_item("goals", "[1]")
            storage.set_item("daily_affirmation", "Breathe.")
            self.assertEqual(storage.get_item("goals"), "[1]")
            self.assertEqual(storage.keys(), ["daily_affirmation", "goals"])
            storage.remove_item("goals")
            self.assertIsNone(storage.get_item("goals"))

    def test_values_survive_reopen(self) -> None:
        with tempfile.TemporaryDirectory() as tmp_dir:
            path = Path(tmp_dir) / "nested" / "local_storage.sqlite3"
            SqliteKeyValueStorage(path).set_item("journal_entries", "[]")
            reopened = SqliteKeyValueStorage(path)
            self.assertEqual(reopened.get_item("journal_entries"), "[]")


class LocalStoreTests(unittest.TestCase):
    def test_missing_key_loads_empty(self) -> None:
        store = LocalStore(MemoryKeyValueStorage())
        self.assertEqual(store.load("goals", _parse_name), [])

    def test_save_then_load(self) -> None:
        store = LocalStore(MemoryKeyValueStorage())
        self.assertTrue(store.save("names", ["a", "b"], _dump_name))
        self.assertEqual(store.load("names", _parse_name), ["a", "b"])

    def test_malformed_json_loads_empty(self) -> None:
        storage = MemoryKeyValueStorage({"names": "{not json"})
        with self.assertLogs("clarity_comfort.storage", level="WARNING"):
            self.assertEqual(LocalStore(storage).load("names", _parse_name), [])

    def test_non_list_document_loads_empty(self) -> None:
        storage = MemoryKeyValueStorage({"names": '{"name": "a"}'})
        with self.assertLogs("clarity_comfort.storage", level="WARNING"):
            self.assertEqual(LocalStore(storage).load("names", _parse_name), [])

    def test_shape_mismatch_loads_empty(self) -> None:
        storage = MemoryKeyValueStorage({"names": '[{"name": "a"}, {"title": "b"}]'})
        with self.assertLogs("clarity_comfort.storage", level="WARNING"):
            self.assertEqual(LocalStore(storage).load("names", _parse_name), [])

    def test_save_replaces_whole_collection(self) -> None:
        storage = MemoryKeyValueStorage()
        store = LocalStore(storage)
        store.save("names", ["a", "b", "c"], _dump_name)
        store.save("names", ["z"], _dump_name)
        self.assertEqual(storage.get_item("names"), '[{"name": "z"}]')

    def test_unserializable_items_report_failure(self) -> None:
        storage = MemoryKeyValueStorage({"names": "[]"})
        store = LocalStore(storage)
        with self.assertLogs("clarity_comfort.storage", level="ERROR"):
            self.assertFalse(store.save("names", [object()], lambda item: item))
        self.assertEqual(storage.get_item("names"), "[]")


if __name__ == "__main__":
    unittest.main()
