"""Tests for local key-value storage."""

import pytest

from habitsync.storage import MemoryKeyValueStore, SQLiteKeyValueStore


@pytest.fixture
def sqlite_kv():
    """Create an in-memory SQLite store."""
    kv = SQLiteKeyValueStore(":memory:")
    kv.connect()
    yield kv
    kv.close()


@pytest.fixture(params=["memory", "sqlite"])
def kv(request, sqlite_kv):
    """Run a test against both backends."""
    if request.param == "memory":
        return MemoryKeyValueStore()
    return sqlite_kv


class TestKeyValueBasics:
    """Tests shared by all backends."""

    def test_get_missing(self, kv):
        assert kv.get("missing") is None

    def test_set_and_get(self, kv):
        kv.set("key", "value")
        assert kv.get("key") == "value"

    def test_set_overwrites(self, kv):
        kv.set("key", "one")
        kv.set("key", "two")
        assert kv.get("key") == "two"

    def test_delete(self, kv):
        kv.set("key", "value")
        kv.delete("key")
        assert kv.get("key") is None

    def test_delete_missing_is_noop(self, kv):
        kv.delete("never-set")
        assert kv.get("never-set") is None


class TestJsonHelpers:
    """Tests for JSON and integer helpers."""

    def test_json_roundtrip(self, kv):
        kv.set_json("data", [{"a": 1}, {"b": [True, False]}])
        assert kv.get_json("data") == [{"a": 1}, {"b": [True, False]}]

    def test_json_default_when_missing(self, kv):
        assert kv.get_json("missing", []) == []

    def test_corrupt_json_returns_default(self, kv):
        kv.set("data", "{not json")
        assert kv.get_json("data", []) == []

    def test_empty_string_returns_default(self, kv):
        kv.set("data", "")
        assert kv.get_json("data", {"x": 1}) == {"x": 1}

    def test_get_int(self, kv):
        kv.set("n", "150")
        assert kv.get_int("n") == 150

    def test_get_int_corrupt(self, kv):
        kv.set("n", "abc")
        assert kv.get_int("n", 7) == 7

    def test_get_int_missing(self, kv):
        assert kv.get_int("n") == 0


class TestSQLiteKeyValueStore:
    """Tests specific to the SQLite backend."""

    def test_connect_creates_table(self, sqlite_kv):
        tables = sqlite_kv._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table'"
        ).fetchall()
        assert "kv_store" in [t[0] for t in tables]

    def test_keys(self, sqlite_kv):
        sqlite_kv.set("b", "2")
        sqlite_kv.set("a", "1")
        assert sqlite_kv.keys() == ["a", "b"]

    def test_persists_across_connections(self, tmp_path):
        db_path = tmp_path / "nested" / "local.db"

        kv = SQLiteKeyValueStore(db_path)
        kv.connect()
        kv.set("habitsync.device_id", "dev_1_abc")
        kv.close()

        reopened = SQLiteKeyValueStore(db_path)
        reopened.connect()
        assert reopened.get("habitsync.device_id") == "dev_1_abc"
        reopened.close()

    def test_lazy_connect(self, tmp_path):
        kv = SQLiteKeyValueStore(tmp_path / "lazy.db")
        kv.set("key", "value")
        assert kv.get("key") == "value"
        kv.close()
