"""Synchronous key-value persistence for device-local sync state."""

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

KV_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
);
"""


class KeyValueStore(ABC):
    """Abstract string-keyed, string-valued local storage.

    All operations are synchronous and complete before returning.
    """

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Get the value stored under key, or None if absent."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key if present."""
        pass

    def get_json(self, key: str, default: Any = None) -> Any:
        """Get a JSON value, returning default when absent or corrupt."""
        raw = self.get(key)
        if raw is None or raw == "":
            return default
        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            logger.warning(f"Corrupt JSON under {key!r}, using default: {e}")
            return default

    def set_json(self, key: str, value: Any) -> None:
        """Serialize value as JSON and store it."""
        self.set(key, json.dumps(value))

    def get_int(self, key: str, default: int = 0) -> int:
        """Get an integer value, returning default when absent or corrupt."""
        raw = self.get(key)
        if raw is None or raw == "":
            return default
        try:
            return int(raw)
        except ValueError:
            logger.warning(f"Corrupt integer under {key!r}: {raw!r}")
            return default


class MemoryKeyValueStore(KeyValueStore):
    """Dict-backed store, for tests and ephemeral sessions."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data


class SQLiteKeyValueStore(KeyValueStore):
    """SQLite-backed durable store."""

    def __init__(self, db_path: str | Path):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.executescript(KV_SCHEMA)
        self._conn.commit()

        logger.info(f"SQLiteKeyValueStore connected to {self.db_path}")

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def get(self, key: str) -> str | None:
        conn = self._ensure_connected()
        row = conn.execute(
            "SELECT value FROM kv_store WHERE key = ?", (key,)
        ).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        conn = self._ensure_connected()
        conn.execute(
            """
            INSERT INTO kv_store (key, value, updated_at)
            VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """,
            (key, value),
        )
        conn.commit()

    def delete(self, key: str) -> None:
        conn = self._ensure_connected()
        conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        conn.commit()

    def keys(self) -> list[str]:
        """List all stored keys."""
        conn = self._ensure_connected()
        return [row[0] for row in conn.execute("SELECT key FROM kv_store ORDER BY key")]
