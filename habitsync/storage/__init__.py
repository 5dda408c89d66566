"""Local persistence for device-owned sync state.

Pending events, the sync checkpoint, the device identity and the
materialized entity collections all live in a synchronous key-value store.
"""

from .kv import KeyValueStore, MemoryKeyValueStore, SQLiteKeyValueStore

__all__ = ["KeyValueStore", "MemoryKeyValueStore", "SQLiteKeyValueStore"]
