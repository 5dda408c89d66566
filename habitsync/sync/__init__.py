"""Offline-first event synchronization.

Local mutations are queued as events, pushed to a shared per-account remote
log, and pulled and replayed in timestamp order by every device. The remote
log is periodically compacted into a full-state snapshot.
"""

from .device import get_device_id
from .engine import MergeResult, SyncEngine, SyncResult, SyncStatus
from .event_log import EventLog
from .events import (
    Event,
    EventKind,
    HabitAdd,
    HabitDelete,
    HabitToggle,
    NoteAdd,
    NoteDelete,
    NoteUpdate,
)
from .merge import Collections, apply_event, replay, sort_events
from .models import Habit, Note, compute_streak
from .remote import (
    DocumentExistsError,
    DocumentNotFoundError,
    HttpRemoteStore,
    InMemoryRemoteStore,
    RemoteEventStore,
    RemoteStoreError,
)

__all__ = [
    "Collections",
    "DocumentExistsError",
    "DocumentNotFoundError",
    "Event",
    "EventKind",
    "EventLog",
    "HabitAdd",
    "HabitDelete",
    "HabitToggle",
    "Habit",
    "HttpRemoteStore",
    "InMemoryRemoteStore",
    "MergeResult",
    "Note",
    "NoteAdd",
    "NoteDelete",
    "NoteUpdate",
    "RemoteEventStore",
    "RemoteStoreError",
    "SyncEngine",
    "SyncResult",
    "SyncStatus",
    "apply_event",
    "compute_streak",
    "get_device_id",
    "replay",
    "sort_events",
]
