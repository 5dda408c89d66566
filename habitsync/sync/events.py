"""Mutation events exchanged between devices.

Each event kind carries its own payload type; an Event pairs one payload
with the identity, timestamp and origin device of the mutation.
"""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, ClassVar

from .models import EntityId, Habit, Note


class EventKind(str, Enum):
    """Kind of mutation an event records."""

    HABIT_ADD = "HABIT_ADD"
    HABIT_DELETE = "HABIT_DELETE"
    HABIT_TOGGLE = "HABIT_TOGGLE"
    NOTE_ADD = "NOTE_ADD"
    NOTE_UPDATE = "NOTE_UPDATE"
    NOTE_DELETE = "NOTE_DELETE"


@dataclass(frozen=True)
class HabitAdd:
    kind: ClassVar[EventKind] = EventKind.HABIT_ADD

    habit: Habit

    @property
    def id(self) -> EntityId:
        return self.habit.id

    def to_dict(self) -> dict[str, Any]:
        return self.habit.to_dict()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HabitAdd":
        return cls(habit=Habit.from_dict(data))


@dataclass(frozen=True)
class HabitDelete:
    kind: ClassVar[EventKind] = EventKind.HABIT_DELETE

    id: EntityId

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HabitDelete":
        return cls(id=data["id"])


@dataclass(frozen=True)
class HabitToggle:
    kind: ClassVar[EventKind] = EventKind.HABIT_TOGGLE

    id: EntityId
    day_index: int
    value: bool

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "dayIndex": self.day_index, "value": self.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HabitToggle":
        value = data["value"]
        if not isinstance(value, bool):
            raise TypeError(f"Toggle value must be a bool, got {value!r}")
        return cls(
            id=data["id"],
            day_index=int(data["dayIndex"]),
            value=value,
        )


@dataclass(frozen=True)
class NoteAdd:
    kind: ClassVar[EventKind] = EventKind.NOTE_ADD

    note: Note

    @property
    def id(self) -> EntityId:
        return self.note.id

    def to_dict(self) -> dict[str, Any]:
        return self.note.to_dict()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NoteAdd":
        return cls(note=Note.from_dict(data))


@dataclass(frozen=True)
class NoteUpdate:
    """Partial note update; None fields are left untouched on apply."""

    kind: ClassVar[EventKind] = EventKind.NOTE_UPDATE

    id: EntityId
    title: str | None = None
    content: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id}
        if self.title is not None:
            data["title"] = self.title
        if self.content is not None:
            data["content"] = self.content
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NoteUpdate":
        return cls(
            id=data["id"],
            title=data.get("title"),
            content=data.get("content"),
        )


@dataclass(frozen=True)
class NoteDelete:
    kind: ClassVar[EventKind] = EventKind.NOTE_DELETE

    id: EntityId

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "NoteDelete":
        return cls(id=data["id"])


Payload = HabitAdd | HabitDelete | HabitToggle | NoteAdd | NoteUpdate | NoteDelete

PAYLOAD_TYPES: dict[EventKind, type] = {
    EventKind.HABIT_ADD: HabitAdd,
    EventKind.HABIT_DELETE: HabitDelete,
    EventKind.HABIT_TOGGLE: HabitToggle,
    EventKind.NOTE_ADD: NoteAdd,
    EventKind.NOTE_UPDATE: NoteUpdate,
    EventKind.NOTE_DELETE: NoteDelete,
}


def parse_payload(kind: EventKind | str, data: dict[str, Any]) -> Payload:
    """Build the typed payload for kind from its wire dictionary.

    Raises:
        ValueError: If kind is not a known event kind.
        KeyError: If a required payload field is missing.
        TypeError: If data is not a dictionary or a field has the wrong type.
    """
    payload_type = PAYLOAD_TYPES[EventKind(kind)]
    if not isinstance(data, dict):
        raise TypeError(f"Payload for {kind} must be an object, got {type(data).__name__}")
    return payload_type.from_dict(data)


@dataclass(frozen=True)
class Event:
    """A single immutable mutation event."""

    id: str
    payload: Payload
    timestamp: int  # epoch milliseconds
    device_id: str

    @property
    def type(self) -> EventKind:
        return self.payload.kind

    @classmethod
    def create(cls, payload: Payload, timestamp: int, device_id: str) -> "Event":
        """Create a new event with a fresh random id."""
        return cls(
            id=str(uuid.uuid4()),
            payload=payload,
            timestamp=timestamp,
            device_id=device_id,
        )

    def sort_key(self) -> tuple[int, str, str]:
        """Replay order: timestamp, then device and event id for ties."""
        return (self.timestamp, self.device_id, self.id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire dictionary stored locally and remotely."""
        return {
            "id": self.id,
            "type": self.type.value,
            "payload": self.payload.to_dict(),
            "timestamp": self.timestamp,
            "deviceId": self.device_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Event":
        """Create from a wire dictionary.

        Documents written by older clients carry the timestamp under "ts".

        Raises:
            ValueError: If the type is unknown or the timestamp is invalid.
            KeyError: If a required field is missing.
            TypeError: If the event or its payload is not an object.
        """
        if not isinstance(data, dict):
            raise TypeError(f"Event must be an object, got {type(data).__name__}")
        timestamp = data["timestamp"] if "timestamp" in data else data["ts"]
        return cls(
            id=str(data["id"]),
            payload=parse_payload(data["type"], data.get("payload") or {}),
            timestamp=int(timestamp),
            device_id=str(data.get("deviceId", "")),
        )
