"""Local queue of mutation events awaiting push.

The queue is a JSON array persisted under a single key. Every append is an
independent read-modify-write, so bulk callers never lose entries.
"""

import logging
import time
from collections.abc import Callable
from typing import Any

from ..storage import KeyValueStore
from .device import get_device_id
from .events import Event, EventKind, Payload, parse_payload

logger = logging.getLogger(__name__)

PENDING_EVENTS_KEY = "habitsync.pending_events"
LAST_EVENT_TIME_KEY = "habitsync.last_event_time"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class EventLog:
    """Pending queue of locally created, not yet pushed events."""

    def __init__(
        self,
        kv: KeyValueStore,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize the event log.

        Args:
            kv: Local key-value storage holding the queue.
            clock: Source of epoch-millisecond timestamps.
        """
        self._kv = kv
        self._clock = clock

    @property
    def device_id(self) -> str:
        return get_device_id(self._kv)

    def _next_timestamp(self) -> int:
        # Strictly increasing per device so replay keeps local call order.
        timestamp = max(self._clock(), self._kv.get_int(LAST_EVENT_TIME_KEY, 0) + 1)
        self._kv.set(LAST_EVENT_TIME_KEY, str(timestamp))
        return timestamp

    def _load_raw(self) -> list[dict[str, Any]]:
        raw = self._kv.get_json(PENDING_EVENTS_KEY, [])
        if not isinstance(raw, list):
            logger.warning("Pending queue is not a list, treating as empty")
            return []
        return raw

    def log_event(
        self,
        kind: EventKind | str,
        payload: Payload | dict[str, Any],
    ) -> Event:
        """Record a mutation and append it to the pending queue.

        Args:
            kind: Kind of mutation.
            payload: Typed payload, or its wire dictionary.

        Returns:
            The created Event.

        Raises:
            ValueError: If payload does not match kind.
        """
        kind = EventKind(kind)
        if isinstance(payload, dict):
            payload = parse_payload(kind, payload)
        elif payload.kind != kind:
            raise ValueError(
                f"Payload {type(payload).__name__} does not match {kind.value}"
            )

        event = Event.create(payload, self._next_timestamp(), self.device_id)

        pending = self._load_raw()
        pending.append(event.to_dict())
        self._kv.set_json(PENDING_EVENTS_KEY, pending)

        logger.debug(f"Queued {event.type.value} event {event.id}")
        return event

    def pending(self) -> list[Event]:
        """Get queued events in the order they were logged."""
        events = []
        for data in self._load_raw():
            try:
                events.append(Event.from_dict(data))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping undecodable pending event: {e}")
        return events

    def remove(self, event_ids: list[str]) -> int:
        """Drop the given events from the queue.

        Args:
            event_ids: Ids of events confirmed delivered.

        Returns:
            Number of events removed.
        """
        if not event_ids:
            return 0

        ids = set(event_ids)
        pending = self._load_raw()
        remaining = [
            e for e in pending if not (isinstance(e, dict) and e.get("id") in ids)
        ]
        self._kv.set_json(PENDING_EVENTS_KEY, remaining)
        return len(pending) - len(remaining)

    def clear(self) -> None:
        """Empty the queue."""
        self._kv.set_json(PENDING_EVENTS_KEY, [])

    def __len__(self) -> int:
        return len(self._load_raw())
