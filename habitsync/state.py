"""Local-first entity state.

Habits and notes are persisted in the local key-value store. Every user
mutation updates the collection immediately and enqueues the matching event
for the next push.
"""

import logging
import time
from typing import Any

from .storage import KeyValueStore
from .sync.event_log import EventLog
from .sync.events import (
    HabitAdd,
    HabitDelete,
    HabitToggle,
    NoteAdd,
    NoteDelete,
    NoteUpdate,
)
from .sync.engine import MergeResult
from .sync.merge import Collections, apply_event
from .sync.models import EntityId, Habit, Note, compute_streak

logger = logging.getLogger(__name__)

HABITS_KEY = "habitsync.habits"
NOTES_KEY = "habitsync.notes"


class LocalState:
    """Persisted habit and note collections for one device."""

    def __init__(self, kv: KeyValueStore, event_log: EventLog):
        """Initialize local state.

        Args:
            kv: Local key-value storage for the collections.
            event_log: Queue that receives an event for every mutation.
        """
        self._kv = kv
        self._log = event_log
        self.habits: list[Habit] = self._load(HABITS_KEY, Habit)
        self.notes: list[Note] = self._load(NOTES_KEY, Note)

    def _load(self, key: str, model: type) -> list:
        raw = self._kv.get_json(key, [])
        if not isinstance(raw, list):
            logger.warning(f"Stored {key} is not a list, starting empty")
            return []

        items = []
        for data in raw:
            try:
                items.append(model.from_dict(data))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping unreadable entry in {key}: {e}")
        return items

    def save(self) -> None:
        """Persist both collections."""
        self._kv.set_json(HABITS_KEY, [h.to_dict() for h in self.habits])
        self._kv.set_json(NOTES_KEY, [n.to_dict() for n in self.notes])

    def _new_id(self) -> int:
        # Millisecond ids, bumped past any collision within this device.
        candidate = int(time.time() * 1000)
        taken = {h.id for h in self.habits} | {n.id for n in self.notes}
        while candidate in taken:
            candidate += 1
        return candidate

    def _commit(self, payload: Any) -> None:
        event = self._log.log_event(payload.kind, payload)
        state = Collections(habits=self.habits, notes=self.notes)
        apply_event(state, event)
        self.habits, self.notes = state.habits, state.notes
        self.save()

    # ==================== Habits ====================

    def get_habit(self, habit_id: EntityId) -> Habit | None:
        return next((h for h in self.habits if h.id == habit_id), None)

    def add_habit(self, name: str) -> Habit:
        habit = Habit(id=self._new_id(), name=name)
        self._commit(HabitAdd(habit=habit))
        return self.get_habit(habit.id)

    def delete_habit(self, habit_id: EntityId) -> None:
        self._commit(HabitDelete(id=habit_id))

    def toggle_habit(self, habit_id: EntityId, day_index: int, value: bool) -> Habit | None:
        """Set one day's completion flag and recompute the streak.

        Raises:
            ValueError: If day_index is outside the habit's history.
        """
        habit = self.get_habit(habit_id)
        if habit is None:
            return None
        if not 0 <= day_index < len(habit.history):
            raise ValueError(f"Day index {day_index} out of range for habit {habit_id}")
        self._commit(HabitToggle(id=habit_id, day_index=day_index, value=value))
        self._refresh_streaks()
        self.save()
        return self.get_habit(habit_id)

    def _refresh_streaks(self) -> None:
        for habit in self.habits:
            habit.streak = compute_streak(habit.history)

    # ==================== Notes ====================

    def get_note(self, note_id: EntityId) -> Note | None:
        return next((n for n in self.notes if n.id == note_id), None)

    def add_note(self, title: str = "", content: str = "", wrap: bool = True) -> Note:
        note = Note(id=self._new_id(), title=title, content=content, wrap=wrap)
        self._commit(NoteAdd(note=note))
        return self.get_note(note.id)

    def update_note(
        self,
        note_id: EntityId,
        title: str | None = None,
        content: str | None = None,
    ) -> Note | None:
        if title is None and content is None:
            return self.get_note(note_id)
        self._commit(NoteUpdate(id=note_id, title=title, content=content))
        return self.get_note(note_id)

    def delete_note(self, note_id: EntityId) -> None:
        self._commit(NoteDelete(id=note_id))

    # ==================== Sync ====================

    def apply_merge(self, result: MergeResult) -> None:
        """Adopt collections returned by a pull and persist them."""
        self.habits = list(result.habits)
        self.notes = list(result.notes)
        self._refresh_streaks()
        self.save()
        logger.debug(
            f"Adopted merge: {len(self.habits)} habits, {len(self.notes)} notes"
        )
