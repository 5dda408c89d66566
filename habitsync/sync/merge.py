"""Deterministic replay of events onto entity collections.

Last event wins per field: there are no vector clocks and no field-level
conflict resolution. Replaying the same events in sorted order from the same
starting collections always yields the same result.
"""

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace

from .events import (
    Event,
    HabitAdd,
    HabitDelete,
    HabitToggle,
    NoteAdd,
    NoteDelete,
    NoteUpdate,
)
from .models import Habit, Note

logger = logging.getLogger(__name__)


@dataclass
class Collections:
    """Working copies of the entity collections during replay."""

    habits: list[Habit]
    notes: list[Note]

    @classmethod
    def copy_of(cls, habits: Iterable[Habit], notes: Iterable[Note]) -> "Collections":
        return cls(
            habits=[replace(h, history=list(h.history)) for h in habits],
            notes=[replace(n) for n in notes],
        )


def _apply_habit_add(state: Collections, payload: HabitAdd) -> None:
    if any(h.id == payload.id for h in state.habits):
        return
    habit = payload.habit
    state.habits.append(replace(habit, history=list(habit.history)))


def _apply_habit_delete(state: Collections, payload: HabitDelete) -> None:
    state.habits = [h for h in state.habits if h.id != payload.id]


def _apply_habit_toggle(state: Collections, payload: HabitToggle) -> None:
    for i, habit in enumerate(state.habits):
        if habit.id != payload.id:
            continue
        if not 0 <= payload.day_index < len(habit.history):
            logger.debug(
                f"Ignoring toggle of habit {payload.id} at out-of-range day {payload.day_index}"
            )
            return
        history = list(habit.history)
        history[payload.day_index] = payload.value
        state.habits[i] = replace(habit, history=history)
        return
    logger.debug(f"Ignoring toggle for unknown habit {payload.id}")


def _apply_note_add(state: Collections, payload: NoteAdd) -> None:
    if any(n.id == payload.id for n in state.notes):
        return
    state.notes.insert(0, replace(payload.note))


def _apply_note_update(state: Collections, payload: NoteUpdate) -> None:
    changes = {}
    if payload.title is not None:
        changes["title"] = payload.title
    if payload.content is not None:
        changes["content"] = payload.content
    state.notes = [replace(n, **changes) if n.id == payload.id else n for n in state.notes]


def _apply_note_delete(state: Collections, payload: NoteDelete) -> None:
    state.notes = [n for n in state.notes if n.id != payload.id]


_APPLIERS: dict[type, Callable] = {
    HabitAdd: _apply_habit_add,
    HabitDelete: _apply_habit_delete,
    HabitToggle: _apply_habit_toggle,
    NoteAdd: _apply_note_add,
    NoteUpdate: _apply_note_update,
    NoteDelete: _apply_note_delete,
}


def apply_event(state: Collections, event: Event) -> None:
    """Apply one event to the working collections in place."""
    applier = _APPLIERS.get(type(event.payload))
    if applier is None:
        raise TypeError(f"No applier for payload {type(event.payload).__name__}")
    applier(state, event.payload)


def sort_events(events: Iterable[Event]) -> list[Event]:
    """Order events for replay by timestamp, breaking ties by device and id."""
    return sorted(events, key=Event.sort_key)


def replay(
    events: Iterable[Event],
    habits: Iterable[Habit] = (),
    notes: Iterable[Note] = (),
) -> Collections:
    """Replay events in sorted order onto copies of the given collections.

    The inputs are never mutated.
    """
    state = Collections.copy_of(habits, notes)
    for event in sort_events(events):
        apply_event(state, event)
    return state
