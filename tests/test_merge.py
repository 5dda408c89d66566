"""Tests for event replay."""

import itertools

import pytest

from habitsync.sync import (
    Event,
    HabitAdd,
    HabitDelete,
    HabitToggle,
    NoteAdd,
    NoteDelete,
    NoteUpdate,
    replay,
    sort_events,
)
from habitsync.sync.models import Habit, Note


def make_event(payload, ts: int, event_id: str | None = None, device: str = "dev_a") -> Event:
    return Event(
        id=event_id or f"evt-{ts}-{device}",
        payload=payload,
        timestamp=ts,
        device_id=device,
    )


@pytest.fixture
def run_habit():
    return Habit(id=1, name="Run")


@pytest.fixture
def note():
    return Note(id=7, title="Ideas", content="first draft", wrap=False)


class TestAddEvents:
    """Tests for HabitAdd and NoteAdd."""

    def test_habit_add(self, run_habit):
        state = replay([make_event(HabitAdd(habit=run_habit), 10)])

        assert [h.id for h in state.habits] == [1]
        assert state.habits[0].name == "Run"

    def test_habit_add_is_idempotent(self, run_habit):
        event = make_event(HabitAdd(habit=run_habit), 10)

        once = replay([event])
        twice = replay([event, event])

        assert once.habits == twice.habits

    def test_habit_add_skips_existing(self, run_habit):
        renamed = Habit(id=1, name="Jog")
        state = replay([make_event(HabitAdd(habit=renamed), 10)], habits=[run_habit])

        assert len(state.habits) == 1
        assert state.habits[0].name == "Run"

    def test_note_add_prepends(self, note):
        newer = Note(id=8, title="Later")
        state = replay(
            [make_event(NoteAdd(note=note), 10), make_event(NoteAdd(note=newer), 20)]
        )

        assert [n.id for n in state.notes] == [8, 7]

    def test_duplicate_note_add_from_two_devices(self):
        first = Note(id=7, title="From A")
        second = Note(id=7, title="From B")

        state = replay(
            [
                make_event(NoteAdd(note=second), 20, device="dev_b"),
                make_event(NoteAdd(note=first), 10, device="dev_a"),
            ]
        )

        assert len(state.notes) == 1
        assert state.notes[0].title == "From A"


class TestDeleteEvents:
    """Tests for HabitDelete and NoteDelete."""

    def test_habit_delete(self, run_habit):
        state = replay([make_event(HabitDelete(id=1), 10)], habits=[run_habit])
        assert state.habits == []

    def test_delete_missing_habit_is_noop(self, run_habit):
        state = replay([make_event(HabitDelete(id=99), 10)], habits=[run_habit])
        assert state.habits == [run_habit]

    def test_delete_missing_note_is_noop(self, note):
        state = replay([make_event(NoteDelete(id=99), 10)], notes=[note])
        assert state.notes == [note]

    def test_add_then_delete(self, note):
        state = replay(
            [make_event(NoteAdd(note=note), 10), make_event(NoteDelete(id=7), 20)]
        )
        assert state.notes == []


class TestToggle:
    """Tests for HabitToggle."""

    def test_toggle_sets_day(self, run_habit):
        state = replay(
            [make_event(HabitToggle(id=1, day_index=5, value=True), 150)],
            habits=[run_habit],
        )

        assert state.habits[0].history[5] is True
        assert sum(state.habits[0].history) == 1

    def test_toggle_does_not_recompute_streak(self, run_habit):
        state = replay(
            [make_event(HabitToggle(id=1, day_index=0, value=True), 1)],
            habits=[run_habit],
        )
        assert state.habits[0].streak == 0

    def test_toggle_unknown_habit_is_noop(self, run_habit):
        state = replay(
            [make_event(HabitToggle(id=2, day_index=5, value=True), 1)],
            habits=[run_habit],
        )
        assert not any(state.habits[0].history)

    def test_toggle_out_of_range_is_noop(self, run_habit):
        state = replay(
            [make_event(HabitToggle(id=1, day_index=400, value=True), 1)],
            habits=[run_habit],
        )
        assert not any(state.habits[0].history)

    def test_later_toggle_wins(self, run_habit):
        state = replay(
            [
                make_event(HabitToggle(id=1, day_index=5, value=False), 200),
                make_event(HabitToggle(id=1, day_index=5, value=True), 100),
            ],
            habits=[run_habit],
        )
        assert state.habits[0].history[5] is False


class TestNoteUpdate:
    """Tests for partial NoteUpdate."""

    def test_title_only(self, note):
        state = replay([make_event(NoteUpdate(id=7, title="Renamed"), 10)], notes=[note])

        updated = state.notes[0]
        assert updated.title == "Renamed"
        assert updated.content == "first draft"
        assert updated.wrap is False

    def test_content_only(self, note):
        state = replay([make_event(NoteUpdate(id=7, content="second"), 10)], notes=[note])

        updated = state.notes[0]
        assert updated.content == "second"
        assert updated.title == "Ideas"

    def test_empty_string_is_applied(self, note):
        state = replay([make_event(NoteUpdate(id=7, content=""), 10)], notes=[note])
        assert state.notes[0].content == ""

    def test_update_missing_note_is_noop(self, note):
        state = replay([make_event(NoteUpdate(id=8, title="x"), 10)], notes=[note])
        assert state.notes == [note]


class TestReplayProperties:
    """Tests for ordering and purity of replay."""

    def test_inputs_not_mutated(self, run_habit, note):
        habits = [run_habit]
        notes = [note]

        replay(
            [
                make_event(HabitToggle(id=1, day_index=0, value=True), 1),
                make_event(NoteUpdate(id=7, title="changed"), 2),
                make_event(HabitDelete(id=1), 3),
            ],
            habits=habits,
            notes=notes,
        )

        assert habits == [run_habit]
        assert not run_habit.history[0]
        assert note.title == "Ideas"

    def test_replay_is_order_independent(self):
        events = [
            make_event(HabitAdd(habit=Habit(id=1, name="Run")), 10),
            make_event(HabitToggle(id=1, day_index=3, value=True), 20, device="dev_b"),
            make_event(NoteAdd(note=Note(id=7, title="A")), 30),
            make_event(NoteUpdate(id=7, title="B"), 40, device="dev_b"),
            make_event(NoteUpdate(id=7, content="C"), 40, device="dev_a"),
            make_event(HabitDelete(id=1), 50),
            make_event(HabitAdd(habit=Habit(id=2, name="Read")), 50, device="dev_b"),
        ]

        expected = replay(events)
        for ordering in itertools.permutations(events):
            assert replay(ordering) == expected

    def test_sort_events(self):
        late = make_event(NoteDelete(id=1), 30)
        early = make_event(NoteDelete(id=2), 10)
        tie_b = make_event(NoteDelete(id=3), 20, device="dev_b")
        tie_a = make_event(NoteDelete(id=4), 20, device="dev_a")

        assert sort_events([late, tie_b, early, tie_a]) == [early, tie_a, tie_b, late]
