"""Entity models materialized from the event log."""

from dataclasses import dataclass, field
from datetime import date
from typing import Any

HISTORY_DAYS = 365

EntityId = int | str


def _empty_history() -> list[bool]:
    return [False] * HISTORY_DAYS


@dataclass
class Habit:
    """A tracked habit with one completion flag per day of the year."""

    id: EntityId
    name: str
    streak: int = 0
    history: list[bool] = field(default_factory=_empty_history)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "streak": self.streak,
            "history": list(self.history),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Habit":
        """Create from dictionary."""
        history = data.get("history")
        if history is not None and not isinstance(history, list):
            raise TypeError(f"Habit history must be a list, got {type(history).__name__}")
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            streak=int(data.get("streak", 0)),
            history=[bool(v) for v in history] if history is not None else _empty_history(),
        )


@dataclass
class Note:
    """A free-form note."""

    id: EntityId
    title: str = ""
    content: str = ""
    wrap: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "wrap": self.wrap,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Note":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            content=data.get("content", ""),
            wrap=bool(data.get("wrap", True)),
        )


def day_index(day: date | None = None) -> int:
    """Index into a habit history for the given day (default: today)."""
    day = day or date.today()
    return min(day.timetuple().tm_yday - 1, HISTORY_DAYS - 1)


def compute_streak(history: list[bool], today: int | None = None) -> int:
    """Count consecutive completed days ending today.

    An unchecked today does not break the streak; counting then starts
    from yesterday.

    Args:
        history: Per-day completion flags.
        today: History index of the current day. Defaults to today's index.

    Returns:
        Length of the current streak.
    """
    if not history:
        return 0

    if today is None:
        today = day_index()
    today = min(today, len(history) - 1)

    i = today if history[today] else today - 1
    streak = 0
    while i >= 0 and history[i]:
        streak += 1
        i -= 1
    return streak
