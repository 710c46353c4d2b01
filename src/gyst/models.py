"""Data model for tasks, completion history, stats and settings.

Timestamps are naive local datetimes (what ``datetime.now()`` returns).
``None`` means unset; the store encodes timestamps as epoch milliseconds
with 0 for unset.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class _Unset(Enum):
    UNSET = "UNSET"

    def __repr__(self) -> str:
        return "UNSET"


# Sentinel for "leave this field unchanged" in partial updates.
UNSET = _Unset.UNSET


def to_millis(value: datetime | None) -> int:
    """Encode a timestamp as epoch milliseconds (0 for None)."""
    if value is None:
        return 0
    return round(value.timestamp() * 1000)


def from_millis(value: int | None) -> datetime | None:
    """Decode epoch milliseconds into a naive local datetime (None for 0)."""
    if not value:
        return None
    return datetime.fromtimestamp(value / 1000)


def truncate_to_millis(value: datetime) -> datetime:
    """Drop sub-millisecond precision so values survive a store round-trip."""
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


@dataclass
class Task:
    id: str
    name: str
    frequency: str
    created_at: datetime | None = None
    last_completed_time: datetime | None = None
    current_streak: int = 0

    @property
    def never_completed(self) -> bool:
        return self.last_completed_time is None


@dataclass
class CompletedTaskRecord:
    parent_id: str
    days_completed: int
    completed_at: datetime


@dataclass
class UserStats:
    xp: int = 0
    streak: int = 0
    last_streak_date: datetime | None = None


@dataclass
class UserSettings:
    notifications: bool = False


@dataclass
class NotificationToken:
    token: str
    platform: str = "cli"
    updated_at: datetime | None = None


@dataclass
class StatsUpdate:
    """Partial UserStats write. Fields left as UNSET are not touched.

    ``last_streak_date=None`` clears the guard.
    """

    xp: int | _Unset = UNSET
    streak: int | _Unset = UNSET
    last_streak_date: datetime | None | _Unset = UNSET

    def changes(self) -> dict[str, object]:
        return {k: v for k, v in vars(self).items() if v is not UNSET}

    def apply(self, stats: UserStats) -> UserStats:
        """Return a copy of ``stats`` with this update merged in."""
        return UserStats(**{**vars(stats), **self.changes()})


@dataclass
class TaskUpdate:
    """Partial Task write. Fields left as UNSET are not touched."""

    name: str | _Unset = UNSET
    frequency: str | _Unset = UNSET
    last_completed_time: datetime | None | _Unset = UNSET
    current_streak: int | _Unset = UNSET

    def changes(self) -> dict[str, object]:
        return {k: v for k, v in vars(self).items() if v is not UNSET}

    def apply(self, task: Task) -> Task:
        return Task(**{**vars(task), **self.changes()})


@dataclass
class GlobalStreak:
    """Outcome of one global streak evaluation."""

    streak: int
    incremented: bool = False


@dataclass
class ToggleResult:
    """What toggle_complete did, plus the state to re-render from."""

    action: str  # "completed" or "uncompleted"
    task: Task
    stats: UserStats
    xp_delta: int = 0
    global_streak_changed: bool = False
