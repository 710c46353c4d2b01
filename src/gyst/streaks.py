"""Per-task and global streak evaluation for gyst.

Pure functions: every decision takes ``now`` explicitly and never touches
the store.
"""

from __future__ import annotations

from datetime import datetime

from gyst.frequency import ONE_WEEK, Frequency, policy_for
from gyst.models import GlobalStreak, Task, UserStats


def is_streak_alive(task: Task, now: datetime) -> bool:
    """Return True if the task's streak has not lapsed as of ``now``.

    Rules:
    - Never completed: alive while ``now - created_at`` is within the grace
      window. Rows without ``created_at`` are always alive.
    - Completed before: alive while ``now - last_completed_time`` is within
      the renewal window.
    - Unknown frequency: always alive.
    """
    policy = policy_for(task.frequency)
    if policy is None:
        return True

    if task.last_completed_time is None:
        if task.created_at is None:
            return True
        return now - task.created_at <= policy.grace_window

    return now - task.last_completed_time <= policy.renewal_window


def is_completed_this_period(task: Task, now: datetime) -> bool:
    """Return True if the task already counts as done for the current period.

    - daily: completed on the same calendar day as ``now``
    - weekly: completed within the 7 days before ``now``
    - monthly: completed in the same calendar month as ``now``
    """
    last = task.last_completed_time
    if last is None:
        return False

    policy = policy_for(task.frequency)
    if policy is None:
        return False

    if policy.frequency is Frequency.DAILY:
        return last.date() == now.date()
    if policy.frequency is Frequency.WEEKLY:
        return now - last < ONE_WEEK
    return (last.year, last.month) == (now.year, now.month)


def effective_streak(task: Task, now: datetime) -> int:
    """The streak to show for a task: its counter if alive, else 0."""
    return task.current_streak if is_streak_alive(task, now) else 0


def all_completed_this_period(tasks: list[Task], now: datetime) -> bool:
    """True if there is at least one task and every task is done this period."""
    return bool(tasks) and all(is_completed_this_period(t, now) for t in tasks)


def _already_incremented_today(stats: UserStats, now: datetime) -> bool:
    return stats.last_streak_date is not None and stats.last_streak_date.date() == now.date()


def evaluate_global_streak(
    tasks: list[Task],
    stats: UserStats,
    now: datetime,
    should_increment: bool,
) -> GlobalStreak:
    """Combine every task's state into one global streak transition.

    1. No tasks: hold the current streak.
    2. Any task not alive: reset to 0. This wins over everything else.
    3. Every task completed this period, ``should_increment`` set, and no
       increment recorded yet today: increment.
    4. Otherwise hold.

    Passive checks pass ``should_increment=False`` so they can apply a reset
    without granting progress.
    """
    if not tasks:
        return GlobalStreak(streak=stats.streak, incremented=False)

    if any(not is_streak_alive(task, now) for task in tasks):
        return GlobalStreak(streak=0, incremented=False)

    if (
        should_increment
        and all_completed_this_period(tasks, now)
        and not _already_incremented_today(stats, now)
    ):
        return GlobalStreak(streak=stats.streak + 1, incremented=True)

    return GlobalStreak(streak=stats.streak, incremented=False)
