"""Task operations for gyst: CRUD plus the completion transaction.

Every function takes the user id explicitly. ``toggle_complete`` is the only
way to complete or un-complete a task; it runs inside one store
transaction so task, history and stats change together.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from gyst.db import Database
from gyst.errors import TaskNotFoundError, UnauthenticatedError
from gyst.frequency import parse_frequency, reward_for
from gyst.models import (
    CompletedTaskRecord,
    GlobalStreak,
    NotificationToken,
    StatsUpdate,
    Task,
    TaskUpdate,
    ToggleResult,
    UserSettings,
    UserStats,
    truncate_to_millis,
)
from gyst.streaks import (
    all_completed_this_period,
    evaluate_global_streak,
    is_completed_this_period,
    is_streak_alive,
)

logger = logging.getLogger(__name__)


def _require_user(user_id: str | None) -> str:
    if not user_id:
        raise UnauthenticatedError()
    return user_id


def _resolve_now(now: datetime | None) -> datetime:
    return truncate_to_millis(now or datetime.now())


def _load_task(db: Database, user_id: str, task_id: str) -> Task:
    task = db.get_task(user_id, task_id)
    if task is None:
        raise TaskNotFoundError(task_id)
    return task


def new_task_id() -> str:
    return uuid.uuid4().hex[:8]


# -- reads -------------------------------------------------------------------


def get_task(db: Database, user_id: str, task_id: str) -> Task:
    """Return one task. Raises TaskNotFoundError."""
    return _load_task(db, _require_user(user_id), task_id)


def list_tasks(db: Database, user_id: str) -> list[Task]:
    """Return all of a user's tasks, most recently completed first."""
    return db.list_tasks(_require_user(user_id))


def get_stats(db: Database, user_id: str) -> UserStats:
    return db.get_stats(_require_user(user_id))


def list_completions(
    db: Database, user_id: str, task_id: str | None = None
) -> list[CompletedTaskRecord]:
    """Return completion history, newest first, optionally for one task."""
    return db.list_completion_records(_require_user(user_id), task_id)


# -- task CRUD ---------------------------------------------------------------


def create_task(
    db: Database,
    user_id: str,
    name: str,
    frequency: str,
    now: datetime | None = None,
) -> Task:
    """Create a task.

    If every existing task was already done this period, the day was
    "perfect" and may have earned a global streak increment. The new task is
    not done yet, so that increment is taken back and the idempotency guard
    cleared; completing the new task earns it again.
    """
    user_id = _require_user(user_id)
    name = name.strip()
    if not name:
        raise ValueError("Task name must not be empty")
    freq = parse_frequency(frequency)
    now = _resolve_now(now)

    task = Task(id=new_task_id(), name=name, frequency=freq.value, created_at=now)

    with db.transaction():
        existing = db.list_tasks(user_id)
        if all_completed_this_period(existing, now):
            stats = db.get_stats(user_id)
            if stats.streak > 0:
                logger.debug(
                    "New task breaks a perfect period for %s, streak %d -> %d",
                    user_id, stats.streak, stats.streak - 1,
                )
                db.put_stats(
                    user_id,
                    StatsUpdate(streak=stats.streak - 1, last_streak_date=None),
                )
        db.put_task(user_id, task)

    return task


def update_task(
    db: Database,
    user_id: str,
    task_id: str,
    name: str | None = None,
    frequency: str | None = None,
) -> Task:
    """Rename a task and/or change its frequency."""
    user_id = _require_user(user_id)
    update = TaskUpdate()
    if name is not None:
        name = name.strip()
        if not name:
            raise ValueError("Task name must not be empty")
        update.name = name
    if frequency is not None:
        update.frequency = parse_frequency(frequency).value

    if not db.update_task(user_id, task_id, update):
        raise TaskNotFoundError(task_id)
    return _load_task(db, user_id, task_id)


def delete_task(db: Database, user_id: str, task_id: str) -> None:
    """Delete a task. Raises TaskNotFoundError if it does not exist."""
    if not db.delete_task(_require_user(user_id), task_id):
        raise TaskNotFoundError(task_id)


# -- completion transaction --------------------------------------------------


def toggle_complete(
    db: Database, user_id: str, task_id: str, now: datetime | None = None
) -> ToggleResult:
    """Complete the task, or undo its completion if already done this period."""
    user_id = _require_user(user_id)
    now = _resolve_now(now)

    with db.transaction():
        task = _load_task(db, user_id, task_id)
        if is_completed_this_period(task, now):
            return _unmark_complete(db, user_id, task, now)
        return _mark_complete(db, user_id, task, now)


def _mark_complete(db: Database, user_id: str, task: Task, now: datetime) -> ToggleResult:
    if is_streak_alive(task, now):
        new_task_streak = task.current_streak + 1
    else:
        new_task_streak = 1

    db.update_task(
        user_id,
        task.id,
        TaskUpdate(last_completed_time=now, current_streak=new_task_streak),
    )
    db.append_completion_record(
        user_id,
        CompletedTaskRecord(parent_id=task.id, days_completed=new_task_streak, completed_at=now),
    )

    stats = db.get_stats(user_id)
    result: GlobalStreak = evaluate_global_streak(
        db.list_tasks(user_id), stats, now, should_increment=True
    )

    reward = reward_for(task.frequency)
    update = StatsUpdate(xp=stats.xp + reward, streak=result.streak)
    if result.incremented:
        update.last_streak_date = now
    new_stats = db.put_stats(user_id, update)

    logger.debug(
        "Completed %s for %s: task streak %d -> %d, global streak %d -> %d, +%d XP",
        task.id, user_id, task.current_streak, new_task_streak,
        stats.streak, new_stats.streak, reward,
    )
    return ToggleResult(
        action="completed",
        task=_load_task(db, user_id, task.id),
        stats=new_stats,
        xp_delta=new_stats.xp - stats.xp,
        global_streak_changed=new_stats.streak != stats.streak,
    )


def _unmark_complete(db: Database, user_id: str, task: Task, now: datetime) -> ToggleResult:
    was_fully_complete = all_completed_this_period(db.list_tasks(user_id), now)

    undone_at = task.last_completed_time
    previous = db.find_most_recent_completion_before(user_id, task.id, undone_at)
    restored = previous.completed_at if previous else None

    db.update_task(
        user_id,
        task.id,
        TaskUpdate(
            last_completed_time=restored,
            current_streak=max(0, task.current_streak - 1),
        ),
    )
    if not db.delete_completion_record(user_id, task.id, undone_at):
        logger.warning("No history record for %s at %s", task.id, undone_at.isoformat())

    stats = db.get_stats(user_id)
    new_streak = max(0, stats.streak - 1) if was_fully_complete else stats.streak
    reward = reward_for(task.frequency)
    new_stats = db.put_stats(
        user_id,
        StatsUpdate(
            xp=max(0, stats.xp - reward),
            streak=new_streak,
            last_streak_date=None,
        ),
    )

    logger.debug(
        "Undid completion of %s for %s: last completion restored to %s, global streak %d -> %d",
        task.id, user_id, restored.isoformat() if restored else "never",
        stats.streak, new_stats.streak,
    )
    return ToggleResult(
        action="uncompleted",
        task=_load_task(db, user_id, task.id),
        stats=new_stats,
        xp_delta=new_stats.xp - stats.xp,
        global_streak_changed=new_stats.streak != stats.streak,
    )


def refresh_global_streak(
    db: Database, user_id: str, now: datetime | None = None
) -> UserStats:
    """Apply a lapsed-task reset without granting an increment.

    Called on every read of the dashboard so a broken streak shows as 0
    even when nothing was completed.
    """
    user_id = _require_user(user_id)
    now = _resolve_now(now)
    stats = db.get_stats(user_id)
    result = evaluate_global_streak(db.list_tasks(user_id), stats, now, should_increment=False)
    if result.streak == stats.streak:
        return stats
    logger.debug("Global streak for %s lapsed: %d -> %d", user_id, stats.streak, result.streak)
    return db.put_stats(user_id, StatsUpdate(streak=result.streak))


# -- settings, tokens, account -----------------------------------------------


def get_settings(db: Database, user_id: str) -> UserSettings:
    return db.get_settings(_require_user(user_id))


def update_settings(db: Database, user_id: str, notifications: bool) -> UserSettings:
    user_id = _require_user(user_id)
    db.put_settings(user_id, notifications)
    return db.get_settings(user_id)


def register_token(
    db: Database,
    user_id: str,
    token: str,
    platform: str = "cli",
    now: datetime | None = None,
) -> NotificationToken:
    """Register a device token for reminders."""
    user_id = _require_user(user_id)
    token = token.strip()
    if not token:
        raise ValueError("Token must not be empty")
    entry = NotificationToken(token=token, platform=platform, updated_at=_resolve_now(now))
    db.save_token(user_id, entry)
    return entry


def unregister_token(db: Database, user_id: str, token: str) -> bool:
    return db.remove_token(_require_user(user_id), token)


def delete_account(db: Database, user_id: str) -> None:
    """Delete every document the user owns."""
    db.delete_user(_require_user(user_id))
