"""SQLite persistence gateway for gyst.

Every document is keyed by user id. Timestamps are stored as epoch
milliseconds with 0 meaning unset.
"""

from __future__ import annotations

import functools
import logging
import sqlite3
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

from gyst.errors import TransientStoreError
from gyst.models import (
    CompletedTaskRecord,
    NotificationToken,
    StatsUpdate,
    Task,
    TaskUpdate,
    UserSettings,
    UserStats,
    from_millis,
    to_millis,
)

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path.home() / ".gyst" / "data.db"

_F = TypeVar("_F", bound=Callable[..., Any])


def _store_call(func: _F) -> _F:
    """Re-raise SQLite failures (locked, I/O, corrupt file) as TransientStoreError."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except sqlite3.DatabaseError as exc:
            raise TransientStoreError(str(exc)) from exc

    return wrapper  # type: ignore[return-value]


def _encode(value: object) -> object:
    if isinstance(value, datetime) or value is None:
        return to_millis(value)
    return value


def _task_from_row(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        name=row["name"],
        frequency=row["frequency"],
        created_at=from_millis(row["created_at"]),
        last_completed_time=from_millis(row["last_completed_time"]),
        current_streak=row["current_streak"],
    )


def _record_from_row(row: sqlite3.Row) -> CompletedTaskRecord:
    return CompletedTaskRecord(
        parent_id=row["parent_id"],
        days_completed=row["days_completed"],
        completed_at=from_millis(row["completed_at"]),
    )


class Database:
    """SQLite database manager with WAL mode."""

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or DEFAULT_DB_PATH
        self._tx_depth = 0
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(str(self.db_path))
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA journal_mode=WAL")
            self.init_db()
        except (OSError, sqlite3.DatabaseError) as exc:
            raise TransientStoreError(f"cannot open {self.db_path}: {exc}") from exc

    def init_db(self) -> None:
        """Create tables if they do not exist."""
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS tasks (
                user_id TEXT NOT NULL,
                id TEXT NOT NULL,
                name TEXT NOT NULL,
                frequency TEXT NOT NULL DEFAULT '',
                created_at INTEGER DEFAULT 0,
                last_completed_time INTEGER DEFAULT 0,
                current_streak INTEGER DEFAULT 0,
                PRIMARY KEY (user_id, id)
            );

            CREATE TABLE IF NOT EXISTS completed_tasks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                parent_id TEXT NOT NULL,
                days_completed INTEGER DEFAULT 0,
                completed_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_completed_parent
                ON completed_tasks (user_id, parent_id, completed_at);

            CREATE TABLE IF NOT EXISTS stats (
                user_id TEXT PRIMARY KEY,
                xp INTEGER DEFAULT 0,
                streak INTEGER DEFAULT 0,
                last_streak_date INTEGER DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS settings (
                user_id TEXT PRIMARY KEY,
                notifications BOOLEAN DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS notification_tokens (
                user_id TEXT NOT NULL,
                token TEXT NOT NULL,
                platform TEXT DEFAULT 'cli',
                updated_at INTEGER DEFAULT 0,
                PRIMARY KEY (user_id, token)
            );
        """)
        self.conn.commit()

    # -- transactions -------------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group writes into one commit. Rolls back and re-raises on error.

        Nested blocks join the outermost transaction.
        """
        self._tx_depth += 1
        try:
            yield
        except BaseException:
            self._tx_depth -= 1
            if self._tx_depth == 0:
                logger.debug("Rolling back transaction on %s", self.db_path)
                self.conn.rollback()
            raise
        self._tx_depth -= 1
        if self._tx_depth == 0:
            self._commit()

    @_store_call
    def _commit(self) -> None:
        if self._tx_depth == 0:
            self.conn.commit()

    # -- tasks --------------------------------------------------------------

    @_store_call
    def get_task(self, user_id: str, task_id: str) -> Task | None:
        """Get a single task, or None if it does not exist."""
        row = self.conn.execute(
            "SELECT * FROM tasks WHERE user_id = ? AND id = ?", (user_id, task_id)
        ).fetchone()
        return _task_from_row(row) if row else None

    @_store_call
    def list_tasks(self, user_id: str) -> list[Task]:
        """Return all tasks, most recently completed first."""
        rows = self.conn.execute(
            "SELECT * FROM tasks WHERE user_id = ? "
            "ORDER BY last_completed_time DESC, created_at, id",
            (user_id,),
        ).fetchall()
        return [_task_from_row(row) for row in rows]

    @_store_call
    def put_task(self, user_id: str, task: Task) -> None:
        """Insert or replace a whole task."""
        self.conn.execute(
            "INSERT INTO tasks (user_id, id, name, frequency, created_at, "
            "last_completed_time, current_streak) VALUES (?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT(user_id, id) DO UPDATE SET name = excluded.name, "
            "frequency = excluded.frequency, created_at = excluded.created_at, "
            "last_completed_time = excluded.last_completed_time, "
            "current_streak = excluded.current_streak",
            (
                user_id,
                task.id,
                task.name,
                task.frequency,
                to_millis(task.created_at),
                to_millis(task.last_completed_time),
                task.current_streak,
            ),
        )
        self._commit()

    @_store_call
    def update_task(self, user_id: str, task_id: str, update: TaskUpdate) -> bool:
        """Merge a partial update into an existing task. Returns False if missing."""
        changes = update.changes()
        if not changes:
            return self.get_task(user_id, task_id) is not None
        set_clause = ", ".join(f"{k} = ?" for k in changes)
        values = [_encode(v) for v in changes.values()] + [user_id, task_id]
        cursor = self.conn.execute(
            f"UPDATE tasks SET {set_clause} WHERE user_id = ? AND id = ?",
            values,
        )
        self._commit()
        return cursor.rowcount > 0

    @_store_call
    def delete_task(self, user_id: str, task_id: str) -> bool:
        """Delete a task. Completion history is kept."""
        cursor = self.conn.execute(
            "DELETE FROM tasks WHERE user_id = ? AND id = ?", (user_id, task_id)
        )
        self._commit()
        return cursor.rowcount > 0

    # -- stats --------------------------------------------------------------

    @_store_call
    def get_stats(self, user_id: str) -> UserStats:
        """Get user stats. Missing stats read as all zeros."""
        row = self.conn.execute(
            "SELECT * FROM stats WHERE user_id = ?", (user_id,)
        ).fetchone()
        if row is None:
            return UserStats()
        return UserStats(
            xp=row["xp"],
            streak=row["streak"],
            last_streak_date=from_millis(row["last_streak_date"]),
        )

    @_store_call
    def put_stats(self, user_id: str, update: StatsUpdate) -> UserStats:
        """Merge a partial stats update (upsert). Returns the merged stats."""
        self.conn.execute(
            "INSERT INTO stats (user_id) VALUES (?) ON CONFLICT(user_id) DO NOTHING",
            (user_id,),
        )
        changes = update.changes()
        if changes:
            set_clause = ", ".join(f"{k} = ?" for k in changes)
            values = [_encode(v) for v in changes.values()] + [user_id]
            self.conn.execute(
                f"UPDATE stats SET {set_clause} WHERE user_id = ?",
                values,
            )
        self._commit()
        return self.get_stats(user_id)

    # -- completion history -------------------------------------------------

    @_store_call
    def append_completion_record(self, user_id: str, record: CompletedTaskRecord) -> None:
        self.conn.execute(
            "INSERT INTO completed_tasks (user_id, parent_id, days_completed, completed_at) "
            "VALUES (?, ?, ?, ?)",
            (user_id, record.parent_id, record.days_completed, to_millis(record.completed_at)),
        )
        self._commit()

    @_store_call
    def find_most_recent_completion_before(
        self, user_id: str, task_id: str, before: datetime
    ) -> CompletedTaskRecord | None:
        """Latest record for a task with completed_at strictly before ``before``."""
        row = self.conn.execute(
            "SELECT * FROM completed_tasks "
            "WHERE user_id = ? AND parent_id = ? AND completed_at < ? "
            "ORDER BY completed_at DESC, id DESC LIMIT 1",
            (user_id, task_id, to_millis(before)),
        ).fetchone()
        return _record_from_row(row) if row else None

    @_store_call
    def delete_completion_record(self, user_id: str, task_id: str, at: datetime) -> bool:
        """Delete at most one record matching task id and exact completed_at."""
        cursor = self.conn.execute(
            "DELETE FROM completed_tasks WHERE id = ("
            "SELECT id FROM completed_tasks "
            "WHERE user_id = ? AND parent_id = ? AND completed_at = ? "
            "ORDER BY id DESC LIMIT 1)",
            (user_id, task_id, to_millis(at)),
        )
        self._commit()
        return cursor.rowcount > 0

    @_store_call
    def list_completion_records(
        self, user_id: str, task_id: str | None = None
    ) -> list[CompletedTaskRecord]:
        """Return completion history, newest first."""
        if task_id is None:
            rows = self.conn.execute(
                "SELECT * FROM completed_tasks WHERE user_id = ? "
                "ORDER BY completed_at DESC, id DESC",
                (user_id,),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM completed_tasks WHERE user_id = ? AND parent_id = ? "
                "ORDER BY completed_at DESC, id DESC",
                (user_id, task_id),
            ).fetchall()
        return [_record_from_row(row) for row in rows]

    # -- settings and notification tokens -----------------------------------

    @_store_call
    def get_settings(self, user_id: str) -> UserSettings:
        row = self.conn.execute(
            "SELECT * FROM settings WHERE user_id = ?", (user_id,)
        ).fetchone()
        return UserSettings(notifications=bool(row["notifications"])) if row else UserSettings()

    @_store_call
    def put_settings(self, user_id: str, notifications: bool) -> None:
        self.conn.execute(
            "INSERT INTO settings (user_id, notifications) VALUES (?, ?) "
            "ON CONFLICT(user_id) DO UPDATE SET notifications = excluded.notifications",
            (user_id, bool(notifications)),
        )
        self._commit()

    @_store_call
    def list_users_with_notifications(self) -> list[str]:
        rows = self.conn.execute(
            "SELECT user_id FROM settings WHERE notifications = 1 ORDER BY user_id"
        ).fetchall()
        return [row["user_id"] for row in rows]

    @_store_call
    def save_token(self, user_id: str, token: NotificationToken) -> None:
        """Register a device token (upsert)."""
        self.conn.execute(
            "INSERT INTO notification_tokens (user_id, token, platform, updated_at) "
            "VALUES (?, ?, ?, ?) ON CONFLICT(user_id, token) DO UPDATE SET "
            "platform = excluded.platform, updated_at = excluded.updated_at",
            (user_id, token.token, token.platform, to_millis(token.updated_at)),
        )
        self._commit()

    @_store_call
    def remove_token(self, user_id: str, token: str) -> bool:
        cursor = self.conn.execute(
            "DELETE FROM notification_tokens WHERE user_id = ? AND token = ?",
            (user_id, token),
        )
        self._commit()
        return cursor.rowcount > 0

    @_store_call
    def list_tokens(self, user_id: str) -> list[NotificationToken]:
        rows = self.conn.execute(
            "SELECT * FROM notification_tokens WHERE user_id = ? ORDER BY token",
            (user_id,),
        ).fetchall()
        return [
            NotificationToken(
                token=row["token"],
                platform=row["platform"],
                updated_at=from_millis(row["updated_at"]),
            )
            for row in rows
        ]

    @_store_call
    def delete_token_everywhere(self, token: str) -> int:
        """Remove a token from every user that registered it."""
        cursor = self.conn.execute(
            "DELETE FROM notification_tokens WHERE token = ?", (token,)
        )
        self._commit()
        return cursor.rowcount

    # -- accounts -----------------------------------------------------------

    @_store_call
    def delete_user(self, user_id: str) -> None:
        """Delete every document owned by a user."""
        with self.transaction():
            for table in ("tasks", "completed_tasks", "stats", "settings", "notification_tokens"):
                self.conn.execute(f"DELETE FROM {table} WHERE user_id = ?", (user_id,))

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()
