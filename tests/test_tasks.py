"""Tests for task CRUD and the completion transaction."""

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from gyst import tasks as task_ops
from gyst.db import Database
from gyst.errors import (
    InvalidFrequencyError,
    TaskNotFoundError,
    TransientStoreError,
    UnauthenticatedError,
)
from gyst.models import StatsUpdate, Task, UserStats

USER = "alice"
DAY1 = datetime(2026, 1, 14, 8, 0)
DAY2 = datetime(2026, 1, 15, 8, 0)


@pytest.fixture
def db(tmp_path):
    """Create a temporary database for testing."""
    database = Database(db_path=tmp_path / "test.db")
    yield database
    database.close()


def snapshot(db: Database, task_id: str) -> tuple:
    task = db.get_task(USER, task_id)
    stats = db.get_stats(USER)
    return (task.current_streak, task.last_completed_time, stats.xp, stats.streak)


class TestCreateTask:
    def test_creates_task(self, db):
        task = task_ops.create_task(db, USER, "  Read  ", "daily", now=DAY1)
        assert task.name == "Read"
        assert task.frequency == "daily"
        assert task.created_at == DAY1
        assert task.last_completed_time is None
        assert task.current_streak == 0
        assert db.get_task(USER, task.id) == task

    def test_ids_are_unique(self, db):
        a = task_ops.create_task(db, USER, "A", "daily", now=DAY1)
        b = task_ops.create_task(db, USER, "B", "daily", now=DAY1)
        assert a.id != b.id

    def test_normalises_frequency(self, db):
        assert task_ops.create_task(db, USER, "Gym", "Weekly", now=DAY1).frequency == "weekly"

    def test_rejects_unknown_frequency(self, db):
        with pytest.raises(InvalidFrequencyError):
            task_ops.create_task(db, USER, "Read", "hourly", now=DAY1)
        assert db.list_tasks(USER) == []

    def test_rejects_empty_name(self, db):
        with pytest.raises(ValueError):
            task_ops.create_task(db, USER, "   ", "daily", now=DAY1)

    def test_requires_user(self, db):
        with pytest.raises(UnauthenticatedError):
            task_ops.create_task(db, "", "Read", "daily", now=DAY1)

    def test_new_task_takes_back_perfect_day(self, db):
        task = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        task_ops.toggle_complete(db, USER, task.id, now=DAY1)
        assert db.get_stats(USER).streak == 1

        task_ops.create_task(db, USER, "Write", "daily", now=DAY1 + timedelta(hours=1))

        stats = db.get_stats(USER)
        assert stats.streak == 0
        assert stats.last_streak_date is None

    def test_completing_new_task_restores_streak(self, db):
        read = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        task_ops.toggle_complete(db, USER, read.id, now=DAY1)
        write = task_ops.create_task(db, USER, "Write", "daily", now=DAY1)
        task_ops.toggle_complete(db, USER, write.id, now=DAY1)
        assert db.get_stats(USER).streak == 1

    def test_new_task_keeps_streak_when_day_not_perfect(self, db):
        task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        db.put_stats(USER, StatsUpdate(streak=4))
        task_ops.create_task(db, USER, "Write", "daily", now=DAY1)
        assert db.get_stats(USER).streak == 4

    def test_first_task_keeps_streak(self, db):
        db.put_stats(USER, StatsUpdate(streak=2))
        task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        assert db.get_stats(USER).streak == 2


class TestUpdateAndDelete:
    def test_rename(self, db):
        task = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        updated = task_ops.update_task(db, USER, task.id, name="Read 20 pages")
        assert updated.name == "Read 20 pages"
        assert updated.frequency == "daily"

    def test_change_frequency_keeps_streak(self, db):
        task = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        task_ops.toggle_complete(db, USER, task.id, now=DAY1)
        updated = task_ops.update_task(db, USER, task.id, frequency="weekly")
        assert updated.frequency == "weekly"
        assert updated.current_streak == 1

    def test_update_rejects_bad_frequency(self, db):
        task = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        with pytest.raises(InvalidFrequencyError):
            task_ops.update_task(db, USER, task.id, frequency="sometimes")

    def test_update_missing(self, db):
        with pytest.raises(TaskNotFoundError):
            task_ops.update_task(db, USER, "missing", name="x")

    def test_delete(self, db):
        task = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        task_ops.delete_task(db, USER, task.id)
        with pytest.raises(TaskNotFoundError):
            task_ops.get_task(db, USER, task.id)

    def test_delete_keeps_history(self, db):
        task = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        task_ops.toggle_complete(db, USER, task.id, now=DAY1)
        task_ops.delete_task(db, USER, task.id)
        assert len(task_ops.list_completions(db, USER)) == 1

    def test_delete_missing(self, db):
        with pytest.raises(TaskNotFoundError):
            task_ops.delete_task(db, USER, "missing")


class TestMarkComplete:
    @pytest.mark.parametrize(
        ("frequency", "reward"),
        [("daily", 10), ("weekly", 30), ("monthly", 50)],
    )
    def test_xp_reward(self, db, frequency, reward):
        task = task_ops.create_task(db, USER, "Task", frequency, now=DAY1)
        result = task_ops.toggle_complete(db, USER, task.id, now=DAY1)
        assert result.action == "completed"
        assert result.xp_delta == reward
        assert db.get_stats(USER).xp == reward

    def test_first_completion(self, db):
        task = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        result = task_ops.toggle_complete(db, USER, task.id, now=DAY1)

        assert result.task.current_streak == 1
        assert result.task.last_completed_time == DAY1
        assert result.stats == UserStats(xp=10, streak=1, last_streak_date=DAY1)
        assert result.global_streak_changed is True

        history = task_ops.list_completions(db, USER, task.id)
        assert len(history) == 1
        assert history[0].days_completed == 1
        assert history[0].completed_at == DAY1

    def test_consecutive_days_extend_streak(self, db):
        task = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        task_ops.toggle_complete(db, USER, task.id, now=DAY1)
        result = task_ops.toggle_complete(db, USER, task.id, now=DAY2)
        assert result.task.current_streak == 2
        assert result.stats.streak == 2
        assert result.stats.xp == 20
        assert task_ops.list_completions(db, USER, task.id)[0].days_completed == 2

    def test_lapsed_task_restarts_at_one(self, db):
        task = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        task_ops.toggle_complete(db, USER, task.id, now=DAY1)
        result = task_ops.toggle_complete(db, USER, task.id, now=DAY1 + timedelta(days=3))
        assert result.task.current_streak == 1

    def test_lapsed_then_refreshed_global_streak_restarts(self, db):
        task = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        task_ops.toggle_complete(db, USER, task.id, now=DAY1)
        later = DAY1 + timedelta(days=3)
        assert task_ops.refresh_global_streak(db, USER, later).streak == 0
        result = task_ops.toggle_complete(db, USER, task.id, now=later)
        assert result.stats.streak == 1

    def test_partial_day_does_not_increment(self, db):
        read = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        task_ops.create_task(db, USER, "Write", "daily", now=DAY1)
        result = task_ops.toggle_complete(db, USER, read.id, now=DAY1)
        assert result.stats.streak == 0
        assert result.stats.last_streak_date is None
        assert result.global_streak_changed is False

    def test_completing_last_task_increments(self, db):
        read = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        write = task_ops.create_task(db, USER, "Write", "daily", now=DAY1)
        task_ops.toggle_complete(db, USER, read.id, now=DAY1)
        result = task_ops.toggle_complete(db, USER, write.id, now=DAY1 + timedelta(hours=1))
        assert result.stats.streak == 1
        assert result.stats.last_streak_date == DAY1 + timedelta(hours=1)

    def test_stale_task_resets_global_streak(self, db):
        read = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        task_ops.create_task(db, USER, "Write", "daily", now=DAY1)
        db.put_stats(USER, StatsUpdate(streak=7))
        result = task_ops.toggle_complete(db, USER, read.id, now=DAY1 + timedelta(days=3))
        assert result.stats.streak == 0

    def test_missing_task(self, db):
        with pytest.raises(TaskNotFoundError):
            task_ops.toggle_complete(db, USER, "missing", now=DAY1)
        assert db.get_stats(USER) == UserStats()

    def test_requires_user(self, db):
        with pytest.raises(UnauthenticatedError):
            task_ops.toggle_complete(db, None, "t1", now=DAY1)

    def test_sub_millisecond_now_is_truncated(self, db):
        task = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        result = task_ops.toggle_complete(db, USER, task.id, now=DAY1.replace(microsecond=123456))
        assert result.task.last_completed_time == DAY1.replace(microsecond=123000)


class TestUnmarkComplete:
    def test_undo_first_completion(self, db):
        task = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        task_ops.toggle_complete(db, USER, task.id, now=DAY1)
        result = task_ops.toggle_complete(db, USER, task.id, now=DAY1 + timedelta(minutes=5))

        assert result.action == "uncompleted"
        assert result.task.current_streak == 0
        assert result.task.last_completed_time is None
        assert result.stats == UserStats(xp=0, streak=0, last_streak_date=None)
        assert task_ops.list_completions(db, USER, task.id) == []

    def test_mark_then_unmark_round_trips(self, db):
        task = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        task_ops.toggle_complete(db, USER, task.id, now=DAY1)
        before = snapshot(db, task.id)

        task_ops.toggle_complete(db, USER, task.id, now=DAY2)
        task_ops.toggle_complete(db, USER, task.id, now=DAY2)

        assert snapshot(db, task.id) == before
        assert before == (1, DAY1, 10, 1)

    def test_round_trip_with_several_tasks(self, db):
        read = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        gym = task_ops.create_task(db, USER, "Gym", "weekly", now=DAY1)
        task_ops.toggle_complete(db, USER, read.id, now=DAY1)
        task_ops.toggle_complete(db, USER, gym.id, now=DAY1)
        before = snapshot(db, read.id)

        task_ops.toggle_complete(db, USER, read.id, now=DAY2)
        assert db.get_stats(USER).streak == 2
        task_ops.toggle_complete(db, USER, read.id, now=DAY2)

        assert snapshot(db, read.id) == before

    def test_undo_not_perfect_day_keeps_global_streak(self, db):
        read = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        task_ops.create_task(db, USER, "Write", "daily", now=DAY1)
        db.put_stats(USER, StatsUpdate(streak=3))
        task_ops.toggle_complete(db, USER, read.id, now=DAY1)
        result = task_ops.toggle_complete(db, USER, read.id, now=DAY1)
        assert result.stats.streak == 3

    def test_undo_clears_guard_so_redo_increments(self, db):
        task = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        task_ops.toggle_complete(db, USER, task.id, now=DAY1)
        task_ops.toggle_complete(db, USER, task.id, now=DAY1)
        result = task_ops.toggle_complete(db, USER, task.id, now=DAY1)
        assert result.stats.streak == 1
        assert result.stats.xp == 10

    def test_xp_floored_at_zero(self, db):
        task = task_ops.create_task(db, USER, "Read", "monthly", now=DAY1)
        task_ops.toggle_complete(db, USER, task.id, now=DAY1)
        db.put_stats(USER, StatsUpdate(xp=20))
        result = task_ops.toggle_complete(db, USER, task.id, now=DAY1)
        assert result.stats.xp == 0
        assert result.xp_delta == -20

    @pytest.mark.parametrize("frequency, reward", [
        ("daily", 10),
        ("weekly", 30),
        ("monthly", 50),
    ])
    def test_undo_removes_exact_reward(self, db, frequency, reward):
        task = task_ops.create_task(db, USER, "Read", frequency, now=DAY1)
        task_ops.toggle_complete(db, USER, task.id, now=DAY1)
        db.put_stats(USER, StatsUpdate(xp=100))
        result = task_ops.toggle_complete(db, USER, task.id, now=DAY1)
        assert result.action == "uncompleted"
        assert result.stats.xp == 100 - reward
        assert result.xp_delta == -reward

    def test_task_streak_never_negative(self, db):
        db.put_task(
            USER,
            Task(id="legacy", name="Old", frequency="daily", created_at=DAY1,
                 last_completed_time=DAY1, current_streak=0),
        )
        result = task_ops.toggle_complete(db, USER, "legacy", now=DAY1)
        assert result.action == "uncompleted"
        assert result.task.current_streak == 0

    def test_global_streak_never_negative(self, db):
        task = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        task_ops.toggle_complete(db, USER, task.id, now=DAY1)
        db.put_stats(USER, StatsUpdate(streak=0))
        result = task_ops.toggle_complete(db, USER, task.id, now=DAY1)
        assert result.stats.streak == 0

    def test_undo_without_history_record(self, db):
        db.put_task(
            USER,
            Task(id="legacy", name="Old", frequency="daily", created_at=DAY1,
                 last_completed_time=DAY1, current_streak=3),
        )
        result = task_ops.toggle_complete(db, USER, "legacy", now=DAY1)
        assert result.task.last_completed_time is None
        assert result.task.current_streak == 2

    def test_streak_stays_non_negative_over_many_toggles(self, db):
        read = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        gym = task_ops.create_task(db, USER, "Gym", "weekly", now=DAY1)
        now = DAY1
        for i in range(12):
            task_id = read.id if i % 3 else gym.id
            result = task_ops.toggle_complete(db, USER, task_id, now=now)
            assert result.task.current_streak >= 0
            assert result.stats.streak >= 0
            assert result.stats.xp >= 0
            now += timedelta(hours=9)


class TestTransactionFailure:
    def test_failed_stats_write_rolls_back_task_and_history(self, db):
        task = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        with patch.object(db, "put_stats", side_effect=TransientStoreError("disk I/O error")):
            with pytest.raises(TransientStoreError):
                task_ops.toggle_complete(db, USER, task.id, now=DAY1)

        stored = db.get_task(USER, task.id)
        assert stored.last_completed_time is None
        assert stored.current_streak == 0
        assert task_ops.list_completions(db, USER) == []
        assert db.get_stats(USER) == UserStats()


class TestRefreshGlobalStreak:
    def test_applies_reset(self, db):
        task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        db.put_stats(USER, StatsUpdate(streak=5, xp=100))
        stats = task_ops.refresh_global_streak(db, USER, DAY1 + timedelta(days=2))
        assert stats.streak == 0
        assert stats.xp == 100
        assert db.get_stats(USER).streak == 0

    def test_never_increments(self, db):
        task = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        db.put_task(USER, Task(id=task.id, name="Read", frequency="daily",
                               created_at=DAY1, last_completed_time=DAY1, current_streak=1))
        db.put_stats(USER, StatsUpdate(streak=2))
        stats = task_ops.refresh_global_streak(db, USER, DAY1)
        assert stats.streak == 2

    def test_no_tasks_holds(self, db):
        db.put_stats(USER, StatsUpdate(streak=3))
        assert task_ops.refresh_global_streak(db, USER, DAY1).streak == 3


class TestSettingsTokensAccount:
    def test_settings_roundtrip(self, db):
        assert task_ops.get_settings(db, USER).notifications is False
        assert task_ops.update_settings(db, USER, notifications=True).notifications is True

    def test_register_and_unregister_token(self, db):
        entry = task_ops.register_token(db, USER, " tok-1 ", platform="web", now=DAY1)
        assert entry.token == "tok-1"
        assert [t.token for t in db.list_tokens(USER)] == ["tok-1"]
        assert task_ops.unregister_token(db, USER, "tok-1") is True
        assert db.list_tokens(USER) == []

    def test_register_rejects_empty_token(self, db):
        with pytest.raises(ValueError):
            task_ops.register_token(db, USER, "  ")

    def test_delete_account(self, db):
        task = task_ops.create_task(db, USER, "Read", "daily", now=DAY1)
        task_ops.toggle_complete(db, USER, task.id, now=DAY1)
        task_ops.delete_account(db, USER)
        assert task_ops.list_tasks(db, USER) == []
        assert task_ops.get_stats(db, USER) == UserStats()

    def test_reads_require_user(self, db):
        with pytest.raises(UnauthenticatedError):
            task_ops.list_tasks(db, None)
        with pytest.raises(UnauthenticatedError):
            task_ops.get_stats(db, "")
