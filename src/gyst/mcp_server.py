"""MCP server for gyst.

Exposes tasks and stats as MCP tools so an assistant can check and tick off
tasks mid-conversation. Run via: python3 -m gyst.mcp_server
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from mcp.server.fastmcp import FastMCP

from gyst.errors import GystError

mcp = FastMCP(name="gyst")


def _get_db():
    from gyst.config import get_db_path
    from gyst.db import Database
    return Database(get_db_path())


def _get_user() -> str | None:
    from gyst.config import get_current_user
    return get_current_user()


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@mcp.tool()
def get_stats() -> dict[str, Any]:
    """Get XP, global streak, and how many tasks are done this period."""
    from gyst import tasks as task_ops
    from gyst.streaks import is_completed_this_period

    db = _get_db()
    try:
        user_id = _get_user()
        now = datetime.now()
        stats = task_ops.refresh_global_streak(db, user_id, now)
        all_tasks = task_ops.list_tasks(db, user_id)
        return {
            "xp": stats.xp,
            "streak": stats.streak,
            "last_streak_date": _iso(stats.last_streak_date),
            "tasks_total": len(all_tasks),
            "tasks_done": sum(1 for t in all_tasks if is_completed_this_period(t, now)),
        }
    except GystError as exc:
        return {"error": str(exc)}
    finally:
        db.close()


@mcp.tool()
def list_tasks() -> dict[str, Any]:
    """List every task with its frequency, streak, and whether it is done this period."""
    from gyst import tasks as task_ops
    from gyst.streaks import effective_streak, is_completed_this_period, is_streak_alive

    db = _get_db()
    try:
        user_id = _get_user()
        now = datetime.now()
        result = [
            {
                "id": t.id, "name": t.name, "frequency": t.frequency,
                "streak": effective_streak(t, now),
                "alive": is_streak_alive(t, now),
                "done": is_completed_this_period(t, now),
                "last_completed_time": _iso(t.last_completed_time),
            }
            for t in task_ops.list_tasks(db, user_id)
        ]
        return {"tasks": result, "count": len(result)}
    except GystError as exc:
        return {"error": str(exc)}
    finally:
        db.close()


@mcp.tool()
def toggle_task(task_id: str) -> dict[str, Any]:
    """Mark a task done, or undo it if it is already done this period."""
    from gyst import tasks as task_ops

    db = _get_db()
    try:
        result = task_ops.toggle_complete(db, _get_user(), task_id)
        return {
            "action": result.action,
            "task": result.task.name,
            "task_streak": result.task.current_streak,
            "xp": result.stats.xp,
            "xp_delta": result.xp_delta,
            "streak": result.stats.streak,
        }
    except GystError as exc:
        return {"error": str(exc)}
    finally:
        db.close()


@mcp.tool()
def get_history(task_id: str = "") -> dict[str, Any]:
    """Get completion history, newest first.

    task_id: only return completions of this task. Empty means all tasks.
    """
    from gyst import tasks as task_ops

    db = _get_db()
    try:
        records = task_ops.list_completions(db, _get_user(), task_id or None)
        return {
            "history": [
                {"task_id": r.parent_id, "days_completed": r.days_completed,
                 "completed_at": _iso(r.completed_at)}
                for r in records
            ],
            "count": len(records),
        }
    except GystError as exc:
        return {"error": str(exc)}
    finally:
        db.close()


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
