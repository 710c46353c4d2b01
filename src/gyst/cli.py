"""CLI commands for gyst."""

from __future__ import annotations

import argparse
import logging
from dataclasses import asdict
from datetime import datetime
from pathlib import Path

from rich.logging import RichHandler

from gyst import tasks as task_ops
from gyst.config import (
    clear_current_user,
    get_current_user,
    get_db_path,
    get_notification_text,
    set_current_user,
)
from gyst.db import Database
from gyst.display import (
    print_dispatch_report,
    print_error,
    print_history,
    print_message,
    print_not_signed_in,
    print_reminder,
    print_stats,
    print_task_list,
    print_toggle_result,
)
from gyst.errors import NotFoundError, TransientStoreError, UnauthenticatedError
from gyst.frequency import Frequency
from gyst.models import Task
from gyst.notifications import NotificationMessage, Sender, send_daily_notifications
from gyst.streaks import effective_streak, is_completed_this_period, is_streak_alive

logger = logging.getLogger(__name__)

FREQUENCY_CHOICES = [f.value for f in Frequency]


def build_parser() -> argparse.ArgumentParser:
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="gyst",
        description="Track recurring tasks and keep your streak alive",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug logging")
    subparsers = parser.add_subparsers(dest="command")

    login_p = subparsers.add_parser("login", help="Sign in as a user")
    login_p.add_argument("--user", "-u", required=True, help="User id")
    subparsers.add_parser("logout", help="Sign out")

    add_p = subparsers.add_parser("add", help="Create a task")
    add_p.add_argument("name", help="Task name")
    add_p.add_argument("--frequency", "-f", choices=FREQUENCY_CHOICES, default="daily")

    subparsers.add_parser("list", help="List tasks")

    done_p = subparsers.add_parser("done", help="Mark a task done, or undo if already done")
    done_p.add_argument("task_id")

    rename_p = subparsers.add_parser("rename", help="Rename a task")
    rename_p.add_argument("task_id")
    rename_p.add_argument("name")

    freq_p = subparsers.add_parser("frequency", help="Change a task's frequency")
    freq_p.add_argument("task_id")
    freq_p.add_argument("frequency", choices=FREQUENCY_CHOICES)

    delete_p = subparsers.add_parser("delete", help="Delete a task")
    delete_p.add_argument("task_id")

    subparsers.add_parser("stats", help="Show XP and global streak")

    history_p = subparsers.add_parser("history", help="Show completion history")
    history_p.add_argument("--task", "-t", default=None, help="Only show one task")

    notif_p = subparsers.add_parser("notifications", help="Turn daily reminders on or off")
    notif_p.add_argument("state", choices=["on", "off"])

    token_p = subparsers.add_parser("token", help="Manage device tokens for reminders")
    token_sub = token_p.add_subparsers(dest="token_command", required=True)
    token_add_p = token_sub.add_parser("add", help="Register a device token")
    token_add_p.add_argument("token")
    token_add_p.add_argument("--platform", default="cli")
    token_remove_p = token_sub.add_parser("remove", help="Unregister a device token")
    token_remove_p.add_argument("token")

    subparsers.add_parser("notify", help="Send the daily reminder to every opted-in user")
    return parser


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(show_path=False)],
    )


def main() -> None:
    """Entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args()
    _configure_logging(args.verbose)
    command = args.command or "list"

    if command == "login":
        do_login(args.user)
        return
    if command == "logout":
        do_logout()
        return

    db = None
    user_id = get_current_user()

    try:
        db = Database(get_db_path())
        if command == "notify":
            do_notify(db)
        elif command == "list":
            do_list(db, user_id)
        elif command == "add":
            do_add(db, user_id, args.name, args.frequency)
        elif command == "done":
            do_toggle(db, user_id, args.task_id)
        elif command == "rename":
            do_update(db, user_id, args.task_id, name=args.name)
        elif command == "frequency":
            do_update(db, user_id, args.task_id, frequency=args.frequency)
        elif command == "delete":
            do_delete(db, user_id, args.task_id)
        elif command == "stats":
            do_stats(db, user_id)
        elif command == "history":
            do_history(db, user_id, task_id=args.task)
        elif command == "notifications":
            do_notifications(db, user_id, enabled=args.state == "on")
        elif command == "token":
            if args.token_command == "add":
                do_token_add(db, user_id, args.token, platform=args.platform)
            else:
                do_token_remove(db, user_id, args.token)
    except UnauthenticatedError:
        print_not_signed_in()
    except NotFoundError as exc:
        print_error(str(exc))
        raise SystemExit(1) from None
    except ValueError as exc:
        print_error(str(exc))
        raise SystemExit(2) from None
    except TransientStoreError as exc:
        logger.debug("Store failure", exc_info=True)
        print_error(f"Could not reach the database ({exc}). Try again.")
        raise SystemExit(1) from None
    finally:
        if db is not None:
            db.close()


def _format_time(value: datetime | None) -> str | None:
    return value.strftime("%Y-%m-%d %H:%M") if value else None


def _task_status(task: Task, now: datetime) -> str:
    if not is_streak_alive(task, now):
        return "broken"
    if is_completed_this_period(task, now):
        return "done"
    return "pending"


def _task_row(task: Task, now: datetime) -> dict:
    return {
        "id": task.id,
        "name": task.name,
        "frequency": task.frequency,
        "streak": effective_streak(task, now),
        "status": _task_status(task, now),
        "last_completed": _format_time(task.last_completed_time),
    }


def do_login(user_id: str, config_path: Path | None = None) -> dict:
    """Remember the signed-in user in the config file."""
    set_current_user(user_id, config_path)
    print_message(f"Signed in as [bold]{user_id}[/].")
    return {"ok": True, "user_id": user_id}


def do_logout(config_path: Path | None = None) -> dict:
    clear_current_user(config_path)
    print_message("Signed out.")
    return {"ok": True}


def do_list(db: Database, user_id: str | None, now: datetime | None = None) -> list[dict]:
    """Show every task with its live status."""
    now = now or datetime.now()
    task_ops.refresh_global_streak(db, user_id, now)
    rows = [_task_row(task, now) for task in task_ops.list_tasks(db, user_id)]
    print_task_list(rows)
    return rows


def do_add(
    db: Database, user_id: str | None, name: str, frequency: str, now: datetime | None = None
) -> dict:
    task = task_ops.create_task(db, user_id, name, frequency, now=now)
    print_message(f"Added [bold]{task.name}[/] ({task.frequency}) as [dim]{task.id}[/].")
    return {"ok": True, "task": asdict(task)}


def do_toggle(
    db: Database, user_id: str | None, task_id: str, now: datetime | None = None
) -> dict:
    """Complete a task, or undo today's completion."""
    result = task_ops.toggle_complete(db, user_id, task_id, now=now)
    data = {
        "action": result.action,
        "name": result.task.name,
        "task_streak": result.task.current_streak,
        "xp": result.stats.xp,
        "xp_delta": result.xp_delta,
        "streak": result.stats.streak,
        "global_streak_changed": result.global_streak_changed,
    }
    print_toggle_result(data)
    return data


def do_update(
    db: Database,
    user_id: str | None,
    task_id: str,
    name: str | None = None,
    frequency: str | None = None,
) -> dict:
    task = task_ops.update_task(db, user_id, task_id, name=name, frequency=frequency)
    print_message(f"Updated [bold]{task.name}[/] ({task.frequency}).")
    return {"ok": True, "task": asdict(task)}


def do_delete(db: Database, user_id: str | None, task_id: str) -> dict:
    task_ops.delete_task(db, user_id, task_id)
    print_message(f"Deleted task [dim]{task_id}[/].")
    return {"ok": True, "task_id": task_id}


def do_stats(db: Database, user_id: str | None, now: datetime | None = None) -> dict:
    """Show XP, global streak and how much of this period is done."""
    now = now or datetime.now()
    stats = task_ops.refresh_global_streak(db, user_id, now)
    all_tasks = task_ops.list_tasks(db, user_id)
    data = {
        "xp": stats.xp,
        "streak": stats.streak,
        "last_streak_date": _format_time(stats.last_streak_date),
        "tasks_total": len(all_tasks),
        "tasks_done": sum(1 for t in all_tasks if is_completed_this_period(t, now)),
    }
    print_stats(data)
    return data


def do_history(db: Database, user_id: str | None, task_id: str | None = None) -> list[dict]:
    names = {task.id: task.name for task in task_ops.list_tasks(db, user_id)}
    records = [
        {
            "task": names.get(record.parent_id, f"{record.parent_id} (deleted)"),
            "task_id": record.parent_id,
            "days_completed": record.days_completed,
            "completed_at": _format_time(record.completed_at),
        }
        for record in task_ops.list_completions(db, user_id, task_id)
    ]
    print_history(records)
    return records


def do_notifications(db: Database, user_id: str | None, enabled: bool) -> dict:
    settings = task_ops.update_settings(db, user_id, notifications=enabled)
    print_message(f"Daily reminders {'on' if settings.notifications else 'off'}.")
    return {"ok": True, "notifications": settings.notifications}


def do_token_add(db: Database, user_id: str | None, token: str, platform: str = "cli") -> dict:
    entry = task_ops.register_token(db, user_id, token, platform=platform)
    print_message(f"Registered token [dim]{entry.token}[/].")
    return {"ok": True, "token": entry.token}


def do_token_remove(db: Database, user_id: str | None, token: str) -> dict:
    removed = task_ops.unregister_token(db, user_id, token)
    if removed:
        print_message(f"Removed token [dim]{token}[/].")
    else:
        print_error(f"Token not registered: {token}")
    return {"ok": removed, "token": token}


class ConsoleSender:
    """Delivers reminders by printing them to the terminal."""

    def send(self, message: NotificationMessage) -> None:
        print_reminder(asdict(message))


def do_notify(
    db: Database, sender: Sender | None = None, config_path: Path | None = None
) -> dict:
    """Run the daily reminder job once."""
    title, body = get_notification_text(config_path)
    report = send_daily_notifications(db, sender or ConsoleSender(), title=title, body=body)
    data = asdict(report)
    print_dispatch_report(data)
    return data
