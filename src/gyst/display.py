"""Rich terminal display for gyst."""

from __future__ import annotations

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

console = Console()

_FREQUENCY_COLORS: dict[str, str] = {
    "daily": "green",
    "weekly": "deep_sky_blue1",
    "monthly": "magenta",
}

_STATUS_ICONS: dict[str, str] = {
    "done": "✅",
    "pending": "⏳",
    "broken": "\U0001f480",
}


def format_number(n: int) -> str:
    """Format large numbers: 421543 -> '421.5K', 1200 -> '1,200', 1234567 -> '1.2M'."""
    if n >= 1_000_000:
        value = n / 1_000_000
        if value >= 100:
            return f"{value:.0f}M"
        return f"{value:.1f}M"
    if n >= 10_000:
        value = n / 1_000
        if value >= 1000:
            return f"{value:.0f}K"
        return f"{value:.1f}K"
    return f"{n:,}"


def _progress_bar(current: int, total: int, width: int = 20) -> str:
    """Render a progress bar as text: [████████░░░░░░░░░░░░]."""
    if total <= 0:
        return "[" + "░" * width + "]"
    ratio = min(current / total, 1.0)
    filled = int(ratio * width)
    empty = width - filled
    return "[" + "█" * filled + "░" * empty + "]"


def print_task_list(tasks: list[dict]) -> None:
    """Print all tasks as a table.

    Each dict has: id, name, frequency, streak, status ("done", "pending" or
    "broken"), last_completed (str|None).
    """
    if not tasks:
        print_message("No tasks yet. Add one with [bold]gyst add NAME --frequency daily[/].")
        return

    table = Table(
        title="Tasks",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold",
    )
    table.add_column("", width=2)
    table.add_column("ID", style="dim")
    table.add_column("Task", min_width=20)
    table.add_column("Frequency", width=10)
    table.add_column("Streak", justify="right")
    table.add_column("Last Done", width=16)

    for task in tasks:
        frequency = task.get("frequency", "")
        color = _FREQUENCY_COLORS.get(frequency, "white")
        table.add_row(
            _STATUS_ICONS.get(task.get("status", "pending"), ""),
            task["id"],
            f"[bold]{task['name']}[/]",
            f"[{color}]{frequency or '?'}[/{color}]",
            f"\U0001f525 {task.get('streak', 0)}",
            task.get("last_completed") or "never",
        )

    console.print(table)


def print_stats(data: dict) -> None:
    """Print the stats panel: XP, global streak, progress for this period."""
    done = data.get("tasks_done", 0)
    total = data.get("tasks_total", 0)

    lines: list[str] = []
    lines.append("")
    lines.append(f"  Total: [bold]{format_number(data.get('xp', 0))}[/] XP")
    lines.append(f"  \U0001f525 Streak: {data.get('streak', 0)} days")
    lines.append("")
    lines.append(f"  {_progress_bar(done, total)} {done}/{total} done")
    last_streak_date = data.get("last_streak_date")
    if last_streak_date:
        lines.append(f"  Last perfect day: {last_streak_date}")
    lines.append("")

    panel = Panel(
        "\n".join(lines),
        title="[bold]GYST[/]",
        box=box.ROUNDED,
        border_style="gold1" if total and done == total else "grey50",
        width=50,
    )
    console.print(panel)


def print_toggle_result(result: dict) -> None:
    """Print the outcome of completing or un-completing a task."""
    completed = result.get("action") == "completed"
    xp_delta = result.get("xp_delta", 0)
    sign = "+" if xp_delta >= 0 else ""

    lines: list[str] = []
    lines.append("")
    if completed:
        lines.append(f"  ✅ [bold]{result.get('name', '')}[/] done!")
    else:
        lines.append(f"  ↩️  [bold]{result.get('name', '')}[/] marked not done")
    lines.append(f"  Task streak:   {result.get('task_streak', 0)}")
    lines.append(f"  XP:            {sign}{xp_delta} ({format_number(result.get('xp', 0))} total)")
    lines.append(f"  Global streak: {result.get('streak', 0)} days")
    if completed and result.get("global_streak_changed"):
        lines.append("")
        lines.append("  [bold yellow]Every task done, streak extended![/]")
    lines.append("")

    panel = Panel(
        "\n".join(lines),
        title="[bold]Task Complete[/]" if completed else "[bold]Undone[/]",
        box=box.ROUNDED,
        border_style="green" if completed else "grey50",
        width=50,
    )
    console.print(panel)


def print_history(records: list[dict]) -> None:
    """Print completion history. Each dict has: task, days_completed, completed_at."""
    if not records:
        print_message("No completions yet.")
        return

    table = Table(
        title="History",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold",
    )
    table.add_column("Completed", width=16)
    table.add_column("Task", min_width=20)
    table.add_column("Streak", justify="right")

    for record in records:
        table.add_row(
            record.get("completed_at", ""),
            record.get("task", ""),
            str(record.get("days_completed", 0)),
        )

    console.print(table)


def print_dispatch_report(report: dict) -> None:
    """Print the summary of a reminder run."""
    lines: list[str] = []
    lines.append("")
    lines.append(f"  Users opted in:   {report.get('users', 0)}")
    lines.append(f"  Sent:             {report.get('sent', 0)}")
    lines.append(f"  Tokens removed:   {report.get('invalid_removed', 0)}")
    lines.append(f"  Failed:           {report.get('failed', 0)}")
    lines.append("")

    panel = Panel(
        "\n".join(lines),
        title="[bold]Reminders Sent[/]",
        box=box.ROUNDED,
        border_style="red" if report.get("failed") else "green",
        width=50,
    )
    console.print(panel)


def print_reminder(message: dict) -> None:
    """Show one reminder as it would appear on a device."""
    console.print(
        Panel(
            message.get("body", ""),
            title=f"[bold]{message.get('title', '')}[/]",
            subtitle=message.get("token", ""),
            box=box.ROUNDED,
            border_style="cyan",
            width=50,
        )
    )


def print_not_signed_in() -> None:
    """Print message when no user is signed in."""
    panel = Panel(
        "\n  Not signed in. Run [bold]gyst login --user <id>[/] first.\n",
        title="[bold]GYST[/]",
        box=box.ROUNDED,
        border_style="grey50",
        width=50,
    )
    console.print(panel)


def print_message(message: str) -> None:
    console.print(f"  {message}")


def print_error(message: str) -> None:
    console.print(f"[red]{message}[/]")
