"""Shared console utilities for CLI commands."""

from __future__ import annotations

from datetime import UTC, datetime

import typer
from rich.console import Console
from rich.table import Table

from fleetsched.scheduling.types import ExecutionStatus, TaskExecution

# Shared console instance for all CLI commands
console = Console()

STATUS_STYLES = {
    ExecutionStatus.PENDING: "dim",
    ExecutionStatus.RUNNING: "cyan",
    ExecutionStatus.SUCCEEDED: "green",
    ExecutionStatus.FAILED: "red",
    ExecutionStatus.TIMED_OUT: "yellow",
}


def error(msg: str) -> None:
    """Print an error message in red."""
    console.print(f"[red]{msg}[/red]")


def warning(msg: str) -> None:
    """Print a warning message in yellow."""
    console.print(f"[yellow]{msg}[/yellow]")


def success(msg: str) -> None:
    """Print a success message in green."""
    console.print(f"[green]{msg}[/green]")


def info(msg: str) -> None:
    """Print an info message in cyan."""
    console.print(f"[cyan]{msg}[/cyan]")


def dim(msg: str) -> None:
    """Print a dimmed message."""
    console.print(f"[dim]{msg}[/dim]")


def create_table(
    title: str | None,
    columns: list[tuple[str, str | dict]],
) -> Table:
    """Create a styled table with consistent formatting.

    Args:
        title: Table title.
        columns: List of (name, style) or (name, kwargs_dict) tuples.
    """
    table = Table(title=title)
    for name, style_or_kwargs in columns:
        if isinstance(style_or_kwargs, dict):
            table.add_column(name, **style_or_kwargs)
        else:
            table.add_column(name, style=style_or_kwargs)
    return table


def confirm_or_cancel(prompt: str, force: bool) -> bool:
    """Return True if the user confirms (or force is set). Print cancel on decline."""
    if force:
        return True
    confirmed = typer.confirm(prompt)
    if not confirmed:
        dim("Cancelled")
    return confirmed


def format_status(status: ExecutionStatus) -> str:
    style = STATUS_STYLES.get(status, "white")
    return f"[{style}]{status.value}[/{style}]"


def format_time(value: datetime | None) -> str:
    if value is None:
        return "[dim]-[/dim]"
    return value.astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


def format_countdown(next_fire: datetime | None, now: datetime | None = None) -> str:
    """Format a countdown string for the next fire time."""
    if next_fire is None:
        return "[dim]-[/dim]"

    now = now or datetime.now(UTC)
    if next_fire <= now:
        return "[green]due[/green]"

    total_seconds = int((next_fire - now).total_seconds())
    if total_seconds < 60:
        return f"in {total_seconds}s"

    total_minutes = total_seconds // 60
    if total_minutes < 60:
        return f"in {total_minutes}m"

    hours, minutes = divmod(total_minutes, 60)
    if hours < 24:
        return f"in {hours}h {minutes}m" if minutes else f"in {hours}h"

    days, hours = divmod(hours, 24)
    return f"in {days}d {hours}h" if hours else f"in {days}d"


def format_duration(duration_ms: int | None) -> str:
    if duration_ms is None:
        return "[dim]-[/dim]"
    if duration_ms < 1000:
        return f"{duration_ms}ms"
    seconds = duration_ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m {secs}s"


def print_executions(
    executions: list[TaskExecution],
    *,
    title: str | None = None,
    show_output: bool = False,
) -> None:
    table = create_table(
        title,
        [
            ("ID", "dim"),
            ("Task", "white"),
            ("Server", "white"),
            ("Status", "white"),
            ("Exit", {"justify": "right"}),
            ("Started", "white"),
            ("Duration", {"justify": "right"}),
        ],
    )
    for execution in executions:
        table.add_row(
            str(execution.id),
            str(execution.task_id),
            str(execution.server_id),
            format_status(execution.status),
            "-" if execution.exit_code is None else str(execution.exit_code),
            format_time(execution.started_at),
            format_duration(execution.duration_ms),
        )
    console.print(table)

    if not show_output:
        return
    for execution in executions:
        if execution.output:
            console.print(f"\n[bold]Server {execution.server_id} stdout:[/bold]")
            console.print(execution.output.rstrip(), markup=False, highlight=False)
        if execution.error_output:
            console.print(f"\n[bold]Server {execution.server_id} stderr:[/bold]")
            console.print(
                execution.error_output.rstrip(), markup=False, highlight=False
            )
