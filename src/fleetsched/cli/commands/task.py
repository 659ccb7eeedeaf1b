"""Scheduled task commands."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any

import typer

from fleetsched.cli.console import (
    confirm_or_cancel,
    console,
    create_table,
    dim,
    error,
    format_countdown,
    format_time,
    print_executions,
    success,
    warning,
)
from fleetsched.cli.runtime import load_cli_config, open_runtime

if TYPE_CHECKING:
    from fleetsched.scheduling.types import TaskSummary

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to configuration file"),
]
TaskIdArgument = Annotated[int, typer.Argument(help="Task ID")]


def _run(coro: Awaitable[Any]) -> Any:
    """Run a command coroutine, turning scheduling errors into exit code 1."""
    from fleetsched.scheduling.errors import SchedulingError

    try:
        return asyncio.run(coro)  # type: ignore[arg-type]
    except SchedulingError as e:
        error(str(e))
        raise typer.Exit(1) from None


def register(app: typer.Typer) -> None:
    """Register the task command group."""
    task_app = typer.Typer(help="Manage scheduled tasks", no_args_is_help=True)

    @task_app.command("list")
    def task_list(
        enabled_only: Annotated[
            bool, typer.Option("--enabled", help="Only show enabled tasks")
        ] = False,
        config: ConfigOption = None,
    ) -> None:
        """List scheduled tasks with their execution counts."""
        _run(_task_list(config, enabled_only))

    @task_app.command("show")
    def task_show(task_id: TaskIdArgument, config: ConfigOption = None) -> None:
        """Show one task in detail."""
        _run(_task_show(config, task_id))

    @task_app.command("create")
    def task_create(
        name: Annotated[str, typer.Option("--name", "-n", help="Task name")],
        command: Annotated[
            str, typer.Option("--command", help="Shell command to run on each server")
        ],
        cron: Annotated[
            str, typer.Option("--cron", help="Cron expression (5 or 6 fields)")
        ],
        servers: Annotated[
            list[int],
            typer.Option("--server", "-s", help="Server ID (repeatable)"),
        ],
        timezone: Annotated[
            str | None,
            typer.Option("--timezone", "-t", help="IANA timezone for the schedule"),
        ] = None,
        timeout: Annotated[
            int | None,
            typer.Option("--timeout", help="Timeout in seconds"),
        ] = None,
        description: Annotated[
            str | None, typer.Option("--description", "-d", help="Description")
        ] = None,
        disabled: Annotated[
            bool, typer.Option("--disabled", help="Create the task disabled")
        ] = False,
        created_by: Annotated[
            str | None, typer.Option("--created-by", help="Author recorded on the task")
        ] = None,
        config: ConfigOption = None,
    ) -> None:
        """Create a scheduled task.

        Examples:
            fleetsched task create -n backup --command "/opt/backup.sh" \\
                --cron "0 3 * * *" -s 1 -s 2 --timezone Europe/Berlin
        """
        from fleetsched.scheduling.types import TaskDefinition

        def build(defaults: Any) -> TaskDefinition:
            return TaskDefinition(
                name=name,
                command=command,
                cron_expression=cron,
                server_ids=servers,
                timezone=timezone or defaults.timezone,
                description=description,
                is_enabled=not disabled,
                timeout_seconds=(
                    timeout
                    if timeout is not None
                    else defaults.scheduler.default_timeout_seconds
                ),
                created_by=created_by,
            )

        _run(_task_create(config, build))

    @task_app.command("update")
    def task_update(
        task_id: TaskIdArgument,
        name: Annotated[str | None, typer.Option("--name", "-n")] = None,
        command: Annotated[str | None, typer.Option("--command")] = None,
        cron: Annotated[str | None, typer.Option("--cron")] = None,
        servers: Annotated[
            list[int] | None,
            typer.Option("--server", "-s", help="Replace bound servers (repeatable)"),
        ] = None,
        timezone: Annotated[str | None, typer.Option("--timezone", "-t")] = None,
        timeout: Annotated[int | None, typer.Option("--timeout")] = None,
        description: Annotated[
            str | None, typer.Option("--description", "-d")
        ] = None,
        config: ConfigOption = None,
    ) -> None:
        """Change fields of a task. Omitted options are left unchanged."""
        from fleetsched.scheduling.types import TaskUpdate

        changes = TaskUpdate(
            name=name,
            description=description,
            command=command,
            cron_expression=cron,
            timezone=timezone,
            timeout_seconds=timeout,
            server_ids=servers or None,
        )
        if changes.is_empty():
            error("Nothing to update")
            raise typer.Exit(1)
        _run(_task_update(config, task_id, changes))

    @task_app.command("delete")
    def task_delete(
        task_id: TaskIdArgument,
        purge: Annotated[
            bool,
            typer.Option("--purge", help="Also delete the task's execution history"),
        ] = False,
        force: Annotated[
            bool, typer.Option("--force", "-f", help="Skip confirmation")
        ] = False,
        config: ConfigOption = None,
    ) -> None:
        """Delete a task."""
        if not confirm_or_cancel(f"Delete task {task_id}?", force):
            return
        _run(_task_delete(config, task_id, purge))

    @task_app.command("enable")
    def task_enable(task_id: TaskIdArgument, config: ConfigOption = None) -> None:
        """Enable a task; its next run is computed from now."""
        _run(_task_toggle(config, task_id, True))

    @task_app.command("disable")
    def task_disable(task_id: TaskIdArgument, config: ConfigOption = None) -> None:
        """Disable a task; history is kept."""
        _run(_task_toggle(config, task_id, False))

    @task_app.command("run")
    def task_run(
        task_id: TaskIdArgument,
        servers: Annotated[
            list[int] | None,
            typer.Option(
                "--server", "-s", help="Server ID (repeatable, default: all bound)"
            ),
        ] = None,
        config: ConfigOption = None,
    ) -> None:
        """Run a task now and wait for the results.

        Does not change when the task next runs on its schedule.
        """
        _run(_task_run(config, task_id, servers))

    app.add_typer(task_app, name="task")


async def _task_list(config_path: Path | None, enabled_only: bool) -> None:
    config = load_cli_config(config_path)
    async with open_runtime(config) as rt:
        summaries = await rt.service.list_tasks(enabled_only=enabled_only)

    if not summaries:
        dim("No scheduled tasks")
        return

    table = create_table(
        None,
        [
            ("ID", "dim"),
            ("Name", "cyan"),
            ("Schedule", "white"),
            ("Servers", "white"),
            ("Enabled", "white"),
            ("Next run", "white"),
            ("Runs", {"justify": "right"}),
            ("Failed", {"justify": "right"}),
        ],
    )
    for summary in summaries:
        task = summary.task
        table.add_row(
            str(task.id),
            task.name,
            f"{task.cron_expression} ({task.timezone})",
            ", ".join(str(s) for s in task.server_ids),
            "[green]yes[/green]" if task.is_enabled else "[dim]no[/dim]",
            format_countdown(task.next_execution_time),
            str(summary.stats.total),
            str(summary.stats.failed),
        )
    console.print(table)
    dim(f"Total: {len(summaries)} task(s)")


async def _task_show(config_path: Path | None, task_id: int) -> None:
    config = load_cli_config(config_path)
    async with open_runtime(config) as rt:
        summary = await rt.service.get_task(task_id)
        recent = await rt.service.list_task_executions(task_id, limit=5)

    _print_task(summary)
    if recent:
        console.print()
        print_executions(recent, title="Recent executions")


async def _task_create(config_path: Path | None, build: Any) -> None:
    config = load_cli_config(config_path)
    definition = build(config)
    async with open_runtime(config) as rt:
        task = await rt.service.create_task(definition)

    success(f"Created task {task.id}: {task.name}")
    if task.next_execution_time:
        dim(f"Next run: {format_time(task.next_execution_time)}")


async def _task_update(config_path: Path | None, task_id: int, changes: Any) -> None:
    config = load_cli_config(config_path)
    async with open_runtime(config) as rt:
        task = await rt.service.update_task(task_id, changes)

    success(f"Updated task {task.id}")
    if task.next_execution_time:
        dim(f"Next run: {format_time(task.next_execution_time)}")


async def _task_delete(config_path: Path | None, task_id: int, purge: bool) -> None:
    config = load_cli_config(config_path)
    async with open_runtime(config) as rt:
        deleted = await rt.service.delete_task(task_id, purge_history=purge)

    if not deleted:
        error(f"Task {task_id} has executions in progress; try again later")
        raise typer.Exit(1)
    success(f"Deleted task {task_id}")


async def _task_toggle(config_path: Path | None, task_id: int, enabled: bool) -> None:
    config = load_cli_config(config_path)
    async with open_runtime(config) as rt:
        found = await rt.service.toggle_task(task_id, enabled)

    if not found:
        error(f"No task found with ID {task_id}")
        raise typer.Exit(1)
    success(f"{'Enabled' if enabled else 'Disabled'} task {task_id}")


async def _task_run(
    config_path: Path | None, task_id: int, servers: list[int] | None
) -> None:
    config = load_cli_config(config_path)
    async with open_runtime(config) as rt:
        if not servers:
            servers = (await rt.service.get_task(task_id)).task.server_ids
        started = await rt.service.execute_now(task_id, servers)
        for execution in started:
            if execution.status.is_terminal:
                continue
            dim(f"Execution {execution.id} on server {execution.server_id} started")

        # Wait here; leaving the event loop would cancel the runs
        await rt.service.dispatcher.drain()
        results = [await rt.service.get_execution(e.id) for e in started]

    print_executions(results, title=f"Task {task_id}", show_output=True)
    if any(not r.status.is_terminal for r in results):
        warning("Some executions were already running and are still in progress")
    if any(r.status.is_terminal and r.exit_code != 0 for r in results):
        raise typer.Exit(1)


def _print_task(summary: TaskSummary) -> None:
    task = summary.task
    table = create_table(
        f"Task {task.id}", [("Field", "cyan"), ("Value", "white")]
    )
    table.add_row("Name", task.name)
    if task.description:
        table.add_row("Description", task.description)
    table.add_row("Command", task.command)
    table.add_row("Schedule", task.cron_expression)
    table.add_row("Timezone", task.timezone)
    table.add_row("Enabled", "yes" if task.is_enabled else "no")
    table.add_row("Timeout", f"{task.timeout_seconds}s")
    table.add_row("Servers", ", ".join(str(s) for s in task.server_ids))
    table.add_row("Last run", format_time(task.last_execution_time))
    table.add_row(
        "Next run",
        f"{format_time(task.next_execution_time)} "
        f"{format_countdown(task.next_execution_time)}",
    )
    table.add_row("Created", format_time(task.created_at))
    if task.created_by:
        table.add_row("Created by", task.created_by)
    stats = summary.stats
    table.add_row(
        "Executions",
        f"{stats.total} total, {stats.succeeded} succeeded, {stats.failed} failed",
    )
    console.print(table)

