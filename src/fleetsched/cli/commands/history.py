"""Execution history command."""

import asyncio
from pathlib import Path
from typing import Annotated

import typer

from fleetsched.cli.console import dim, error


def register(app: typer.Typer) -> None:
    """Register the history command."""

    @app.command()
    def history(
        task_id: Annotated[
            int | None, typer.Option("--task", "-t", help="Show runs of this task")
        ] = None,
        server_id: Annotated[
            int | None,
            typer.Option("--server", "-s", help="Show runs on this server"),
        ] = None,
        limit: Annotated[
            int | None,
            typer.Option("--limit", "-n", help="Maximum rows (default from config)"),
        ] = None,
        output: Annotated[
            bool, typer.Option("--output", help="Print captured output")
        ] = False,
        config: Annotated[
            Path | None,
            typer.Option("--config", "-c", help="Path to configuration file"),
        ] = None,
    ) -> None:
        """Show recent executions, newest first.

        Examples:
            fleetsched history --task 3
            fleetsched history --server 12 --limit 20
        """
        if (task_id is None) == (server_id is None):
            error("Pass exactly one of --task or --server")
            raise typer.Exit(1)
        asyncio.run(_history(config, task_id, server_id, limit, output))


async def _history(
    config_path: Path | None,
    task_id: int | None,
    server_id: int | None,
    limit: int | None,
    show_output: bool,
) -> None:
    from fleetsched.cli.console import print_executions
    from fleetsched.cli.runtime import load_cli_config, open_runtime

    config = load_cli_config(config_path)
    async with open_runtime(config) as rt:
        if task_id is not None:
            executions = await rt.service.list_task_executions(task_id, limit)
            title = f"Executions of task {task_id}"
        else:
            assert server_id is not None
            executions = await rt.service.list_server_executions(server_id, limit)
            title = f"Executions on server {server_id}"

    if not executions:
        dim("No executions found")
        return
    print_executions(executions, title=title, show_output=show_output)
