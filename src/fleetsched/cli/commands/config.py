"""Configuration management commands."""

from pathlib import Path
from typing import Annotated

import click
import typer

from fleetsched.cli.console import console, error, success


def register(app: typer.Typer) -> None:
    """Register the config command."""

    @app.command()
    def config(
        action: Annotated[
            str | None,
            typer.Argument(help="Action: show, validate"),
        ] = None,
        path: Annotated[
            Path | None,
            typer.Option(
                "--path",
                "-p",
                help="Path to config file (default: $FLEETSCHED_HOME/config.toml)",
            ),
        ] = None,
    ) -> None:
        """Show or validate the configuration file."""
        if action is None:
            ctx = click.get_current_context()
            click.echo(ctx.get_help())
            raise typer.Exit(0)

        from pydantic import ValidationError
        from rich.syntax import Syntax
        from rich.table import Table

        from fleetsched.config import load_config
        from fleetsched.config.paths import get_config_path

        expanded_path = path.expanduser() if path else get_config_path()

        if action == "show":
            if not expanded_path.exists():
                error(f"Config file not found: {expanded_path}")
                raise typer.Exit(1)

            content = expanded_path.read_text()
            syntax = Syntax(content, "toml", theme="monokai", line_numbers=True)
            console.print(f"[bold]Config file: {expanded_path}[/bold]\n")
            console.print(syntax)

        elif action == "validate":
            if not expanded_path.exists():
                error(f"Config file not found: {expanded_path}")
                raise typer.Exit(1)

            try:
                config_obj = load_config(expanded_path)
            except ValidationError as e:
                error("Configuration validation failed:")
                for err in e.errors():
                    loc = ".".join(str(part) for part in err["loc"])
                    console.print(f"  [red]{loc}[/red]: {err['msg']}")
                raise typer.Exit(1) from None
            except ValueError as e:
                error(f"Error parsing config: {e}")
                raise typer.Exit(1) from None

            table = Table(title="Configuration Summary")
            table.add_column("Setting", style="cyan")
            table.add_column("Value", style="green")
            table.add_row("Timezone", config_obj.timezone)
            table.add_row("Database", _safe_url(config_obj.database_url))
            table.add_row("Executor", config_obj.executor.backend)
            table.add_row(
                "Poll interval", f"{config_obj.scheduler.poll_interval_seconds:g}s"
            )
            table.add_row(
                "Default timeout", f"{config_obj.scheduler.default_timeout_seconds}s"
            )
            table.add_row("Servers", str(len(config_obj.servers)))
            for server in config_obj.servers:
                table.add_row(f"  Server {server.id}", f"{server.name} ({server.host})")
            table.add_row(
                "Sentry",
                "enabled" if config_obj.sentry and config_obj.sentry.dsn else "off",
            )
            console.print(table)
            success("Configuration is valid")

        else:
            error(f"Unknown action: {action}")
            console.print("Valid actions: show, validate")
            raise typer.Exit(1)


def _safe_url(url: str) -> str:
    from sqlalchemy.engine import make_url

    try:
        return make_url(url).render_as_string(hide_password=True)
    except Exception:
        return url
