"""Cron expression commands."""

from typing import Annotated

import typer

from fleetsched.cli.console import console, create_table, dim, error, success


def register(app: typer.Typer) -> None:
    """Register the cron command group."""
    cron_app = typer.Typer(help="Cron expression helpers")

    @cron_app.command("validate")
    def cron_validate(
        expression: Annotated[str, typer.Argument(help="Cron expression")],
        timezone: Annotated[
            str,
            typer.Option("--timezone", "-t", help="IANA timezone to evaluate in"),
        ] = "UTC",
        count: Annotated[
            int,
            typer.Option("--count", "-n", help="Number of fire times to preview"),
        ] = 5,
    ) -> None:
        """Validate a cron expression and preview its next fire times.

        Examples:
            fleetsched cron validate "*/5 * * * *"
            fleetsched cron validate "0 0 3 * * *" --timezone Europe/Berlin
        """
        from datetime import UTC, datetime
        from zoneinfo import ZoneInfo

        from fleetsched.scheduling.cron import CronEngine
        from fleetsched.scheduling.errors import SchedulingError

        engine = CronEngine()
        now = datetime.now(UTC)
        try:
            upcoming = engine.preview(expression, timezone, now, count=count)
        except SchedulingError as e:
            error(str(e))
            raise typer.Exit(1) from None

        success(f"Valid expression: {expression}")
        if not upcoming:
            dim("This schedule never fires again")
            return

        table = create_table(
            f"Next {len(upcoming)} fire times ({timezone})",
            [("#", "dim"), ("Local", "cyan"), ("UTC", "green")],
        )
        zone = ZoneInfo(timezone)
        for i, fire in enumerate(upcoming, 1):
            table.add_row(
                str(i),
                fire.astimezone(zone).strftime("%Y-%m-%d %H:%M:%S %Z"),
                fire.strftime("%Y-%m-%d %H:%M:%S"),
            )
        console.print(table)

    app.add_typer(cron_app, name="cron")
