"""Server command for running the scheduler daemon."""

import asyncio
import logging
from pathlib import Path
from typing import Annotated

import typer

logger = logging.getLogger(__name__)


def register(app: typer.Typer) -> None:
    """Register the serve command."""

    @app.command()
    def serve(
        config: Annotated[
            Path | None,
            typer.Option(
                "--config",
                "-c",
                help="Path to configuration file",
            ),
        ] = None,
        host: Annotated[
            str | None,
            typer.Option(
                "--host",
                "-h",
                help="Host to bind the health endpoint to",
            ),
        ] = None,
        port: Annotated[
            int | None,
            typer.Option(
                "--port",
                "-p",
                help="Port to bind the health endpoint to",
            ),
        ] = None,
    ) -> None:
        """Start the scheduler daemon."""
        try:
            asyncio.run(_run_server(config, host, port))
        except KeyboardInterrupt:
            # Use print here since logging may not be configured yet
            print("\nServer stopped")


async def _run_server(
    config_path: Path | None = None,
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Run the daemon asynchronously."""
    from fleetsched.cli.runtime import load_cli_config
    from fleetsched.db import Database
    from fleetsched.logging import configure_logging, configure_redaction
    from fleetsched.scheduling import SchedulingService
    from fleetsched.server import ServerRunner, create_app

    # Rich console output plus JSONL files for the daemon
    configure_logging(use_rich=True, log_to_file=True)

    logger.info("config_loading")
    config = load_cli_config(config_path)
    configure_redaction(
        enabled=config.logging.redact_secrets,
        extra_patterns=config.logging.redact_patterns,
    )

    if config.sentry:
        from fleetsched.observability import init_sentry

        init_sentry(config.sentry, server_mode=True)

    if not config.servers:
        logger.warning("no_servers_configured")

    database = Database(database_url=config.database_url)
    service = SchedulingService.from_config(config, database)
    app = create_app(
        database,
        service,
        create_tables=config.database.create_tables,
    )

    runner = ServerRunner(
        app,
        host=host or config.http.host,
        port=port or config.http.port,
    )
    await runner.run()
