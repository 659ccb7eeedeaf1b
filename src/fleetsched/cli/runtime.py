"""Shared runtime bootstrap helpers for CLI entrypoints."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

import typer

from fleetsched.cli.console import error
from fleetsched.config import FleetConfig, load_config_or_default
from fleetsched.db import Database
from fleetsched.scheduling import SchedulingService


@dataclass(slots=True)
class Runtime:
    """Composed dependencies for CLI command handlers."""

    config: FleetConfig
    database: Database
    service: SchedulingService


def load_cli_config(config_path: Path | None) -> FleetConfig:
    """Load config for a command, exiting with an error message on failure."""
    from pydantic import ValidationError

    try:
        return load_config_or_default(config_path)
    except FileNotFoundError as e:
        error(str(e))
        raise typer.Exit(1) from None
    except (ValidationError, ValueError) as e:
        error(f"Invalid configuration: {e}")
        raise typer.Exit(1) from None


@asynccontextmanager
async def open_runtime(config: FleetConfig) -> AsyncIterator[Runtime]:
    """Connect the database and build the scheduling service.

    The dispatcher loop is not started; commands drive it directly.
    """
    database = Database(database_url=config.database_url)
    await database.connect()
    try:
        if config.database.create_tables:
            await database.create_all()
        yield Runtime(
            config=config,
            database=database,
            service=SchedulingService.from_config(config, database),
        )
    finally:
        await database.disconnect()
