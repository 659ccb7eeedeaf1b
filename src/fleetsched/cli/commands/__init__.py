"""CLI command modules."""

from fleetsched.cli.commands import config, cron, database, history, serve, task

__all__ = [
    "config",
    "cron",
    "database",
    "history",
    "serve",
    "task",
]
