"""Centralized path management for fleetsched.

All state (config, database, logs) is stored under a single base directory.
The base directory can be overridden with the FLEETSCHED_HOME environment variable.

Default locations:
- Linux/macOS: ~/.fleetsched
- Windows: %USERPROFILE%\\.fleetsched
"""

import os
from functools import lru_cache
from pathlib import Path

ENV_VAR = "FLEETSCHED_HOME"


@lru_cache(maxsize=1)
def get_fleetsched_home() -> Path:
    """Get the base directory for all fleetsched data.

    Resolution order:
    1. FLEETSCHED_HOME environment variable (if set)
    2. Platform default (~/.fleetsched)
    """
    if env_home := os.environ.get(ENV_VAR):
        return Path(env_home).expanduser().resolve()

    return Path.home() / ".fleetsched"


def get_config_path() -> Path:
    """Get the default config file path."""
    return get_fleetsched_home() / "config.toml"


def get_database_path() -> Path:
    """Get the default SQLite database path."""
    return get_fleetsched_home() / "data" / "fleetsched.db"


def get_logs_path() -> Path:
    """Get the JSONL log directory."""
    return get_fleetsched_home() / "logs"
