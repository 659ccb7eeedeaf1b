"""Configuration loading from TOML files and environment variables."""

import os
import tomllib
from pathlib import Path
from typing import Any

from pydantic import SecretStr

from fleetsched.config.models import FleetConfig
from fleetsched.config.paths import get_config_path

DATABASE_URL_ENV = "FLEETSCHED_DATABASE_URL"
SENTRY_DSN_ENV = "SENTRY_DSN"


def _get_default_config_paths() -> list[Path]:
    """Get ordered list of default config file locations."""
    return [
        Path("config.toml"),  # Current directory
        get_config_path(),  # ~/.fleetsched/config.toml (or FLEETSCHED_HOME)
        Path("/etc/fleetsched/config.toml"),  # System-wide
    ]


def _resolve_env(config: dict[str, Any]) -> dict[str, Any]:
    """Fill values from environment variables where not set in config."""
    if database_url := os.environ.get(DATABASE_URL_ENV):
        database = config.setdefault("database", {})
        if not database.get("url"):
            database["url"] = database_url

    sentry = config.get("sentry")
    if sentry is not None and sentry.get("dsn") is None:
        if dsn := os.environ.get(SENTRY_DSN_ENV):
            sentry["dsn"] = SecretStr(dsn)

    return config


def load_config(path: Path | None = None) -> FleetConfig:
    """Load configuration from TOML file.

    Args:
        path: Explicit path to config file. If None, searches default locations.

    Returns:
        Validated FleetConfig instance.

    Raises:
        FileNotFoundError: If no config file is found.
        ValueError: If config file is invalid.
    """
    config_path: Path | None = None

    default_paths = _get_default_config_paths()

    if path is not None:
        config_path = Path(path).expanduser()
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        for default_path in default_paths:
            expanded = default_path.expanduser()
            if expanded.exists():
                config_path = expanded
                break

    if config_path is None:
        raise FileNotFoundError(
            f"No config file found. Searched: {', '.join(str(p) for p in default_paths)}"
        )

    with config_path.open("rb") as f:
        raw_config = tomllib.load(f)

    raw_config = _resolve_env(raw_config)

    return FleetConfig.model_validate(raw_config)


def load_config_or_default(path: Path | None = None) -> FleetConfig:
    """Load configuration, falling back to defaults when no file exists.

    An explicit ``path`` that does not exist is still an error.
    """
    if path is not None:
        return load_config(path)
    try:
        return load_config()
    except FileNotFoundError:
        return get_default_config()


def get_default_config() -> FleetConfig:
    """Get a default configuration for development/testing."""
    return FleetConfig.model_validate(_resolve_env({}))
