"""Configuration module."""

from fleetsched.config.loader import (
    get_default_config,
    load_config,
    load_config_or_default,
)
from fleetsched.config.models import (
    ConfigError,
    DatabaseConfig,
    ExecutorConfig,
    FleetConfig,
    HttpConfig,
    LoggingConfig,
    SchedulerConfig,
    SentryConfig,
    ServerEntry,
)
from fleetsched.config.paths import (
    get_config_path,
    get_database_path,
    get_fleetsched_home,
    get_logs_path,
)

__all__ = [
    "ConfigError",
    "DatabaseConfig",
    "ExecutorConfig",
    "FleetConfig",
    "HttpConfig",
    "LoggingConfig",
    "SchedulerConfig",
    "SentryConfig",
    "ServerEntry",
    "get_config_path",
    "get_database_path",
    "get_default_config",
    "get_fleetsched_home",
    "get_logs_path",
    "load_config",
    "load_config_or_default",
]
