"""Configuration models using Pydantic."""

import logging
from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from fleetsched.config.paths import get_database_path

logger = logging.getLogger(__name__)


def _check_timezone(value: str) -> str:
    try:
        ZoneInfo(value)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {value}") from None
    return value


class DatabaseConfig(BaseModel):
    """Database location.

    ``url`` takes precedence over ``path`` and must name an async driver
    (e.g. ``sqlite+aiosqlite:///...`` or ``postgresql+asyncpg://...``).
    """

    path: Path = Field(default_factory=get_database_path)
    url: str | None = None
    create_tables: bool = True


class SchedulerConfig(BaseModel):
    """Dispatcher and executor tuning."""

    # Matches the coarsest cron granularity
    poll_interval_seconds: float = Field(default=60.0, gt=0)
    default_timeout_seconds: int = Field(default=300, gt=0)
    history_limit: int = Field(default=50, gt=0)
    max_output_bytes: int = Field(default=64 * 1024, gt=0)
    shutdown_grace_seconds: float = Field(default=30.0, ge=0)


class ExecutorConfig(BaseModel):
    """Remote executor backend.

    ``ssh`` shells out to the OpenSSH client; ``local`` runs commands on this
    host and is meant for development and single-machine setups.
    """

    backend: Literal["ssh", "local"] = "ssh"
    ssh_binary: str = "ssh"
    connect_timeout: int = Field(default=10, gt=0)
    ssh_options: list[str] = Field(default_factory=list)


class ServerEntry(BaseModel):
    """A remote machine tasks can be bound to."""

    id: int
    name: str
    host: str
    port: int = 22
    user: str | None = None
    identity_file: Path | None = None


class HttpConfig(BaseModel):
    """Health endpoint bind address for `fleetsched serve`."""

    host: str = "127.0.0.1"
    port: int = 8080


class LoggingConfig(BaseModel):
    """Log redaction settings."""

    redact_secrets: bool = True
    redact_patterns: list[str] = Field(default_factory=list)


class SentryConfig(BaseModel):
    """Configuration for Sentry error reporting."""

    dsn: SecretStr | None = None
    environment: str = "production"
    release: str | None = None
    traces_sample_rate: float = 0.0
    profiles_sample_rate: float = 0.0
    send_default_pii: bool = False
    debug: bool = False


class ConfigError(Exception):
    """Configuration error."""

    pass


class FleetConfig(BaseModel):
    """Root configuration model."""

    # Default timezone for newly defined tasks (IANA name)
    timezone: str = "UTC"
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    servers: list[ServerEntry] = Field(default_factory=list)
    http: HttpConfig = Field(default_factory=HttpConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    sentry: SentryConfig | None = None

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        return _check_timezone(value)

    @model_validator(mode="after")
    def _validate_servers(self) -> "FleetConfig":
        seen: set[int] = set()
        for server in self.servers:
            if server.id in seen:
                raise ValueError(f"Duplicate server id: {server.id}")
            seen.add(server.id)
        return self

    def get_server(self, server_id: int) -> ServerEntry:
        """Get a configured server by id.

        Raises:
            ConfigError: If the id is not configured.
        """
        for server in self.servers:
            if server.id == server_id:
                return server
        available = ", ".join(str(s.id) for s in self.servers) or "none"
        raise ConfigError(f"Unknown server id {server_id}. Available: {available}")

    @property
    def database_url(self) -> str:
        if self.database.url:
            return self.database.url
        return f"sqlite+aiosqlite:///{self.database.path}"
