"""Shared test fixtures and factories."""

import asyncio
from collections.abc import AsyncGenerator, Callable
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from fleetsched.config.models import FleetConfig
from fleetsched.db.engine import Database
from fleetsched.db.models import Base
from fleetsched.remote.base import CommandResult, RemoteTimeoutError
from fleetsched.remote.inventory import ServerSpec, StaticInventory
from fleetsched.scheduling.cron import CronEngine
from fleetsched.scheduling.dispatcher import Dispatcher
from fleetsched.scheduling.executor import TaskExecutor
from fleetsched.scheduling.history import ExecutionHistoryStore
from fleetsched.scheduling.registry import TaskRegistry
from fleetsched.scheduling.service import SchedulingService
from fleetsched.scheduling.types import (
    ExecutionStatus,
    TaskDefinition,
    TaskExecution,
)

# =============================================================================
# Clock and remote fakes
# =============================================================================

START = datetime(2024, 1, 1, 0, 2, tzinfo=UTC)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeRemote:
    """Remote executor that records calls and returns scripted outcomes.

    Outcomes are keyed by server id; anything not scripted succeeds with
    ``ok``. An outcome may be a CommandResult or an exception to raise.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[int, str, float]] = []
        self.outcomes: dict[int, CommandResult | Exception] = {}
        self.delay: float = 0.0
        # When False the fake ignores ``timeout`` like a misbehaving adapter
        self.honor_timeout = True
        self.gate: asyncio.Event | None = None

    async def execute(
        self, server_id: int, command: str, *, timeout: float
    ) -> CommandResult:
        self.calls.append((server_id, command, timeout))
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            if self.honor_timeout and self.delay > timeout:
                await asyncio.sleep(timeout)
                raise RemoteTimeoutError(
                    timeout, server_id=server_id, stdout="partial output"
                )
            await asyncio.sleep(self.delay)

        outcome = self.outcomes.get(server_id, CommandResult(0, "ok\n", ""))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _definition(**overrides) -> TaskDefinition:
    fields = {
        "name": "rotate-logs",
        "command": "logrotate /etc/logrotate.conf",
        "cron_expression": "*/5 * * * *",
        "server_ids": [1, 2],
        "timezone": "UTC",
        "timeout_seconds": 30,
    }
    fields.update(overrides)
    return TaskDefinition(**fields)


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def database(tmp_path: Path) -> AsyncGenerator[Database, None]:
    """Create a temporary test database."""
    db_path = tmp_path / "test.db"
    db = Database(database_path=db_path)
    await db.connect()

    async with db.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield db

    await db.disconnect()


# =============================================================================
# Scheduling Fixtures
# =============================================================================


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cron() -> CronEngine:
    return CronEngine()


@pytest.fixture
def inventory() -> StaticInventory:
    return StaticInventory(
        [
            ServerSpec(id=1, name="web-1", host="10.0.0.1"),
            ServerSpec(id=2, name="web-2", host="10.0.0.2"),
            ServerSpec(id=3, name="db-1", host="10.0.0.3", user="admin"),
        ]
    )


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def registry(
    database: Database,
    cron: CronEngine,
    inventory: StaticInventory,
    clock: FakeClock,
) -> TaskRegistry:
    return TaskRegistry(database, cron, inventory, clock=clock)


@pytest.fixture
def history(database: Database) -> ExecutionHistoryStore:
    return ExecutionHistoryStore(database)


@pytest.fixture
def executor(history: ExecutionHistoryStore, remote: FakeRemote) -> TaskExecutor:
    return TaskExecutor(history, remote)


@pytest.fixture
def dispatcher(registry: TaskRegistry, executor: TaskExecutor) -> Dispatcher:
    return Dispatcher(registry, executor, poll_interval=0.05, shutdown_grace=0.2)


@pytest.fixture
def service(
    registry: TaskRegistry,
    history: ExecutionHistoryStore,
    dispatcher: Dispatcher,
    clock: FakeClock,
) -> SchedulingService:
    return SchedulingService(registry, history, dispatcher, clock=clock)


@pytest.fixture
def task_factory(registry: TaskRegistry) -> Callable:
    async def create(**overrides):
        return await registry.create(_definition(**overrides))

    return create


@pytest.fixture
def make_definition() -> Callable[..., TaskDefinition]:
    """Build a valid TaskDefinition, overriding any field."""
    return _definition


@pytest.fixture
def finish_execution(history: ExecutionHistoryStore) -> Callable:
    """Terminalize an execution record directly through the history store."""

    async def finish(
        execution: TaskExecution,
        status: ExecutionStatus = ExecutionStatus.SUCCEEDED,
        *,
        exit_code: int | None = 0,
        seconds: float = 1.0,
    ) -> TaskExecution:
        final = replace(
            execution,
            status=status,
            completed_at=execution.started_at + timedelta(seconds=seconds),
            exit_code=exit_code,
            output="done",
            duration_ms=int(seconds * 1000),
        )
        await history.update_terminal(final)
        return final

    return finish


# =============================================================================
# Configuration / CLI Fixtures
# =============================================================================


@pytest.fixture
def config_toml_content(tmp_path: Path) -> str:
    db_path = tmp_path / "data" / "fleetsched.db"
    return f"""
timezone = "UTC"

[database]
path = "{db_path}"

[scheduler]
poll_interval_seconds = 30
default_timeout_seconds = 10

[executor]
backend = "local"

[[servers]]
id = 1
name = "web-1"
host = "10.0.0.1"

[[servers]]
id = 2
name = "web-2"
host = "10.0.0.2"
user = "deploy"
"""


@pytest.fixture
def config_file(tmp_path: Path, config_toml_content: str) -> Path:
    path = tmp_path / "config.toml"
    path.write_text(config_toml_content)
    return path


@pytest.fixture
def minimal_config(tmp_path: Path) -> FleetConfig:
    return FleetConfig.model_validate(
        {
            "database": {"path": str(tmp_path / "fleetsched.db")},
            "executor": {"backend": "local"},
            "servers": [{"id": 1, "name": "local", "host": "localhost"}],
        }
    )


@pytest.fixture
def cli_runner():
    """Create a Typer CLI test runner with colors disabled."""
    from typer.testing import CliRunner

    return CliRunner(env={"NO_COLOR": "1", "COLUMNS": "200"})


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point FLEETSCHED_HOME at a temp dir so no test touches ~/.fleetsched."""
    from fleetsched.config.paths import ENV_VAR, get_fleetsched_home

    home = tmp_path / "home"
    monkeypatch.setenv(ENV_VAR, str(home))
    monkeypatch.delenv("FLEETSCHED_DATABASE_URL", raising=False)
    monkeypatch.delenv("SENTRY_DSN", raising=False)
    get_fleetsched_home.cache_clear()
    yield home
    get_fleetsched_home.cache_clear()
