"""Scheduling service facade.

Wires the registry, history store, executor and dispatcher together and
exposes the operations an API layer or the CLI consumes.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime

from fleetsched.config.models import FleetConfig
from fleetsched.db.engine import Database
from fleetsched.db.models import utc_now
from fleetsched.remote import (
    RemoteExecutor,
    ServerInventory,
    StaticInventory,
    create_remote_executor,
)
from fleetsched.scheduling.cron import CronEngine
from fleetsched.scheduling.dispatcher import Dispatcher
from fleetsched.scheduling.errors import SchedulingError
from fleetsched.scheduling.executor import TaskExecutor
from fleetsched.scheduling.history import ExecutionHistoryStore
from fleetsched.scheduling.registry import TaskRegistry
from fleetsched.scheduling.types import (
    CronValidation,
    ExecutionStats,
    ScheduledTask,
    TaskDefinition,
    TaskExecution,
    TaskSummary,
    TaskUpdate,
)

logger = logging.getLogger(__name__)

PREVIEW_COUNT = 5
_EMPTY_STATS = ExecutionStats()


class SchedulingService:
    """Operations over scheduled tasks and their executions."""

    def __init__(
        self,
        registry: TaskRegistry,
        history: ExecutionHistoryStore,
        dispatcher: Dispatcher,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._registry = registry
        self._history = history
        self._dispatcher = dispatcher
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config: FleetConfig,
        database: Database,
        *,
        inventory: ServerInventory | None = None,
        remote: RemoteExecutor | None = None,
    ) -> SchedulingService:
        """Build the full stack from configuration.

        ``inventory`` defaults to the ``[[servers]]`` section and ``remote`` to
        the configured executor backend.
        """
        if inventory is None:
            inventory = StaticInventory.from_config(config.servers)
        if remote is None:
            remote = create_remote_executor(config, inventory)
        scheduler = config.scheduler

        cron = CronEngine()
        registry = TaskRegistry(database, cron, inventory)
        history = ExecutionHistoryStore(database, default_limit=scheduler.history_limit)
        executor = TaskExecutor(
            history, remote, max_output_bytes=scheduler.max_output_bytes
        )
        dispatcher = Dispatcher(
            registry,
            executor,
            poll_interval=scheduler.poll_interval_seconds,
            shutdown_grace=scheduler.shutdown_grace_seconds,
        )
        return cls(registry, history, dispatcher)

    @property
    def registry(self) -> TaskRegistry:
        return self._registry

    @property
    def history(self) -> ExecutionHistoryStore:
        return self._history

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    async def start(self) -> None:
        await self._dispatcher.start()

    async def stop(self) -> None:
        await self._dispatcher.stop()

    # Tasks

    async def create_task(self, definition: TaskDefinition) -> ScheduledTask:
        return await self._registry.create(definition)

    async def update_task(self, task_id: int, changes: TaskUpdate) -> ScheduledTask:
        return await self._registry.update(task_id, changes)

    async def delete_task(self, task_id: int, *, purge_history: bool = False) -> bool:
        return await self._registry.delete(task_id, purge_history=purge_history)

    async def toggle_task(self, task_id: int, enabled: bool) -> bool:
        return await self._registry.toggle(task_id, enabled)

    async def get_task(self, task_id: int) -> TaskSummary:
        task = await self._registry.get(task_id)
        stats = await self._history.stats_for_task(task.id)
        return TaskSummary(task=task, stats=stats)

    async def list_tasks(self, *, enabled_only: bool = False) -> list[TaskSummary]:
        tasks = await self._registry.list_tasks(enabled_only=enabled_only)
        stats = await self._history.stats_for_tasks([t.id for t in tasks])
        return [
            TaskSummary(task=task, stats=stats.get(task.id, _EMPTY_STATS))
            for task in tasks
        ]

    # Schedules

    def validate_cron(
        self,
        expression: str,
        timezone: str = "UTC",
        *,
        count: int = PREVIEW_COUNT,
    ) -> CronValidation:
        """Check an expression and preview its next fire times.

        Never raises for bad input; problems are reported on the result.
        """
        cron = self._registry.cron
        now = self._clock()
        try:
            upcoming = cron.preview(expression, timezone, now, count=count)
        except SchedulingError as e:
            return CronValidation(is_valid=False, timezone=timezone, error=str(e))
        return CronValidation(
            is_valid=True,
            timezone=timezone,
            next_execution=upcoming[0] if upcoming else None,
            upcoming=upcoming,
        )

    # Executions

    async def execute_now(
        self, task_id: int, server_ids: Iterable[int]
    ) -> list[TaskExecution]:
        return await self._dispatcher.execute_now(task_id, server_ids)

    async def list_task_executions(
        self, task_id: int, limit: int | None = None
    ) -> list[TaskExecution]:
        return await self._history.list_by_task(task_id, limit)

    async def list_server_executions(
        self, server_id: int, limit: int | None = None
    ) -> list[TaskExecution]:
        return await self._history.list_by_server(server_id, limit)

    async def get_execution(self, execution_id: int) -> TaskExecution:
        return await self._history.get(execution_id)

