"""Dispatcher: polls for due tasks and fans them out to the executor.

The dispatcher owns the polling loop and the set of in-flight runs. All
data access is delegated to TaskRegistry and ExecutionHistoryStore.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from enum import StrEnum

from fleetsched.db.models import utc_now
from fleetsched.scheduling.executor import TaskExecutor
from fleetsched.scheduling.registry import TaskRegistry
from fleetsched.scheduling.types import ScheduledTask, TaskExecution

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 60.0
DEFAULT_SHUTDOWN_GRACE = 30.0
# Heartbeat every 60 polls (~1 hour at the default interval)
HEARTBEAT_INTERVAL = 60


class DispatcherState(StrEnum):
    IDLE = "idle"
    POLLING = "polling"
    DISPATCHING = "dispatching"


class Dispatcher:
    """Turns due tasks into concurrent executions.

    Example:
        dispatcher = Dispatcher(registry, executor, poll_interval=60)
        await dispatcher.start()
        ...
        await dispatcher.stop()
    """

    def __init__(
        self,
        registry: TaskRegistry,
        executor: TaskExecutor,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        shutdown_grace: float = DEFAULT_SHUTDOWN_GRACE,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._registry = registry
        self._executor = executor
        self._poll_interval = poll_interval
        self._shutdown_grace = shutdown_grace
        self._clock = clock
        self._state = DispatcherState.IDLE
        self._running = False
        self._task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()
        self._poll_count = 0
        self._last_tick: datetime | None = None

    @property
    def state(self) -> DispatcherState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    @property
    def last_tick(self) -> datetime | None:
        return self._last_tick

    async def start(self) -> None:
        if self._running:
            return
        recovered = await self._executor.history.recover_orphans(self._clock())
        self._running = True
        logger.info(
            "dispatcher_started",
            extra={
                "dispatcher.poll_interval": self._poll_interval,
                "dispatcher.recovered": recovered,
            },
        )
        self._task = asyncio.create_task(self._poll_loop())

    async def stop(self) -> None:
        """Stop polling, then wait out (or cancel) in-flight executions."""
        if not self._running:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None

        pending = await self.drain(self._shutdown_grace)
        if pending:
            logger.warning("dispatcher_cancelling_executions", extra={"count": pending})
            for task in list(self._inflight):
                task.cancel()
            await asyncio.gather(*self._inflight, return_exceptions=True)

        self._state = DispatcherState.IDLE
        logger.info("dispatcher_stopped")

    async def drain(self, timeout: float | None = None) -> int:
        """Wait for in-flight executions.

        Returns:
            How many were still running when ``timeout`` elapsed.
        """
        if not self._inflight:
            return 0
        _done, pending = await asyncio.wait(set(self._inflight), timeout=timeout)
        return len(pending)

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                self._poll_count += 1
                if self._poll_count % HEARTBEAT_INTERVAL == 0:
                    logger.info(
                        "dispatcher_heartbeat",
                        extra={
                            "poll.count": self._poll_count,
                            "dispatcher.inflight": self.inflight_count,
                        },
                    )
                # Rows abandoned by a crash that happened just before start
                # only become recoverable once their timeout has passed
                await self._executor.history.recover_orphans(self._clock())
                await self.tick()
            except Exception as e:
                self._state = DispatcherState.IDLE
                logger.error(
                    "dispatcher_tick_error",
                    extra={"error.message": str(e)},
                    exc_info=True,
                )
            await asyncio.sleep(self._poll_interval)

    async def tick(self, now: datetime | None = None) -> list[TaskExecution]:
        """Claim due tasks and submit one execution per bound server.

        Returns without waiting for the executions to finish.
        """
        now = now or self._clock()
        self._last_tick = now
        self._state = DispatcherState.POLLING
        try:
            claimed = await self._registry.claim_due_tasks(now)
            if not claimed:
                return []

            self._state = DispatcherState.DISPATCHING
            submitted: list[TaskExecution] = []
            for task in claimed:
                if not task.server_ids:
                    logger.warning("task_has_no_servers", extra={"task.id": task.id})
                    continue
                for server_id in task.server_ids:
                    try:
                        execution = await self._submit(task, server_id)
                    except Exception as e:
                        logger.error(
                            "execution_submit_failed",
                            extra={
                                "task.id": task.id,
                                "server.id": server_id,
                                "error.message": str(e),
                            },
                            exc_info=True,
                        )
                        continue
                    submitted.append(execution)

            logger.debug(
                f"Dispatch tick: {len(claimed)} tasks claimed, "
                f"{len(submitted)} executions submitted"
            )
            return submitted
        finally:
            self._state = DispatcherState.IDLE

    async def execute_now(
        self, task_id: int, server_ids: Iterable[int]
    ) -> list[TaskExecution]:
        """Run a task immediately on some of its bound servers.

        Does not change the task's schedule. Every id is checked before any
        record is created.

        Returns:
            One record per server: freshly started, or the run already in
            flight for that pair.

        Raises:
            TaskNotFoundError: Unknown task.
            InvalidArgumentError: An id is not bound to the task.
        """
        task = await self._registry.get(task_id)
        targets = await self._registry.validate_manual_targets(task, server_ids)

        logger.info(
            "manual_execution_requested",
            extra={"task.id": task.id, "task.server_ids": targets},
        )
        return [await self._submit(task, server_id) for server_id in targets]

    async def _submit(self, task: ScheduledTask, server_id: int) -> TaskExecution:
        execution, created = await self._executor.begin(task, server_id)
        if created:
            run = asyncio.create_task(
                self._executor.complete(task, execution),
                name=f"execution-{execution.id}",
            )
            self._inflight.add(run)
            run.add_done_callback(self._on_done)
        return execution

    def _on_done(self, run: asyncio.Task) -> None:
        self._inflight.discard(run)
        if run.cancelled():
            return
        exc = run.exception()
        if exc is not None:
            logger.error(
                "execution_task_crashed",
                extra={"task.name": run.get_name(), "error.message": str(exc)},
                exc_info=exc,
            )
