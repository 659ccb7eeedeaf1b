"""Single-run task executor.

Runs one task on one server: a guarded insert of the ``running`` record,
then the remote call raced against the task timeout, then exactly one
terminal write. Nothing raised by the remote side escapes; every failure
ends up on the execution record.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime

from fleetsched.db.models import utc_now
from fleetsched.remote.base import (
    RemoteError,
    RemoteExecutor,
    RemoteTimeoutError,
)
from fleetsched.scheduling.history import ExecutionHistoryStore
from fleetsched.scheduling.types import ExecutionStatus, ScheduledTask, TaskExecution

logger = logging.getLogger(__name__)

DEFAULT_MAX_OUTPUT_BYTES = 64 * 1024
# Extra time given to the remote side to kill the command and report partial
# output before the executor abandons the call itself: a fraction of the
# timeout, capped.
REMOTE_KILL_GRACE_RATIO = 0.05
REMOTE_KILL_GRACE_SECONDS = 0.5
TRUNCATION_MARKER = "\n... [output truncated]"
CANCELLED_MESSAGE = "Execution cancelled: scheduler shutting down"

_Key = tuple[int, int]


class TaskExecutor:
    """Executes (task, server) pairs with at most one active run per pair."""

    def __init__(
        self,
        history: ExecutionHistoryStore,
        remote: RemoteExecutor,
        *,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._history = history
        self._remote = remote
        self._max_output_bytes = max_output_bytes
        self._clock = clock
        self._monotonic = monotonic
        self._locks: dict[_Key, asyncio.Lock] = {}
        self._lock_users: dict[_Key, int] = {}
        self._started: dict[int, float] = {}

    @property
    def history(self) -> ExecutionHistoryStore:
        return self._history

    async def run(self, task: ScheduledTask, server_id: int) -> TaskExecution:
        """Run to completion, or return the in-flight record for this pair."""
        execution, created = await self.begin(task, server_id)
        if not created:
            return execution
        return await self.complete(task, execution)

    async def begin(
        self, task: ScheduledTask, server_id: int
    ) -> tuple[TaskExecution, bool]:
        """Create the ``running`` record for a pair.

        Returns:
            The record and whether this call created it. When the pair already
            has an active execution that record is returned untouched.
        """
        async with self._guard((task.id, server_id)):
            execution, created = await self._history.append(
                task.id, server_id, self._clock()
            )
            if created:
                self._started[execution.id] = self._monotonic()

        if created:
            logger.info(
                "execution_started",
                extra={
                    "execution.id": execution.id,
                    "task.id": task.id,
                    "server.id": server_id,
                },
            )
        else:
            logger.info(
                "execution_already_running",
                extra={
                    "execution.id": execution.id,
                    "task.id": task.id,
                    "server.id": server_id,
                },
            )
        return execution, created

    async def complete(
        self, task: ScheduledTask, execution: TaskExecution
    ) -> TaskExecution:
        """Run the command for a record created by ``begin`` and terminalize it."""
        started = self._started.pop(execution.id, None)
        if started is None:
            elapsed = (self._clock() - execution.started_at).total_seconds()
            started = self._monotonic() - max(0.0, elapsed)

        timeout = task.timeout_seconds
        try:
            result = await asyncio.wait_for(
                self._remote.execute(
                    execution.server_id, task.command, timeout=timeout
                ),
                timeout=backstop_deadline(timeout),
            )
        except RemoteTimeoutError as e:
            outcome = _Outcome(
                ExecutionStatus.TIMED_OUT,
                stdout=e.stdout,
                stderr=_join(e.stderr, _timeout_message(timeout)),
            )
        except TimeoutError:
            outcome = _Outcome(
                ExecutionStatus.TIMED_OUT, stderr=_timeout_message(timeout)
            )
        except RemoteError as e:
            outcome = _Outcome(ExecutionStatus.FAILED, stderr=str(e))
        except asyncio.CancelledError:
            await self._finish(
                task,
                execution,
                _Outcome(ExecutionStatus.FAILED, stderr=CANCELLED_MESSAGE),
                started,
            )
            raise
        except Exception as e:
            logger.exception(
                "execution_error",
                extra={"execution.id": execution.id, "task.id": task.id},
            )
            outcome = _Outcome(
                ExecutionStatus.FAILED, stderr=f"{type(e).__name__}: {e}"
            )
        else:
            status = (
                ExecutionStatus.SUCCEEDED
                if result.exit_code == 0
                else ExecutionStatus.FAILED
            )
            outcome = _Outcome(
                status,
                stdout=result.stdout,
                stderr=result.stderr,
                exit_code=result.exit_code,
            )

        return await self._finish(task, execution, outcome, started)

    async def _finish(
        self,
        task: ScheduledTask,
        execution: TaskExecution,
        outcome: _Outcome,
        started: float,
    ) -> TaskExecution:
        duration_ms = max(0, int((self._monotonic() - started) * 1000))
        final = replace(
            execution,
            status=outcome.status,
            completed_at=self._clock(),
            output=_truncate(outcome.stdout, self._max_output_bytes),
            error_output=_truncate(outcome.stderr, self._max_output_bytes),
            exit_code=outcome.exit_code,
            duration_ms=duration_ms,
        )
        await self._history.update_terminal(final)

        extra = {
            "execution.id": final.id,
            "task.id": task.id,
            "server.id": final.server_id,
            "execution.status": final.status.value,
            "execution.exit_code": final.exit_code,
            "execution.duration_ms": duration_ms,
        }
        if final.status is ExecutionStatus.SUCCEEDED:
            logger.info("execution_succeeded", extra=extra)
        elif final.status is ExecutionStatus.TIMED_OUT:
            logger.warning("execution_timed_out", extra=extra)
        else:
            logger.warning("execution_failed", extra=extra)
        return final

    @asynccontextmanager
    async def _guard(self, key: _Key) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                self._locks.pop(key, None)


class _Outcome:
    __slots__ = ("status", "stdout", "stderr", "exit_code")

    def __init__(
        self,
        status: ExecutionStatus,
        *,
        stdout: str | None = None,
        stderr: str | None = None,
        exit_code: int | None = None,
    ) -> None:
        self.status = status
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code


def backstop_deadline(timeout: float) -> float:
    """Seconds after which the executor gives up on a remote call."""
    return timeout + min(REMOTE_KILL_GRACE_SECONDS, timeout * REMOTE_KILL_GRACE_RATIO)


def _timeout_message(timeout: float) -> str:
    return f"Task execution timed out after {timeout:g} seconds"


def _join(first: str | None, second: str) -> str:
    if not first or not first.strip():
        return second
    return f"{first.rstrip()}\n{second}"


def _truncate(text: str | None, max_bytes: int) -> str | None:
    if text is None:
        return None
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max_bytes].decode("utf-8", errors="ignore") + TRUNCATION_MARKER
