"""Execution history store.

Append-only log of task runs. A row is written once when a run starts and
once more when it reaches a terminal status; terminal rows are never touched
again.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fleetsched.db.engine import Database
from fleetsched.db.models import ScheduledTaskRow, TaskExecutionRow, as_utc
from fleetsched.scheduling.errors import ExecutionNotFoundError
from fleetsched.scheduling.types import ExecutionStats, ExecutionStatus, TaskExecution

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50
ORPHAN_ERROR = "Execution interrupted: scheduler stopped before it finished"
# Slack past a task timeout before a running row is presumed abandoned
ORPHAN_GRACE_SECONDS = 60.0


class ExecutionHistoryStore:
    """Reads and writes ``task_executions`` rows."""

    def __init__(
        self, database: Database, *, default_limit: int = DEFAULT_HISTORY_LIMIT
    ) -> None:
        self._db = database
        self._default_limit = default_limit

    async def append(
        self, task_id: int, server_id: int, started_at: datetime
    ) -> tuple[TaskExecution, bool]:
        """Insert a ``running`` row unless the pair already has an active one.

        Returns:
            The execution and whether it was created by this call.
        """
        try:
            async with self._db.session() as session:
                existing = await self._find_active(session, task_id, server_id)
                if existing is not None:
                    return TaskExecution.from_row(existing), False

                row = TaskExecutionRow(
                    task_id=task_id,
                    server_id=server_id,
                    started_at=started_at,
                    status=ExecutionStatus.RUNNING.value,
                )
                session.add(row)
                await session.flush()
                execution = TaskExecution.from_row(row)
        except IntegrityError:
            # Another writer inserted the active row first; the unique index
            # rejected ours.
            async with self._db.session() as session:
                existing = await self._find_active(session, task_id, server_id)
            if existing is None:
                raise
            return TaskExecution.from_row(existing), False

        return execution, True

    async def update_terminal(self, execution: TaskExecution) -> bool:
        """Write the terminal outcome of a run.

        Returns:
            False if the row was already terminal (nothing written).
        """
        if not execution.is_terminal or execution.completed_at is None:
            raise ValueError(
                f"Execution {execution.id} is not terminal ({execution.status})"
            )

        async with self._db.session() as session:
            result = await session.execute(
                update(TaskExecutionRow)
                .where(
                    TaskExecutionRow.id == execution.id,
                    TaskExecutionRow.completed_at.is_(None),
                )
                .values(
                    status=execution.status.value,
                    completed_at=execution.completed_at,
                    output=execution.output,
                    error_output=execution.error_output,
                    exit_code=execution.exit_code,
                    duration_ms=execution.duration_ms,
                )
                .execution_options(synchronize_session=False)
            )
            updated = result.rowcount == 1  # type: ignore[attr-defined]

        if not updated:
            logger.warning(
                "execution_already_terminal",
                extra={"execution.id": execution.id, "task.id": execution.task_id},
            )
        return updated

    async def get(self, execution_id: int) -> TaskExecution:
        async with self._db.session() as session:
            row = await session.get(TaskExecutionRow, execution_id)
            if row is None:
                raise ExecutionNotFoundError(execution_id)
            return TaskExecution.from_row(row)

    async def list_by_task(
        self, task_id: int, limit: int | None = None
    ) -> list[TaskExecution]:
        """Most recent executions of a task, newest first."""
        return await self._list(TaskExecutionRow.task_id == task_id, limit)

    async def list_by_server(
        self, server_id: int, limit: int | None = None
    ) -> list[TaskExecution]:
        """Most recent executions on a server across all tasks, newest first."""
        return await self._list(TaskExecutionRow.server_id == server_id, limit)

    async def active_for(
        self, task_id: int, server_id: int | None = None
    ) -> list[TaskExecution]:
        """Non-terminal executions of a task (optionally one server)."""
        stmt = select(TaskExecutionRow).where(
            TaskExecutionRow.task_id == task_id,
            TaskExecutionRow.completed_at.is_(None),
        )
        if server_id is not None:
            stmt = stmt.where(TaskExecutionRow.server_id == server_id)
        async with self._db.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [TaskExecution.from_row(row) for row in rows]

    async def has_history(self, task_id: int) -> bool:
        async with self._db.session() as session:
            found = await session.scalar(
                select(TaskExecutionRow.id)
                .where(TaskExecutionRow.task_id == task_id)
                .limit(1)
            )
        return found is not None

    async def stats_for_task(self, task_id: int) -> ExecutionStats:
        stats = await self.stats_for_tasks([task_id])
        return stats.get(task_id, ExecutionStats())

    async def stats_for_tasks(self, task_ids: list[int]) -> dict[int, ExecutionStats]:
        """Execution counts per task. Timed-out runs count as failed."""
        if not task_ids:
            return {}

        stmt = (
            select(
                TaskExecutionRow.task_id,
                TaskExecutionRow.status,
                func.count(TaskExecutionRow.id),
            )
            .where(TaskExecutionRow.task_id.in_(task_ids))
            .group_by(TaskExecutionRow.task_id, TaskExecutionRow.status)
        )
        async with self._db.session() as session:
            rows = (await session.execute(stmt)).all()

        counts: dict[int, dict[str, int]] = {}
        for task_id, status, count in rows:
            counts.setdefault(task_id, {})[status] = count

        result: dict[int, ExecutionStats] = {}
        for task_id, by_status in counts.items():
            result[task_id] = ExecutionStats(
                total=sum(by_status.values()),
                succeeded=by_status.get(ExecutionStatus.SUCCEEDED, 0),
                failed=by_status.get(ExecutionStatus.FAILED, 0)
                + by_status.get(ExecutionStatus.TIMED_OUT, 0),
                running=by_status.get(ExecutionStatus.RUNNING, 0)
                + by_status.get(ExecutionStatus.PENDING, 0),
            )
        return result

    async def recover_orphans(
        self, now: datetime, *, grace_seconds: float = ORPHAN_GRACE_SECONDS
    ) -> int:
        """Fail executions left non-terminal by a process that is gone.

        A row is only recovered once its task timeout plus ``grace_seconds``
        has passed since it started. Younger rows may belong to a live process
        sharing the database (a manual ``task run``, another daemon) and are
        left alone.
        """
        stmt = (
            select(TaskExecutionRow, ScheduledTaskRow.timeout_seconds)
            .outerjoin(
                ScheduledTaskRow, ScheduledTaskRow.id == TaskExecutionRow.task_id
            )
            .where(TaskExecutionRow.completed_at.is_(None))
        )
        recovered = 0
        async with self._db.session() as session:
            for row, timeout in (await session.execute(stmt)).all():
                started = as_utc(row.started_at) or now
                deadline = started + timedelta(seconds=(timeout or 0) + grace_seconds)
                if deadline > now:
                    continue
                row.status = ExecutionStatus.FAILED.value
                row.completed_at = now
                row.duration_ms = max(0, int((now - started).total_seconds() * 1000))
                row.error_output = _append_line(row.error_output, ORPHAN_ERROR)
                recovered += 1

        if recovered:
            logger.warning("orphaned_executions_recovered", extra={"count": recovered})
        return recovered

    async def purge_task(self, task_id: int) -> int:
        async with self._db.session() as session:
            result = await session.execute(
                delete(TaskExecutionRow).where(TaskExecutionRow.task_id == task_id)
            )
            return result.rowcount  # type: ignore[attr-defined]

    async def _list(self, condition, limit: int | None) -> list[TaskExecution]:
        limit = self._default_limit if limit is None else limit
        if limit <= 0:
            return []
        stmt = (
            select(TaskExecutionRow)
            .where(condition)
            .order_by(TaskExecutionRow.started_at.desc(), TaskExecutionRow.id.desc())
            .limit(limit)
        )
        async with self._db.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [TaskExecution.from_row(row) for row in rows]

    async def _find_active(
        self, session: AsyncSession, task_id: int, server_id: int
    ) -> TaskExecutionRow | None:
        return await session.scalar(
            select(TaskExecutionRow).where(
                TaskExecutionRow.task_id == task_id,
                TaskExecutionRow.server_id == server_id,
                TaskExecutionRow.completed_at.is_(None),
            )
        )


def _append_line(existing: str | None, line: str) -> str:
    if not existing:
        return line
    return f"{existing.rstrip()}\n{line}"
