"""Task registry.

Durable task definitions and their server bindings, plus the atomic
claim-and-advance step the dispatcher uses to pick up due tasks.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fleetsched.db.engine import Database
from fleetsched.db.models import (
    ScheduledTaskRow,
    TaskExecutionRow,
    TaskServerRow,
    utc_now,
)
from fleetsched.remote.inventory import ServerInventory
from fleetsched.scheduling.cron import CronEngine
from fleetsched.scheduling.errors import (
    InvalidArgumentError,
    InvalidTimeoutError,
    TaskNotFoundError,
)
from fleetsched.scheduling.types import ScheduledTask, TaskDefinition, TaskUpdate

logger = logging.getLogger(__name__)


class TaskRegistry:
    """CRUD over scheduled tasks.

    All writes bump ``version``; ``claim_due_tasks`` only advances a task
    whose version is unchanged since it was read, so two claimers racing on
    the same database cannot both win the same fire window.
    """

    def __init__(
        self,
        database: Database,
        cron: CronEngine,
        inventory: ServerInventory | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._db = database
        self._cron = cron
        self._inventory = inventory
        self._clock = clock
        self._claim_lock = asyncio.Lock()

    @property
    def cron(self) -> CronEngine:
        return self._cron

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def get(self, task_id: int) -> ScheduledTask:
        async with self._db.session() as session:
            row = await self._load(session, task_id)
            return ScheduledTask.from_row(row)

    async def list_tasks(self, *, enabled_only: bool = False) -> list[ScheduledTask]:
        stmt = (
            select(ScheduledTaskRow)
            .options(selectinload(ScheduledTaskRow.servers))
            .where(ScheduledTaskRow.deleted_at.is_(None))
            .order_by(ScheduledTaskRow.id)
        )
        if enabled_only:
            stmt = stmt.where(ScheduledTaskRow.is_enabled.is_(True))
        async with self._db.session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [ScheduledTask.from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def create(self, definition: TaskDefinition) -> ScheduledTask:
        """Validate and persist a new task with its bindings.

        Raises:
            InvalidScheduleError, InvalidTimezoneError, InvalidTimeoutError,
            InvalidArgumentError: The definition is rejected; nothing is written.
        """
        name = _require_text(definition.name, "name")
        command = _require_text(definition.command, "command")
        self._cron.check(definition.cron_expression, definition.timezone)
        _check_timeout(definition.timeout_seconds)
        server_ids = await self._validate_servers(definition.server_ids)

        now = self._clock()
        next_time = (
            self._cron.next_fire_time(
                definition.cron_expression, definition.timezone, now
            )
            if definition.is_enabled
            else None
        )

        async with self._db.session() as session:
            row = ScheduledTaskRow(
                name=name,
                description=definition.description,
                command=command,
                cron_expression=definition.cron_expression.strip(),
                timezone=definition.timezone,
                is_enabled=definition.is_enabled,
                timeout_seconds=definition.timeout_seconds,
                created_at=now,
                updated_at=now,
                next_execution_time=next_time,
                created_by=definition.created_by,
                version=1,
                servers=[TaskServerRow(server_id=sid) for sid in server_ids],
            )
            session.add(row)
            await session.flush()
            task = ScheduledTask.from_row(row)

        logger.info(
            "task_created",
            extra={
                "task.id": task.id,
                "task.name": task.name,
                "task.cron": task.cron_expression,
                "task.timezone": task.timezone,
                "task.server_count": len(task.server_ids),
            },
        )
        return task

    async def update(self, task_id: int, changes: TaskUpdate) -> ScheduledTask:
        """Apply partial changes.

        Schedule, timezone or enabled changes recompute the next fire time from
        now. Executions already running on removed servers are left alone.

        Raises:
            TaskNotFoundError: No live task has this id.
        """
        if changes.name is not None:
            _require_text(changes.name, "name")
        if changes.command is not None:
            _require_text(changes.command, "command")
        if changes.timeout_seconds is not None:
            _check_timeout(changes.timeout_seconds)
        server_ids = (
            await self._validate_servers(changes.server_ids)
            if changes.server_ids is not None
            else None
        )

        now = self._clock()
        async with self._db.session() as session:
            row = await self._load(session, task_id)

            cron_expression = (
                changes.cron_expression
                if changes.cron_expression is not None
                else row.cron_expression
            ).strip()
            timezone = (
                changes.timezone if changes.timezone is not None else row.timezone
            )
            if changes.cron_expression is not None or changes.timezone is not None:
                self._cron.check(cron_expression, timezone)

            if changes.name is not None:
                row.name = changes.name.strip()
            if changes.description is not None:
                row.description = changes.description
            if changes.command is not None:
                row.command = changes.command
            if changes.timeout_seconds is not None:
                row.timeout_seconds = changes.timeout_seconds
            if changes.is_enabled is not None:
                row.is_enabled = changes.is_enabled
            row.cron_expression = cron_expression
            row.timezone = timezone

            if server_ids is not None:
                _replace_bindings(row, server_ids)

            if changes.affects_schedule:
                row.next_execution_time = (
                    self._cron.next_fire_time(cron_expression, timezone, now)
                    if row.is_enabled
                    else None
                )

            row.updated_at = now
            row.version += 1
            await session.flush()
            task = ScheduledTask.from_row(row)

        logger.info(
            "task_updated",
            extra={
                "task.id": task.id,
                "task.enabled": task.is_enabled,
                "task.next_execution": _iso(task.next_execution_time),
            },
        )
        return task

    async def toggle(self, task_id: int, enabled: bool) -> bool:
        """Enable or disable a task.

        Enabling recomputes the next fire time from now; disabling clears it.

        Returns:
            False if no live task has this id.
        """
        now = self._clock()
        async with self._db.session() as session:
            row = await self._load(session, task_id, required=False)
            if row is None:
                return False

            row.is_enabled = enabled
            row.next_execution_time = (
                self._cron.next_fire_time(row.cron_expression, row.timezone, now)
                if enabled
                else None
            )
            row.updated_at = now
            row.version += 1

        logger.info(
            "task_enabled" if enabled else "task_disabled",
            extra={"task.id": task_id},
        )
        return True

    async def delete(self, task_id: int, *, purge_history: bool = False) -> bool:
        """Delete a task.

        A task with history is soft-deleted unless ``purge_history`` is set,
        which keeps its executions queryable by task and server.

        Returns:
            False while any execution of the task is still running.

        Raises:
            TaskNotFoundError: No live task has this id.
        """
        async with self._db.session() as session:
            row = await self._load(session, task_id)

            active = await session.scalar(
                select(TaskExecutionRow.id)
                .where(
                    TaskExecutionRow.task_id == task_id,
                    TaskExecutionRow.completed_at.is_(None),
                )
                .limit(1)
            )
            if active is not None:
                logger.warning(
                    "task_delete_blocked",
                    extra={"task.id": task_id, "execution.id": active},
                )
                return False

            has_history = (
                await session.scalar(
                    select(TaskExecutionRow.id)
                    .where(TaskExecutionRow.task_id == task_id)
                    .limit(1)
                )
                is not None
            )

            if purge_history or not has_history:
                await session.execute(
                    delete(TaskExecutionRow).where(TaskExecutionRow.task_id == task_id)
                )
                await session.delete(row)
                mode = "purged" if has_history else "deleted"
            else:
                now = self._clock()
                row.deleted_at = now
                row.is_enabled = False
                row.next_execution_time = None
                row.servers.clear()
                row.updated_at = now
                row.version += 1
                mode = "soft_deleted"

        logger.info("task_deleted", extra={"task.id": task_id, "delete.mode": mode})
        return True

    # ------------------------------------------------------------------
    # Dispatch support
    # ------------------------------------------------------------------

    async def claim_due_tasks(self, now: datetime | None = None) -> list[ScheduledTask]:
        """Claim every enabled task whose next fire time is at or before ``now``.

        Each claimed task has ``last_execution_time`` set to ``now`` and
        ``next_execution_time`` advanced past ``now``. Fire windows missed
        while nothing was claiming collapse into this single claim.

        Returns:
            Only the tasks this call advanced.
        """
        now = (now or self._clock()).astimezone(UTC)
        async with self._claim_lock:
            async with self._db.session() as session:
                stmt = (
                    select(ScheduledTaskRow)
                    .options(selectinload(ScheduledTaskRow.servers))
                    .where(
                        ScheduledTaskRow.is_enabled.is_(True),
                        ScheduledTaskRow.deleted_at.is_(None),
                        ScheduledTaskRow.next_execution_time.is_not(None),
                        ScheduledTaskRow.next_execution_time <= now,
                    )
                    .order_by(ScheduledTaskRow.next_execution_time, ScheduledTaskRow.id)
                )
                candidates = [
                    ScheduledTask.from_row(row)
                    for row in (await session.execute(stmt)).scalars().all()
                ]

            claimed: list[ScheduledTask] = []
            for task in candidates:
                next_time = self._next_after_claim(task, now)
                async with self._db.session() as session:
                    result = await session.execute(
                        update(ScheduledTaskRow)
                        .where(
                            ScheduledTaskRow.id == task.id,
                            ScheduledTaskRow.version == task.version,
                        )
                        .values(
                            last_execution_time=now,
                            next_execution_time=next_time,
                            version=task.version + 1,
                        )
                        .execution_options(synchronize_session=False)
                    )
                    won = result.rowcount == 1  # type: ignore[attr-defined]

                if not won:
                    logger.debug("task_claim_lost", extra={"task.id": task.id})
                    continue

                task.last_execution_time = now
                task.next_execution_time = next_time
                task.version += 1
                claimed.append(task)
                logger.info(
                    "task_claimed",
                    extra={
                        "task.id": task.id,
                        "task.name": task.name,
                        "task.server_count": len(task.server_ids),
                        "task.next_execution": _iso(next_time),
                    },
                )

        return claimed

    async def validate_manual_targets(
        self, task: ScheduledTask, server_ids: Iterable[int]
    ) -> list[int]:
        """Check that every id is bound to ``task``.

        Returns:
            The ids, de-duplicated in request order.

        Raises:
            InvalidArgumentError: Naming the first unbound id.
        """
        requested = _dedupe(server_ids)
        if not requested:
            raise InvalidArgumentError("At least one server id is required")
        bound = set(task.server_ids)
        for server_id in requested:
            if server_id not in bound:
                raise InvalidArgumentError(
                    f"Server {server_id} is not assigned to task {task.id}",
                    server_id=server_id,
                )
        return requested

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _next_after_claim(self, task: ScheduledTask, now: datetime) -> datetime | None:
        try:
            return self._cron.next_fire_time(task.cron_expression, task.timezone, now)
        except ValueError as e:
            # Stored schedule no longer evaluates (e.g. zone removed from tzdata)
            logger.error(
                "task_schedule_unusable",
                extra={"task.id": task.id, "error.message": str(e)},
            )
            return None

    async def _validate_servers(self, server_ids: Iterable[int]) -> list[int]:
        ids = _dedupe(server_ids)
        if not ids:
            raise InvalidArgumentError("At least one server is required")
        if self._inventory is not None:
            for server_id in ids:
                if not await self._inventory.exists(server_id):
                    raise InvalidArgumentError(
                        f"Server {server_id} does not exist", server_id=server_id
                    )
        return ids

    async def _load(
        self, session: AsyncSession, task_id: int, *, required: bool = True
    ) -> ScheduledTaskRow | None:
        row = await session.scalar(
            select(ScheduledTaskRow)
            .options(selectinload(ScheduledTaskRow.servers))
            .where(
                ScheduledTaskRow.id == task_id,
                ScheduledTaskRow.deleted_at.is_(None),
            )
        )
        if row is None and required:
            raise TaskNotFoundError(task_id)
        return row


def _replace_bindings(row: ScheduledTaskRow, server_ids: list[int]) -> None:
    # Keep surviving rows so the unit of work never inserts a pair it is
    # about to delete.
    wanted = set(server_ids)
    row.servers[:] = [b for b in row.servers if b.server_id in wanted]
    existing = {b.server_id for b in row.servers}
    for server_id in server_ids:
        if server_id not in existing:
            row.servers.append(TaskServerRow(server_id=server_id))


def _dedupe(values: Iterable[int]) -> list[int]:
    seen: set[int] = set()
    result: list[int] = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


def _require_text(value: str | None, field: str) -> str:
    if value is None or not value.strip():
        raise InvalidArgumentError(f"{field} must not be empty")
    return value.strip() if field == "name" else value


def _check_timeout(value: object) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise InvalidTimeoutError(value)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
