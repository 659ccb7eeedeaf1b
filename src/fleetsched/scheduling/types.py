"""Scheduling types.

Public types:
- ScheduledTask: Snapshot of a task definition and its bound servers
- TaskExecution: Snapshot of one run of a task on one server
- ExecutionStatus: Execution lifecycle states
- TaskDefinition / TaskUpdate: Inputs to create and update
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from fleetsched.db.models import ScheduledTaskRow, TaskExecutionRow, as_utc


class ExecutionStatus(StrEnum):
    """Execution lifecycle status."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ExecutionStatus.SUCCEEDED, ExecutionStatus.FAILED, ExecutionStatus.TIMED_OUT}
)


@dataclass(slots=True)
class ScheduledTask:
    """A recurring job definition.

    Instances are detached snapshots; mutate tasks through TaskRegistry.
    """

    id: int
    name: str
    command: str
    cron_expression: str
    timezone: str
    is_enabled: bool
    timeout_seconds: int
    created_at: datetime
    updated_at: datetime
    description: str | None = None
    last_execution_time: datetime | None = None
    next_execution_time: datetime | None = None
    created_by: str | None = None
    server_ids: list[int] = field(default_factory=list)
    version: int = 1

    @classmethod
    def from_row(cls, row: ScheduledTaskRow) -> ScheduledTask:
        return cls(
            id=row.id,
            name=row.name,
            description=row.description,
            command=row.command,
            cron_expression=row.cron_expression,
            timezone=row.timezone,
            is_enabled=row.is_enabled,
            timeout_seconds=row.timeout_seconds,
            created_at=as_utc(row.created_at),  # type: ignore[arg-type]
            updated_at=as_utc(row.updated_at),  # type: ignore[arg-type]
            last_execution_time=as_utc(row.last_execution_time),
            next_execution_time=as_utc(row.next_execution_time),
            created_by=row.created_by,
            server_ids=sorted(binding.server_id for binding in row.servers),
            version=row.version,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "command": self.command,
            "cron_expression": self.cron_expression,
            "timezone": self.timezone,
            "is_enabled": self.is_enabled,
            "timeout_seconds": self.timeout_seconds,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "last_execution_time": _iso(self.last_execution_time),
            "next_execution_time": _iso(self.next_execution_time),
            "created_by": self.created_by,
            "server_ids": list(self.server_ids),
        }


@dataclass(slots=True)
class TaskExecution:
    """One run of a task on one server."""

    id: int
    task_id: int
    server_id: int
    started_at: datetime
    status: ExecutionStatus
    completed_at: datetime | None = None
    output: str | None = None
    error_output: str | None = None
    exit_code: int | None = None
    duration_ms: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @classmethod
    def from_row(cls, row: TaskExecutionRow) -> TaskExecution:
        return cls(
            id=row.id,
            task_id=row.task_id,
            server_id=row.server_id,
            started_at=as_utc(row.started_at),  # type: ignore[arg-type]
            completed_at=as_utc(row.completed_at),
            status=ExecutionStatus(row.status),
            output=row.output,
            error_output=row.error_output,
            exit_code=row.exit_code,
            duration_ms=row.duration_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "task_id": self.task_id,
            "server_id": self.server_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": _iso(self.completed_at),
            "status": self.status.value,
            "output": self.output,
            "error_output": self.error_output,
            "exit_code": self.exit_code,
            "duration_ms": self.duration_ms,
        }


@dataclass(slots=True)
class TaskDefinition:
    """Request to create a task."""

    name: str
    command: str
    cron_expression: str
    server_ids: list[int]
    timezone: str = "UTC"
    description: str | None = None
    is_enabled: bool = True
    timeout_seconds: int = 300
    created_by: str | None = None


@dataclass(slots=True)
class TaskUpdate:
    """Partial changes to a task. ``None`` leaves a field unchanged."""

    name: str | None = None
    description: str | None = None
    command: str | None = None
    cron_expression: str | None = None
    timezone: str | None = None
    is_enabled: bool | None = None
    timeout_seconds: int | None = None
    server_ids: list[int] | None = None

    @property
    def affects_schedule(self) -> bool:
        return (
            self.cron_expression is not None
            or self.timezone is not None
            or self.is_enabled is not None
        )

    def is_empty(self) -> bool:
        return all(
            getattr(self, name) is None
            for name in (
                "name",
                "description",
                "command",
                "cron_expression",
                "timezone",
                "is_enabled",
                "timeout_seconds",
                "server_ids",
            )
        )


@dataclass(slots=True, frozen=True)
class ExecutionStats:
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    running: int = 0


@dataclass(slots=True)
class TaskSummary:
    """A task together with its execution counts."""

    task: ScheduledTask
    stats: ExecutionStats


@dataclass(slots=True)
class CronValidation:
    """Result of validating a cron expression for preview."""

    is_valid: bool
    timezone: str
    next_execution: datetime | None = None
    upcoming: list[datetime] = field(default_factory=list)
    error: str | None = None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
