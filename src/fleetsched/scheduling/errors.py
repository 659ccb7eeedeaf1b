"""Scheduling errors.

Validation errors are raised synchronously to callers of create, update and
manual trigger. Nothing raised while a command runs escapes the executor; those
failures end up on the execution record instead.
"""

from __future__ import annotations


class SchedulingError(Exception):
    """Base class for scheduling errors."""


class InvalidScheduleError(SchedulingError, ValueError):
    """Cron expression does not parse."""

    def __init__(self, expression: str, reason: str | None = None) -> None:
        self.expression = expression
        message = f"Invalid cron expression: {expression!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class InvalidTimezoneError(SchedulingError, ValueError):
    """Timezone identifier is not a known IANA zone."""

    def __init__(self, timezone: str) -> None:
        self.timezone = timezone
        super().__init__(f"Unknown timezone: {timezone!r}")


class InvalidTimeoutError(SchedulingError, ValueError):
    """Timeout is not a positive number of seconds."""

    def __init__(self, timeout_seconds: object) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"timeout_seconds must be greater than 0, got {timeout_seconds!r}"
        )


class InvalidArgumentError(SchedulingError, ValueError):
    """A request references something it may not (e.g. an unbound server)."""

    def __init__(self, message: str, *, server_id: int | None = None) -> None:
        self.server_id = server_id
        super().__init__(message)


class TaskNotFoundError(SchedulingError, LookupError):
    def __init__(self, task_id: int) -> None:
        self.task_id = task_id
        super().__init__(f"No task found with ID {task_id}")


class ExecutionNotFoundError(SchedulingError, LookupError):
    def __init__(self, execution_id: int) -> None:
        self.execution_id = execution_id
        super().__init__(f"No execution found with ID {execution_id}")
