"""Scheduled task orchestration.

Public API:
- SchedulingService: Facade over everything below
- CronEngine: Cron parsing and fire-time computation
- TaskRegistry: Task definitions and due-task claiming
- ExecutionHistoryStore: Execution records
- TaskExecutor: One guarded run of a task on a server
- Dispatcher: Poll loop and manual trigger path
"""

from fleetsched.scheduling.cron import CronEngine
from fleetsched.scheduling.dispatcher import Dispatcher, DispatcherState
from fleetsched.scheduling.errors import (
    ExecutionNotFoundError,
    InvalidArgumentError,
    InvalidScheduleError,
    InvalidTimeoutError,
    InvalidTimezoneError,
    SchedulingError,
    TaskNotFoundError,
)
from fleetsched.scheduling.executor import TaskExecutor
from fleetsched.scheduling.history import ExecutionHistoryStore
from fleetsched.scheduling.registry import TaskRegistry
from fleetsched.scheduling.service import SchedulingService
from fleetsched.scheduling.types import (
    CronValidation,
    ExecutionStats,
    ExecutionStatus,
    ScheduledTask,
    TaskDefinition,
    TaskExecution,
    TaskSummary,
    TaskUpdate,
)

__all__ = [
    # Components
    "CronEngine",
    "Dispatcher",
    "DispatcherState",
    "ExecutionHistoryStore",
    "SchedulingService",
    "TaskExecutor",
    "TaskRegistry",
    # Types
    "CronValidation",
    "ExecutionStats",
    "ExecutionStatus",
    "ScheduledTask",
    "TaskDefinition",
    "TaskExecution",
    "TaskSummary",
    "TaskUpdate",
    # Errors
    "ExecutionNotFoundError",
    "InvalidArgumentError",
    "InvalidScheduleError",
    "InvalidTimeoutError",
    "InvalidTimezoneError",
    "SchedulingError",
    "TaskNotFoundError",
]
