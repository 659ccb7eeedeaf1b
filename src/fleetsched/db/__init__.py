"""Database layer."""

from fleetsched.db.engine import Database
from fleetsched.db.models import (
    Base,
    ScheduledTaskRow,
    TaskExecutionRow,
    TaskServerRow,
    as_utc,
    utc_now,
)

__all__ = [
    # Engine
    "Database",
    # Models
    "Base",
    "ScheduledTaskRow",
    "TaskExecutionRow",
    "TaskServerRow",
    # Helpers
    "as_utc",
    "utc_now",
]
