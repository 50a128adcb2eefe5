"""
Comedia Lifecycle

Status transitions and recurring-task reactivation.
"""

from .board import TaskBoard
from .recurrence import (
    RecurrenceEngine,
    ScanReport,
    apply_status_change,
    is_due,
    process_recurring_tasks,
)

__all__ = [
    "TaskBoard",
    "RecurrenceEngine",
    "ScanReport",
    "apply_status_change",
    "is_due",
    "process_recurring_tasks",
]
