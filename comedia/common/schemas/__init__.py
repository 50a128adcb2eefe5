"""
Comedia Task Schemas

Durable Task rows and transient extraction candidates.
"""

from .task import (
    Task,
    TaskStatus,
    TaskPriority,
    TaskSource,
    SourceType,
    SourceReference,
    ExtractedContext,
    ExtractedTaskCandidate,
    DEFAULT_RECURRENCE_DAYS,
    SNIPPET_LENGTH,
    generate_task_id,
    utc_now,
)

__all__ = [
    "Task",
    "TaskStatus",
    "TaskPriority",
    "TaskSource",
    "SourceType",
    "SourceReference",
    "ExtractedContext",
    "ExtractedTaskCandidate",
    "DEFAULT_RECURRENCE_DAYS",
    "SNIPPET_LENGTH",
    "generate_task_id",
    "utc_now",
]
