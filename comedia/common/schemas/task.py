"""
Task Schema

Core principle: the Task Store owns task identity; the pipeline only proposes.
Machine-extracted tasks carry a confidence score, human-authored ones do not.
Timestamps are timezone-aware UTC internally and ISO-8601 strings at the row
boundary.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


DEFAULT_RECURRENCE_DAYS = 7
SNIPPET_LENGTH = 200


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_task_id() -> str:
    return str(uuid.uuid4())


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================================
# Enums
# ============================================================================

class TaskStatus(str, Enum):
    """Lifecycle state of a task"""
    INCOMING = "incoming"
    AI_CAPTURED = "ai_captured"
    TODO = "todo"
    DONE = "done"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TaskSource(str, Enum):
    """Origin tag stored on the task row"""
    MANUAL = "manual"
    GMAIL = "gmail"
    MEET = "meet"
    ZOOM = "zoom"
    SLACK = "slack"
    LINKEDIN = "linkedin"
    CALENDAR = "calendar"


class SourceType(str, Enum):
    """Communication type handed to the extractor"""
    GMAIL = "gmail"
    SLACK = "slack"
    LINKEDIN = "linkedin"
    GOOGLE_MEET = "google_meet"
    ZOOM = "zoom"
    MANUAL = "manual"

    @property
    def task_source(self) -> TaskSource:
        if self is SourceType.GOOGLE_MEET:
            return TaskSource.MEET
        return TaskSource(self.value)


# ============================================================================
# Sub-models
# ============================================================================

class SourceReference(BaseModel):
    """Provenance of a machine-extracted task"""
    email_id: Optional[str] = None
    meeting_id: Optional[str] = None
    transcript_id: Optional[str] = None
    message_id: Optional[str] = None
    original_url: Optional[str] = None
    snippet: Optional[str] = Field(default=None, description="First 200 chars of the source text")

    @field_validator("snippet")
    @classmethod
    def truncate_snippet(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v[:SNIPPET_LENGTH]


class ExtractedContext(BaseModel):
    participants: List[str] = Field(default_factory=list)
    project: Optional[str] = None
    deadline: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


# ============================================================================
# Main Schemas
# ============================================================================

class Task(BaseModel):
    """
    The durable unit of work.

    Invariants:
    - confidence_score, when present, is within [0, 100]
    - recurrence_days >= 1
    - completed_date is only set while status == done (maintained by
      comedia.lifecycle.recurrence.apply_status_change)
    """
    id: str = Field(default_factory=generate_task_id)
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.INCOMING
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: Optional[datetime] = None
    source: TaskSource = TaskSource.MANUAL
    source_reference: Optional[SourceReference] = None
    confidence_score: Optional[int] = Field(default=None, ge=0, le=100)
    recurrence_enabled: bool = True
    recurrence_days: int = Field(default=DEFAULT_RECURRENCE_DAYS, ge=1)
    completed_date: Optional[datetime] = None
    tags: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_date_only(cls, v: Any) -> Any:
        # "2025-12-13" style due dates come straight from extraction output
        if isinstance(v, str) and len(v) == 10:
            return datetime.fromisoformat(v)
        return v

    @field_validator("due_date", "completed_date", "created_at", "updated_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @field_validator("description", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @property
    def is_machine_extracted(self) -> bool:
        """Absent or zero confidence means a human wrote the task"""
        return bool(self.confidence_score)

    def touch(self, now: Optional[datetime] = None) -> None:
        """Bump updated_at without ever moving it backwards"""
        now = _as_utc(now) or utc_now()
        if now > self.updated_at:
            self.updated_at = now

    def to_row(self) -> Dict[str, Any]:
        """Serialize to the persisted row layout (ISO-8601 timestamps)"""
        return self.model_dump(mode="json")

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Task":
        return cls.model_validate(row)


class ExtractedTaskCandidate(BaseModel):
    """
    Transient task proposal produced by the extractor.

    Never persisted directly: the deduplicator either discards it or it is
    promoted with to_task().
    """
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(..., min_length=1)
    description: str = ""
    due_date: Optional[str] = Field(default=None, alias="dueDate", description="ISO date")
    priority: TaskPriority = TaskPriority.MEDIUM
    confidence: int = Field(default=0, description="0-100")
    context: Optional[ExtractedContext] = Field(default=None, alias="extractedContext")

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("description", mode="before")
    @classmethod
    def none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else str(v)

    @field_validator("priority", mode="before")
    @classmethod
    def coerce_priority(cls, v: Any) -> TaskPriority:
        try:
            return TaskPriority(str(v).strip().lower())
        except ValueError:
            return TaskPriority.MEDIUM

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> int:
        if v is None:
            return 0
        score = round(float(v))
        return max(0, min(100, score))

    def parsed_due_date(self) -> Optional[datetime]:
        if not self.due_date:
            return None
        try:
            return _as_utc(datetime.fromisoformat(self.due_date.replace("Z", "+00:00")))
        except ValueError:
            return None

    def to_task(
        self,
        source: TaskSource,
        source_reference: Optional[SourceReference] = None,
        tags: Optional[List[str]] = None,
    ) -> Task:
        """Promote to a Task in the incoming column"""
        extra_tags = self.context.tags if self.context else []
        return Task(
            title=self.title,
            description=self.description,
            status=TaskStatus.INCOMING,
            priority=self.priority,
            due_date=self.parsed_due_date(),
            source=source,
            source_reference=source_reference,
            confidence_score=self.confidence,
            tags=list(tags or []) + [t for t in extra_tags if t],
        )
