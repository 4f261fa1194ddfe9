"""Job record data model for queued audits."""

from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Dict, Optional, Union
from pydantic import BaseModel, Field
import uuid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)

# PROCESSING -> CANCELLED only happens when the queue shuts down.
ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.CANCELLED}),
    JobStatus.PROCESSING: frozenset({
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.PENDING,
        JobStatus.CANCELLED,
    }),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}


class JobPriority(IntEnum):
    LOW = 1
    NORMAL = 2
    HIGH = 3
    URGENT = 4

    @classmethod
    def coerce(cls, value: Union["JobPriority", int, str]) -> "JobPriority":
        """Accept an enum member, its int value, a numeric string or a tier name.

        Raises ValueError for anything else.
        """
        if isinstance(value, bool):
            raise ValueError(f"Invalid priority: {value!r}")
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str):
            text = value.strip()
            if text.isdigit():
                return cls(int(text))
            try:
                return cls[text.upper()]
            except KeyError:
                pass
        raise ValueError(f"Invalid priority: {value!r}")

    @property
    def label(self) -> str:
        return self.name.lower()


class JobRecord(BaseModel):
    """Tracks the lifecycle of one queued audit."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    url: str
    options: Dict[str, Any] = Field(default_factory=dict)
    priority: JobPriority = JobPriority.NORMAL
    status: JobStatus = JobStatus.PENDING
    signature: str = ""
    attempts: int = 0
    max_attempts: int = 3
    estimated_duration: float = 0.0
    result: Optional[Any] = None
    error: Optional[str] = None
    processing_time: Optional[float] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    enqueued_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class JobSnapshot(JobRecord):
    """Read-only copy of a job handed to callers and observers."""
    position: Optional[int] = None
    estimated_wait: Optional[float] = None


class SubmitResult(BaseModel):
    job_id: str
    status: JobStatus
    position: int
    estimated_wait: float
    duplicate: bool = False


def estimate_job_duration(options: Dict[str, Any]) -> float:
    """Rough per-job duration in seconds based on which audit stages are enabled."""
    seconds = 15.0
    if options.get("lighthouse"):
        seconds += 20.0
    if options.get("comprehensive"):
        seconds += 10.0
    return seconds
