"""Job dispatcher interface for audit queues."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Union

from app.jobs.models import JobPriority, JobSnapshot, SubmitResult
from app.jobs.stats import QueueStatus


class JobDispatcher(ABC):
    """Abstract interface for audit job dispatching."""

    @abstractmethod
    async def submit(
        self,
        url: str,
        options: Optional[Dict[str, Any]] = None,
        priority: Union[JobPriority, int, str] = JobPriority.NORMAL,
    ) -> SubmitResult:
        """Queue an audit. Duplicates of an active job attach to it."""
        ...

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[JobSnapshot]:
        """Get current state of a job, or None if unknown."""
        ...

    @abstractmethod
    async def cancel(self, job_id: str) -> bool:
        """Cancel a pending job. False if unknown or already started."""
        ...

    @abstractmethod
    async def get_status(self) -> QueueStatus:
        """Queue depth, capacity and statistics."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Start the dispatcher (e.g., start worker loop)."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the dispatcher gracefully."""
        ...
