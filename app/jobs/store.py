"""Job storage for the audit queue.

The queue only talks to a ``JobStore``, so the in-memory implementation can
be swapped for a persistent one without touching scheduling or retry logic.
"""

from abc import ABC, abstractmethod
from collections import Counter
from typing import Dict, Iterator, List, Optional

from app.jobs.errors import QueueStateError
from app.jobs.models import (
    ALLOWED_TRANSITIONS,
    JobPriority,
    JobRecord,
    JobStatus,
    utcnow,
)
from app.jobs.priority_index import PriorityIndex


class JobStore(ABC):
    """Job table, pending index and dedup index behind one interface."""

    @abstractmethod
    def add(self, job: JobRecord) -> None:
        """Register a new PENDING job and claim its signature."""
        ...

    @abstractmethod
    def get(self, job_id: str) -> Optional[JobRecord]:
        ...

    @abstractmethod
    def delete(self, job_id: str) -> None:
        """Forget a terminal job entirely."""
        ...

    @abstractmethod
    def enqueue(self, job: JobRecord) -> None:
        """Insert a PENDING job into the pending index."""
        ...

    @abstractmethod
    def dequeue(self) -> Optional[JobRecord]:
        """Remove and return the highest-ranked pending job."""
        ...

    @abstractmethod
    def discard_pending(self, job_id: str) -> bool:
        ...

    @abstractmethod
    def position(self, job_id: str) -> int:
        ...

    @abstractmethod
    def peek(self, n: int = 1) -> List[JobRecord]:
        ...

    @abstractmethod
    def find_active(self, signature: str) -> Optional[JobRecord]:
        """Return the PENDING or PROCESSING job holding this signature."""
        ...

    @abstractmethod
    def transition(self, job: JobRecord, status: JobStatus) -> None:
        """Move a job to a new status, enforcing the state machine."""
        ...

    @abstractmethod
    def pending_by_priority(self) -> Dict[JobPriority, int]:
        ...

    @abstractmethod
    def count(self, status: JobStatus) -> int:
        ...

    @abstractmethod
    def jobs(self, *statuses: JobStatus) -> Iterator[JobRecord]:
        ...


class InMemoryJobStore(JobStore):
    """Process-local store. State is lost on restart."""

    def __init__(self):
        self._jobs: Dict[str, JobRecord] = {}
        self._signatures: Dict[str, str] = {}
        self._index = PriorityIndex()
        self._counts: Counter = Counter()

    def add(self, job: JobRecord) -> None:
        if job.id in self._jobs:
            raise QueueStateError(f"Job {job.id} already exists")
        if job.status != JobStatus.PENDING:
            raise QueueStateError(f"New job {job.id} must be pending, got {job.status.value}")
        if job.signature in self._signatures:
            raise QueueStateError(
                f"Signature of job {job.id} is already held by {self._signatures[job.signature]}"
            )
        self._jobs[job.id] = job
        self._signatures[job.signature] = job.id
        self._counts[job.status] += 1

    def get(self, job_id: str) -> Optional[JobRecord]:
        return self._jobs.get(job_id)

    def delete(self, job_id: str) -> None:
        job = self._jobs.get(job_id)
        if job is None:
            return
        if not job.status.is_terminal:
            raise QueueStateError(f"Cannot delete job {job_id} while {job.status.value}")
        del self._jobs[job_id]
        self._counts[job.status] -= 1

    def enqueue(self, job: JobRecord) -> None:
        if job.status != JobStatus.PENDING:
            raise QueueStateError(f"Only pending jobs can be enqueued, {job.id} is {job.status.value}")
        self._index.push(job.id, job.priority, job.enqueued_at)

    def dequeue(self) -> Optional[JobRecord]:
        job_id = self._index.pop()
        if job_id is None:
            return None
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.PENDING:
            raise QueueStateError(f"Pending index referenced unknown or non-pending job {job_id}")
        return job

    def discard_pending(self, job_id: str) -> bool:
        return self._index.remove(job_id)

    def position(self, job_id: str) -> int:
        return self._index.position(job_id)

    def peek(self, n: int = 1) -> List[JobRecord]:
        return [self._jobs[job_id] for job_id in self._index.peek(n)]

    def find_active(self, signature: str) -> Optional[JobRecord]:
        job_id = self._signatures.get(signature)
        if job_id is None:
            return None
        job = self._jobs.get(job_id)
        if job is None or job.status.is_terminal:
            raise QueueStateError(
                f"Dedup index points at {'missing' if job is None else 'finished'} job {job_id}"
            )
        return job

    def transition(self, job: JobRecord, status: JobStatus) -> None:
        if status not in ALLOWED_TRANSITIONS[job.status]:
            raise QueueStateError(
                f"Illegal transition for job {job.id}: {job.status.value} -> {status.value}"
            )
        self._counts[job.status] -= 1
        self._counts[status] += 1
        job.status = status
        job.updated_at = utcnow()
        if status.is_terminal:
            holder = self._signatures.pop(job.signature, None)
            if holder != job.id:
                raise QueueStateError(f"Job {job.id} did not hold its dedup signature")

    def pending_by_priority(self) -> Dict[JobPriority, int]:
        return self._index.tier_counts()

    def count(self, status: JobStatus) -> int:
        return self._counts[status]

    def jobs(self, *statuses: JobStatus) -> Iterator[JobRecord]:
        for job in list(self._jobs.values()):
            if not statuses or job.status in statuses:
                yield job

    def __len__(self) -> int:
        return len(self._jobs)
