"""In-process audit queue using asyncio.

Ranks jobs by priority, collapses duplicate submissions, and runs up to
``max_concurrent`` audits at a time in background tasks. Failed attempts
are retried, finished jobs are evicted after a retention window.
No external dependencies (Redis, Celery) needed.
"""

import asyncio
import logging
import time
from collections import Counter
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union

from app.audit.executor import AuditExecutor
from app.audit.validation import validate_audit_url
from app.jobs.dispatcher import JobDispatcher
from app.jobs.errors import InvalidSubmissionError, JobTimeoutError, QueueStateError
from app.jobs.events import JobEvent, JobEventNotifier
from app.jobs.models import (
    TERMINAL_STATUSES,
    JobPriority,
    JobRecord,
    JobSnapshot,
    JobStatus,
    SubmitResult,
    estimate_job_duration,
    utcnow,
)
from app.jobs.retry import RetryPolicy, describe_error
from app.jobs.signature import dedup_signature
from app.jobs.stats import (
    Capacity,
    QueueCounts,
    QueueStats,
    QueueStatus,
    estimate_wait,
)
from app.jobs.store import InMemoryJobStore, JobStore

logger = logging.getLogger(__name__)


def _log_abandoned(future: "asyncio.Future") -> None:
    # Outcome of an attempt that already timed out; the job has moved on.
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.debug("Abandoned audit attempt finished with %r", exc)


class AuditQueue(JobDispatcher):
    """Local async audit queue with priorities, dedup and retries.

    All job state is guarded by one asyncio lock. Executor calls run outside
    of it, so submissions and status queries stay responsive while audits
    are in flight.
    """

    def __init__(
        self,
        executor: AuditExecutor,
        max_concurrent: int = 3,
        job_timeout: float = 60.0,
        max_attempts: int = 3,
        poll_interval: float = 1.0,
        cleanup_interval: float = 300.0,
        retention: timedelta = timedelta(hours=24),
        default_processing_time: float = 30.0,
        shutdown_timeout: float = 30.0,
        store: Optional[JobStore] = None,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        if job_timeout <= 0:
            raise ValueError("job_timeout must be positive")

        self._executor = executor
        self.max_concurrent = max_concurrent
        self.job_timeout = job_timeout
        self.retry_policy = RetryPolicy(max_attempts)
        self.poll_interval = poll_interval
        self.cleanup_interval = cleanup_interval
        self.retention = retention
        self.default_processing_time = default_processing_time
        self.shutdown_timeout = shutdown_timeout

        self._store = store if store is not None else InMemoryJobStore()
        self.events = JobEventNotifier()
        self.stats = QueueStats()

        self._lock = asyncio.Lock()
        self._wakeup = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._inflight: Dict[str, asyncio.Task] = {}
        self._task: Optional[asyncio.Task] = None
        self._cleanup_task: Optional[asyncio.Task] = None
        self._running = False

    @classmethod
    def from_settings(cls, executor: AuditExecutor, settings) -> "AuditQueue":
        return cls(
            executor,
            max_concurrent=settings.queue_max_concurrent,
            job_timeout=settings.queue_job_timeout_seconds,
            max_attempts=settings.queue_max_attempts,
            poll_interval=settings.queue_poll_interval_seconds,
            cleanup_interval=settings.queue_cleanup_interval_seconds,
            retention=timedelta(hours=settings.queue_retention_hours),
            default_processing_time=settings.queue_default_processing_seconds,
            shutdown_timeout=settings.queue_shutdown_timeout_seconds,
        )

    @property
    def store(self) -> JobStore:
        return self._store

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Caller API
    # ------------------------------------------------------------------

    async def submit(
        self,
        url: str,
        options: Optional[Dict[str, Any]] = None,
        priority: Union[JobPriority, int, str] = JobPriority.NORMAL,
    ) -> SubmitResult:
        validation = validate_audit_url(url)
        if not validation.is_valid:
            raise InvalidSubmissionError("Invalid URL", validation.errors)
        try:
            priority = JobPriority.coerce(priority)
        except ValueError:
            valid = ", ".join(f"{p.value} ({p.label})" for p in JobPriority)
            raise InvalidSubmissionError(
                "Invalid priority", [f"Valid priorities: {valid}"]
            ) from None
        if options is None:
            options = {}
        if not isinstance(options, Mapping):
            raise InvalidSubmissionError("Invalid options", ["options must be an object"])

        url = url.strip()
        options = dict(options)
        try:
            signature = dedup_signature(url, options)
        except (TypeError, ValueError) as exc:
            raise InvalidSubmissionError(
                "Invalid options", [f"options could not be encoded: {exc}"]
            ) from None

        async with self._lock:
            existing = self._store.find_active(signature)
            if existing is not None:
                logger.info("Duplicate job detected for %s, returning existing job %s", url, existing.id)
                return self._submit_result(existing, duplicate=True)

            now = utcnow()
            job = JobRecord(
                url=url,
                options=options,
                priority=priority,
                signature=signature,
                max_attempts=self.retry_policy.max_attempts,
                estimated_duration=estimate_job_duration(options),
                created_at=now,
                updated_at=now,
                enqueued_at=now,
            )
            self._store.add(job)
            self._store.enqueue(job)
            self.stats.record_submission()
            self._idle.clear()
            logger.info("Job %s added to queue (priority: %s, URL: %s)", job.id, priority.label, url)
            self._emit(JobEvent.ADDED, job)
            result = self._submit_result(job, duplicate=False)

        self._wakeup.set()
        return result

    async def get_job(self, job_id: str) -> Optional[JobSnapshot]:
        async with self._lock:
            job = self._store.get(job_id)
            if job is None:
                return None
            return self._snapshot(job)

    async def cancel(self, job_id: str) -> bool:
        async with self._lock:
            job = self._store.get(job_id)
            if job is None or job.status != JobStatus.PENDING:
                return False
            if not self._store.discard_pending(job_id):
                raise QueueStateError(f"Pending job {job_id} was missing from the pending index")

            job.error = "Job cancelled by user"
            job.completed_at = utcnow()
            self._store.transition(job, JobStatus.CANCELLED)
            self.stats.record_cancellation()
            logger.info("Job %s cancelled", job_id)
            self._emit(JobEvent.CANCELLED, job)
            self._refresh_idle()
            return True

    async def get_status(self) -> QueueStatus:
        async with self._lock:
            processing = len(self._inflight)
            tiers = self._store.pending_by_priority()
            return QueueStatus(
                queue=QueueCounts(
                    pending=self._store.count(JobStatus.PENDING),
                    processing=self._store.count(JobStatus.PROCESSING),
                    completed=self._store.count(JobStatus.COMPLETED),
                    failed=self._store.count(JobStatus.FAILED),
                    cancelled=self._store.count(JobStatus.CANCELLED),
                ),
                capacity=Capacity(
                    max_concurrent=self.max_concurrent,
                    current_processing=processing,
                    available_slots=max(0, self.max_concurrent - processing),
                ),
                statistics=self.stats.snapshot(),
                priority_queues={
                    p.label: tiers[p] for p in sorted(JobPriority, reverse=True)
                },
            )

    async def join(self, timeout: Optional[float] = None) -> None:
        """Wait until no job is pending or processing."""
        await asyncio.wait_for(self._idle.wait(), timeout=timeout)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def schedule(self) -> List[str]:
        """Fill free slots with the highest-ranked pending jobs.

        Returns the ids dispatched in this pass, in dispatch order.
        """
        dispatched = []
        async with self._lock:
            while len(self._inflight) < self.max_concurrent:
                job = self._store.dequeue()
                if job is None:
                    break
                self._dispatch(job)
                dispatched.append(job.id)
            self.stats.update_load(len(self._inflight))
        return dispatched

    def _dispatch(self, job: JobRecord) -> None:
        if job.id in self._inflight:
            raise QueueStateError(f"Job {job.id} already has an attempt in flight")
        if job.attempts >= job.max_attempts:
            raise QueueStateError(
                f"Job {job.id} has no attempts left ({job.attempts}/{job.max_attempts})"
            )

        self._store.transition(job, JobStatus.PROCESSING)
        job.attempts += 1
        job.started_at = job.updated_at
        task = asyncio.create_task(self._run_attempt(job), name=f"audit-{job.id}")
        task.add_done_callback(self._on_attempt_exit)
        self._inflight[job.id] = task
        logger.info("Starting job %s (attempt %d/%d)", job.id, job.attempts, job.max_attempts)
        self._emit(JobEvent.STARTED, job)

    async def _run_attempt(self, job: JobRecord) -> None:
        """Run one executor call with the queue-enforced timeout."""
        started = time.monotonic()
        attempt = None
        try:
            attempt = asyncio.ensure_future(
                self._executor.execute(job.url, dict(job.options))
            )
            done, _ = await asyncio.wait({attempt}, timeout=self.job_timeout)
            if attempt not in done:
                # The executor may ignore cancellation; the slot is reclaimed regardless.
                attempt.cancel()
                attempt.add_done_callback(_log_abandoned)
                raise JobTimeoutError(f"Job timeout after {self.job_timeout:g}s")
            if attempt.cancelled():
                raise RuntimeError("Audit executor was cancelled")
            result = attempt.result()
        except asyncio.CancelledError:
            if attempt is not None and not attempt.done():
                attempt.cancel()
            raise
        except Exception as exc:
            elapsed = time.monotonic() - started
            logger.warning(
                "Job %s failed (attempt %d/%d): %s",
                job.id, job.attempts, job.max_attempts, describe_error(exc),
                exc_info=not isinstance(exc, JobTimeoutError),
            )
            async with self._lock:
                self._finish_failure(job, exc, elapsed)
        else:
            elapsed = time.monotonic() - started
            async with self._lock:
                self._finish_success(job, result, elapsed)

        self._wakeup.set()

    def _finish_success(self, job: JobRecord, result: Any, elapsed: float) -> None:
        if self._inflight.pop(job.id, None) is None:
            logger.info("Discarding result for job %s, it is no longer in flight", job.id)
            return

        job.result = result
        job.error = None
        job.processing_time = elapsed
        job.completed_at = utcnow()
        self._store.transition(job, JobStatus.COMPLETED)
        self.stats.record_completion(elapsed)
        self.stats.update_load(len(self._inflight))
        logger.info("Job %s completed in %.2fs", job.id, elapsed)
        self._emit(JobEvent.COMPLETED, job)
        self._refresh_idle()

    def _finish_failure(self, job: JobRecord, exc: Exception, elapsed: float) -> None:
        if self._inflight.pop(job.id, None) is None:
            logger.info("Discarding failure for job %s, it is no longer in flight", job.id)
            return

        message = describe_error(exc)
        job.processing_time = elapsed
        if self.retry_policy.should_retry(job):
            self._store.transition(job, JobStatus.PENDING)
            job.started_at = None
            # Back of its priority tier.
            job.enqueued_at = job.updated_at
            self._store.enqueue(job)
            self.stats.record_retry()
            logger.info(
                "Retrying job %s after attempt %d/%d failed: %s",
                job.id, job.attempts, job.max_attempts, message,
            )
            self._emit(JobEvent.RETRY, job)
        else:
            job.error = message
            job.completed_at = utcnow()
            self._store.transition(job, JobStatus.FAILED)
            self.stats.record_failure()
            logger.info("Job %s failed permanently: %s", job.id, message)
            self._emit(JobEvent.FAILED, job)

        self.stats.update_load(len(self._inflight))
        self._refresh_idle()

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        """Evict finished jobs older than the retention window. Returns count removed."""
        cutoff = (now or utcnow()) - self.retention
        removed: Counter = Counter()
        async with self._lock:
            for job in self._store.jobs(*TERMINAL_STATUSES):
                if job.completed_at is not None and job.completed_at < cutoff:
                    self._store.delete(job.id)
                    removed[job.status] += 1

        total = sum(removed.values())
        if total:
            logger.info(
                "Cleaned up %d completed, %d failed and %d cancelled jobs",
                removed[JobStatus.COMPLETED],
                removed[JobStatus.FAILED],
                removed[JobStatus.CANCELLED],
            )
        return total

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._scheduler_loop(), name="audit-queue-scheduler")
        self._cleanup_task = asyncio.create_task(self._cleanup_loop(), name="audit-queue-cleanup")
        for task in (self._task, self._cleanup_task):
            task.add_done_callback(self._on_loop_exit)
        self._wakeup.set()
        logger.info("Audit queue started - max concurrent: %d", self.max_concurrent)

    async def stop(self) -> None:
        """Stop scheduling, give in-flight jobs ``shutdown_timeout`` to finish, cancel the rest."""
        logger.info("Shutting down audit queue...")
        self._running = False
        await self._cancel_loops()

        pending_tasks = list(self._inflight.values())
        if pending_tasks:
            await asyncio.wait(pending_tasks, timeout=self.shutdown_timeout)

        async with self._lock:
            if self._inflight:
                logger.warning(
                    "Shutdown timeout reached, %d jobs still processing", len(self._inflight)
                )
            aborted = self._abort_inflight("Shutdown timeout")
        await asyncio.gather(*aborted, return_exceptions=True)
        logger.info("Audit queue shut down")

    async def force_shutdown(self) -> None:
        """Cancel every pending and processing job without waiting."""
        logger.info("Force shutting down audit queue...")
        self._running = False
        await self._cancel_loops()

        async with self._lock:
            aborted = self._abort_inflight("Force shutdown")
            while True:
                job = self._store.dequeue()
                if job is None:
                    break
                self._cancel_job(job, "Force shutdown")
            self._refresh_idle()
        await asyncio.gather(*aborted, return_exceptions=True)
        logger.info("Audit queue force shut down")

    async def _cancel_loops(self) -> None:
        for task in (self._task, self._cleanup_task):
            if task is None:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._cleanup_task = None

    def _abort_inflight(self, reason: str) -> List[asyncio.Task]:
        tasks = []
        for job_id, task in list(self._inflight.items()):
            del self._inflight[job_id]
            job = self._store.get(job_id)
            if job is None:
                raise QueueStateError(f"In-flight job {job_id} is missing from the job table")
            self._cancel_job(job, reason)
            task.cancel()
            tasks.append(task)
        self.stats.update_load(len(self._inflight))
        self._refresh_idle()
        return tasks

    def _cancel_job(self, job: JobRecord, reason: str) -> None:
        job.error = reason
        job.completed_at = utcnow()
        self._store.transition(job, JobStatus.CANCELLED)
        self.stats.record_cancellation()
        self._emit(JobEvent.CANCELLED, job)

    @staticmethod
    def _on_loop_exit(task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return
        logger.critical("Audit queue loop %s crashed", task.get_name(), exc_info=task.exception())

    @staticmethod
    def _on_attempt_exit(task: asyncio.Task) -> None:
        if task.cancelled() or task.exception() is None:
            return
        logger.critical("Audit attempt %s crashed", task.get_name(), exc_info=task.exception())

    async def _scheduler_loop(self) -> None:
        """Dispatch whenever woken by a submission or a freed slot, or every poll interval."""
        while self._running:
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
            except asyncio.CancelledError:
                break
            self._wakeup.clear()
            await self.schedule()

    async def _cleanup_loop(self) -> None:
        while self._running:
            try:
                await asyncio.sleep(self.cleanup_interval)
            except asyncio.CancelledError:
                break
            await self.cleanup_expired()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _average_processing_time(self) -> float:
        return self.stats.avg_processing_time or self.default_processing_time

    def _submit_result(self, job: JobRecord, duplicate: bool) -> SubmitResult:
        position = self._store.position(job.id)
        return SubmitResult(
            job_id=job.id,
            status=job.status,
            position=position,
            estimated_wait=estimate_wait(
                position, self.max_concurrent, self._average_processing_time()
            ),
            duplicate=duplicate,
        )

    def _snapshot(self, job: JobRecord) -> JobSnapshot:
        position = None
        wait = None
        if job.status == JobStatus.PENDING:
            position = self._store.position(job.id)
            wait = estimate_wait(position, self.max_concurrent, self._average_processing_time())
        return JobSnapshot(**job.model_dump(), position=position, estimated_wait=wait)

    def _emit(self, event: JobEvent, job: JobRecord) -> None:
        if self.events.listener_count(event):
            self.events.emit(event, self._snapshot(job))

    def _refresh_idle(self) -> None:
        if self._store.count(JobStatus.PENDING) == 0 and not self._inflight:
            self._idle.set()
        else:
            self._idle.clear()
