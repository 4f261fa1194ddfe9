"""Queue statistics and the status payload reported to callers."""

import math
import time
from typing import Dict

from pydantic import BaseModel

# Weight given to the newest sample in the processing-time average.
EMA_WEIGHT = 0.2


class QueueCounts(BaseModel):
    pending: int
    processing: int
    completed: int
    failed: int
    cancelled: int


class Capacity(BaseModel):
    max_concurrent: int
    current_processing: int
    available_slots: int


class Statistics(BaseModel):
    total_jobs: int
    completed_jobs: int
    failed_jobs: int
    cancelled_jobs: int
    retried_jobs: int
    avg_processing_time: float
    current_load: int
    peak_load: int
    uptime: float
    throughput: float
    success_rate: float


class QueueStatus(BaseModel):
    queue: QueueCounts
    capacity: Capacity
    statistics: Statistics
    priority_queues: Dict[str, int]


class QueueStats:
    """Running counters. Every update is O(1); nothing rescans job history."""

    def __init__(self):
        self.total_jobs = 0
        self.completed_jobs = 0
        self.failed_jobs = 0
        self.cancelled_jobs = 0
        self.retried_jobs = 0
        self.avg_processing_time = 0.0
        self.current_load = 0
        self.peak_load = 0
        self._started = time.monotonic()

    def record_submission(self) -> None:
        self.total_jobs += 1

    def record_completion(self, processing_time: float) -> None:
        self.completed_jobs += 1
        if self.completed_jobs == 1:
            self.avg_processing_time = processing_time
        else:
            self.avg_processing_time = (
                self.avg_processing_time * (1 - EMA_WEIGHT) + processing_time * EMA_WEIGHT
            )

    def record_failure(self) -> None:
        self.failed_jobs += 1

    def record_retry(self) -> None:
        self.retried_jobs += 1

    def record_cancellation(self) -> None:
        self.cancelled_jobs += 1

    def update_load(self, processing: int) -> None:
        self.current_load = processing
        self.peak_load = max(self.peak_load, processing)

    @property
    def uptime(self) -> float:
        return time.monotonic() - self._started

    def snapshot(self) -> Statistics:
        uptime = self.uptime
        minutes = uptime / 60
        return Statistics(
            total_jobs=self.total_jobs,
            completed_jobs=self.completed_jobs,
            failed_jobs=self.failed_jobs,
            cancelled_jobs=self.cancelled_jobs,
            retried_jobs=self.retried_jobs,
            avg_processing_time=self.avg_processing_time,
            current_load=self.current_load,
            peak_load=self.peak_load,
            uptime=uptime,
            throughput=self.completed_jobs / minutes if minutes > 0 else 0.0,
            success_rate=(
                self.completed_jobs / self.total_jobs * 100 if self.total_jobs else 0.0
            ),
        )


def estimate_wait(position: int, max_concurrent: int, avg_processing_time: float) -> float:
    """Seconds until a pending job at ``position`` is likely to start.

    A best-effort hint: whole batches of ``max_concurrent`` jobs ahead of it
    times the average processing time.
    """
    if position <= 0:
        return 0.0
    return math.ceil(position / max_concurrent) * avg_processing_time
