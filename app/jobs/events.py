"""Per-queue job lifecycle notifications."""

import logging
from collections import defaultdict
from enum import Enum
from typing import Callable, DefaultDict, List

from app.jobs.models import JobSnapshot

logger = logging.getLogger(__name__)


class JobEvent(str, Enum):
    ADDED = "job_added"
    STARTED = "job_started"
    COMPLETED = "job_completed"
    RETRY = "job_retry"
    FAILED = "job_failed"
    CANCELLED = "job_cancelled"


Listener = Callable[[JobSnapshot], None]


class JobEventNotifier:
    """Observer registry owned by a single queue instance.

    Listeners are plain callables invoked synchronously, right after the
    transition they describe, with a copy of the job.
    """

    def __init__(self):
        self._listeners: DefaultDict[JobEvent, List[Listener]] = defaultdict(list)

    def subscribe(self, event: JobEvent, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a callable that removes it again."""
        self._listeners[event].append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners[event]:
                self._listeners[event].remove(listener)

        return unsubscribe

    def emit(self, event: JobEvent, snapshot: JobSnapshot) -> None:
        for listener in list(self._listeners[event]):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Listener %r failed on %s for job %s", listener, event.value, snapshot.id)

    def listener_count(self, event: JobEvent) -> int:
        return len(self._listeners[event])
