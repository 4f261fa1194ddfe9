"""Retry decisions for failed audit attempts."""

from app.jobs.models import JobRecord


class RetryPolicy:
    """Retry a job until it has used up ``max_attempts`` executions.

    Attempts are counted when a job is dispatched, so a job on its last
    attempt has ``attempts == max_attempts``.
    """

    def __init__(self, max_attempts: int = 3):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts

    def should_retry(self, job: JobRecord) -> bool:
        return job.attempts < job.max_attempts


def describe_error(exc: BaseException) -> str:
    """Message recorded on the job for a failed attempt."""
    message = str(exc).strip()
    return message or type(exc).__name__
