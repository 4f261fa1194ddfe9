"""Exceptions raised by the audit queue."""

from typing import List, Optional


class QueueError(Exception):
    """Base class for audit queue errors."""


class InvalidSubmissionError(QueueError, ValueError):
    """The caller asked for something the queue cannot accept.

    Raised before any job state is created.
    """

    def __init__(self, message: str, details: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.details = list(details or [])

    def to_detail(self) -> dict:
        return {"error": self.message, "details": self.details}


class QueueStateError(QueueError, RuntimeError):
    """Internal bookkeeping disagrees with itself. Never expected in normal operation."""


class JobTimeoutError(QueueError, TimeoutError):
    """An audit attempt ran past the queue's job timeout."""
