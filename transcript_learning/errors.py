"""
Transcript Learning: Error Taxonomy

All errors raised by the learning core derive from LearningError.

ERROR CLASSES:
- ValidationError: malformed or out-of-range input. Never retried.
- StorageUnavailableError: the store could not be opened, was locked,
  or did not answer in time. Retryable with backoff.
- NotFoundError: a single-record lookup found nothing. List queries
  never raise this; they return empty results.
"""

from typing import Any, Optional


class LearningError(Exception):
    """Base class for learning core errors."""

    retryable = False


class ValidationError(LearningError):
    """Input rejected before reaching the store."""

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class StorageUnavailableError(LearningError):
    """Store connection, lock, or open failure."""

    retryable = True

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class StorageTimeoutError(StorageUnavailableError):
    """A store operation exceeded the configured timeout."""


class NotFoundError(LearningError):
    """No record with the requested id."""

    def __init__(self, kind: str, record_id: Any):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} record {record_id} not found")
