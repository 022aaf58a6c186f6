"""Job queue error hierarchy."""
from __future__ import annotations


class QueueError(Exception):
    """Base exception for queue store operations."""


class QueueConnectionError(QueueError):
    """The backing store is unreachable."""


class RetryableJobError(Exception):
    """
    Raised by a job handler for a transient failure. The queue retries the
    job with exponential backoff until its attempts are exhausted.
    """
