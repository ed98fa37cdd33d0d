"""Reliable delivery: backoff policies, retries, and bounded concurrency."""

from rewind.delivery.backoff import geometric_backoff, jitter, linear_backoff
from rewind.delivery.dispatcher import run_all
from rewind.delivery.retry import (
    MAX_ATTEMPTS,
    exponential_backoff_retry,
    linear_backoff_retry,
    retry,
)

__all__ = [
    "MAX_ATTEMPTS",
    "exponential_backoff_retry",
    "geometric_backoff",
    "jitter",
    "linear_backoff",
    "linear_backoff_retry",
    "retry",
    "run_all",
]
