"""Backoff delays (in seconds) for retrying failed deliveries."""

from __future__ import annotations

import random

_BASE_DELAY_SECONDS = 0.1
_MAX_JITTER_SECONDS = 0.1


def jitter() -> float:
    """Random extra delay so concurrent callers don't retry in bursts."""
    return random.uniform(0.0, _MAX_JITTER_SECONDS)  # noqa: S311


def linear_backoff(attempt: int) -> float:  # noqa: ARG001
    """Constant delay plus jitter, regardless of *attempt*."""
    return _BASE_DELAY_SECONDS + jitter()


def geometric_backoff(attempt: int) -> float:
    """Delay doubling with each 1-based *attempt*, plus jitter.

    Growth is unbounded; the retry attempt budget bounds the total wait.
    """
    return _BASE_DELAY_SECONDS * 2 ** (attempt - 1) + jitter()
