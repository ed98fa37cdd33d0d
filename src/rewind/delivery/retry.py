"""Retry an async operation with a backoff policy."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, TypeVar

from rewind.delivery.backoff import geometric_backoff, linear_backoff

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_ATTEMPTS = 5


async def retry(
    operation: Callable[[], Awaitable[T]],
    backoff: Callable[[int], float],
    on_failure: Callable[[Exception], None] | None = None,
    *,
    max_attempts: int = MAX_ATTEMPTS,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> T:
    """Await *operation* until it succeeds or *max_attempts* are used up.

    Every failure is passed to *on_failure*.  Between attempts the call
    sleeps for ``backoff(attempt)`` seconds, where *attempt* is the 1-based
    number of the attempt that just failed.

    Raises:
        Exception: The error from the final attempt, once all are exhausted.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as exc:
            if on_failure is not None:
                on_failure(exc)
            if attempt >= max_attempts:
                logger.warning("Giving up after %d attempts: %s", attempt, exc)
                raise
            delay = backoff(attempt)
            logger.debug(
                "Attempt %d/%d failed (%s), retrying in %.2fs", attempt, max_attempts, exc, delay
            )
            await (sleep or asyncio.sleep)(delay)


async def linear_backoff_retry(
    operation: Callable[[], Awaitable[T]],
    on_failure: Callable[[Exception], None] | None = None,
) -> T:
    """Retry *operation* with a constant delay between attempts."""
    return await retry(operation, linear_backoff, on_failure)


async def exponential_backoff_retry(
    operation: Callable[[], Awaitable[T]],
    on_failure: Callable[[Exception], None] | None = None,
) -> T:
    """Retry *operation* with a doubling delay between attempts."""
    return await retry(operation, geometric_backoff, on_failure)
