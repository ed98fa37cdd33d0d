"""Run independent async tasks with bounded concurrency and retries."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, TypeVar, cast

from rewind.delivery.retry import linear_backoff_retry

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    RetryFn = Callable[
        [Callable[[], Awaitable[Any]], Callable[[Exception], None] | None],
        Awaitable[Any],
    ]

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DEFAULT_CONCURRENCY = 4


def _raise_first_failure(done: set[asyncio.Task[None]]) -> None:
    # Retrieve every exception so none is reported as never retrieved.
    errors = [exc for exc in (task.exception() for task in done) if exc is not None]
    if errors:
        raise errors[0]


async def run_all(
    tasks: Sequence[Callable[[], Awaitable[T]]],
    concurrency_limit: int = _DEFAULT_CONCURRENCY,
    retry_fn: RetryFn = linear_backoff_retry,
) -> list[T]:
    """Run *tasks* with at most *concurrency_limit* in flight at once.

    Each task is wrapped in *retry_fn*.  Results are returned in the order
    of *tasks*, regardless of completion order.

    There is no partial success: the first task to exhaust its retries
    fails the whole call with that task's error, and tasks still in flight
    are cancelled.  Callers that want per-task failure handling should catch
    inside the task callables.
    """
    if concurrency_limit < 1:
        raise ValueError(f"concurrency_limit must be at least 1 (got {concurrency_limit})")

    results: list[T | None] = [None] * len(tasks)

    async def _execute(index: int) -> None:
        failures = 0

        def _on_failure(exc: Exception) -> None:
            nonlocal failures
            failures += 1
            logger.warning(
                "Task %d failed on attempt %d, will be retried: %s", index, failures, exc
            )

        result = await retry_fn(tasks[index], _on_failure)
        logger.debug("Task %d completed after %d failed attempts", index, failures)
        results[index] = result

    active: set[asyncio.Task[None]] = set()
    try:
        for index in range(len(tasks)):
            if len(active) >= concurrency_limit:
                done, active = await asyncio.wait(active, return_when=asyncio.FIRST_COMPLETED)
                _raise_first_failure(done)
            logger.debug("Queuing task %d", index)
            active.add(asyncio.create_task(_execute(index)))

        while active:
            done, active = await asyncio.wait(active, return_when=asyncio.FIRST_COMPLETED)
            _raise_first_failure(done)
    except BaseException:
        for pending in active:
            pending.cancel()
        if active:
            await asyncio.gather(*active, return_exceptions=True)
        raise

    return cast("list[T]", results)
