"""Tests for rewind.delivery.dispatcher."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import pytest

from rewind.delivery.dispatcher import run_all

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


async def _no_retry(
    operation: Callable[[], Awaitable[Any]],
    on_failure: Callable[[Exception], None] | None = None,
) -> Any:
    try:
        return await operation()
    except Exception as exc:
        if on_failure is not None:
            on_failure(exc)
        raise


def _sleeper(value: str, delay: float) -> Callable[[], Awaitable[str]]:
    async def _task() -> str:
        await asyncio.sleep(delay)
        return value

    return _task


# ── Ordering ─────────────────────────────────────────────────────


async def test_empty_task_list_returns_empty_results() -> None:
    assert await run_all([]) == []


async def test_results_follow_input_order_when_serialized() -> None:
    tasks = [_sleeper("t0", 0.02), _sleeper("t1", 0.0)]

    assert await run_all(tasks, concurrency_limit=1, retry_fn=_no_retry) == ["t0", "t1"]


async def test_results_follow_input_order_when_completed_out_of_order() -> None:
    released = asyncio.Event()

    async def first() -> str:
        await released.wait()
        return "t0"

    async def second() -> str:
        released.set()
        return "t1"

    results = await run_all([first, second], concurrency_limit=2, retry_fn=_no_retry)

    assert results == ["t0", "t1"]


# ── Concurrency ──────────────────────────────────────────────────


@pytest.mark.parametrize("limit", [1, 2, 3])
async def test_in_flight_tasks_never_exceed_limit(limit: int) -> None:
    in_flight = 0
    peak = 0

    def make_task(index: int) -> Callable[[], Awaitable[int]]:
        async def _task() -> int:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.001 * (index % 3))
            in_flight -= 1
            return index

        return _task

    results = await run_all([make_task(i) for i in range(10)], limit, _no_retry)

    assert results == list(range(10))
    assert peak == limit


async def test_limit_larger_than_task_count() -> None:
    results = await run_all([_sleeper("a", 0.0), _sleeper("b", 0.0)], 50, _no_retry)

    assert results == ["a", "b"]


@pytest.mark.parametrize("limit", [0, -1])
async def test_rejects_non_positive_limit(limit: int) -> None:
    with pytest.raises(ValueError, match="concurrency_limit"):
        await run_all([_sleeper("a", 0.0)], limit, _no_retry)


# ── Failures ─────────────────────────────────────────────────────


async def test_first_failure_fails_the_whole_call_and_cancels_the_rest() -> None:
    cancelled = asyncio.Event()

    async def slow() -> str:
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return "slow"

    async def broken() -> str:
        raise RuntimeError("collector unavailable")

    with pytest.raises(RuntimeError, match="collector unavailable"):
        await run_all([slow, broken], concurrency_limit=2, retry_fn=_no_retry)

    assert cancelled.is_set()


async def test_failure_stops_queuing_new_tasks() -> None:
    started: list[int] = []

    def make_task(index: int) -> Callable[[], Awaitable[int]]:
        async def _task() -> int:
            started.append(index)
            if index == 0:
                raise RuntimeError("boom")
            return index

        return _task

    with pytest.raises(RuntimeError, match="boom"):
        await run_all([make_task(i) for i in range(5)], 1, _no_retry)

    assert started == [0]


async def test_default_retry_logs_each_failed_attempt(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
) -> None:
    async def _instant(delay: float) -> None:
        return None

    monkeypatch.setattr("rewind.delivery.retry.asyncio.sleep", _instant)
    attempts = 0

    async def flaky() -> str:
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise ConnectionError("reset by peer")
        return "delivered"

    with caplog.at_level(logging.WARNING, logger="rewind.delivery.dispatcher"):
        results = await run_all([flaky])

    assert results == ["delivered"]
    assert attempts == 3
    assert "Task 0 failed on attempt 1" in caplog.text
    assert "Task 0 failed on attempt 2" in caplog.text
    assert "attempt 3" not in caplog.text
