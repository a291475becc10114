"""Regression tests for timeouts, deadlines and cooperative cancellation."""

from __future__ import annotations

import asyncio
import gc
import warnings

import pytest

from vigil.utils.concurrency import CancellationToken, Deadline, run_with_timeout, run_within


class StepClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


async def _value(result: int = 1, delay: float = 0.0) -> int:
    await asyncio.sleep(delay)
    return result


async def test_run_with_timeout_returns_value() -> None:
    assert await run_with_timeout(_value(7), 1.0) == 7


async def test_run_with_timeout_raises_timeout_error() -> None:
    with pytest.raises(TimeoutError, match="timed out"):
        await run_with_timeout(_value(delay=0.5), 0.01)


async def test_run_with_timeout_rejects_non_positive_budget_without_leaking() -> None:
    with warnings.catch_warnings():
        warnings.simplefilter("error", RuntimeWarning)
        with pytest.raises(ValueError, match="timeout_seconds"):
            await run_with_timeout(_value(), 0)
        gc.collect()


async def test_pre_cancelled_token_short_circuits() -> None:
    token = CancellationToken()
    token.cancel()

    with pytest.raises(asyncio.CancelledError):
        await run_with_timeout(_value(), 1.0, token)
    assert token.is_cancelled


async def test_cancelling_token_while_running_cancels_the_operation() -> None:
    token = CancellationToken()

    async def cancel_soon() -> None:
        await asyncio.sleep(0.01)
        token.cancel()

    canceller = asyncio.create_task(cancel_soon())
    with pytest.raises(asyncio.CancelledError):
        await run_with_timeout(_value(delay=5.0), 10.0, token)
    await canceller


def test_deadline_tracks_remaining_budget_with_injected_clock() -> None:
    clock = StepClock()
    deadline = Deadline(5.0, clock=clock)

    assert deadline.remaining() == pytest.approx(5.0)
    clock.now += 3.0
    assert deadline.remaining() == pytest.approx(2.0)
    assert not deadline.expired
    clock.now += 10.0
    assert deadline.remaining() == 0.0
    assert deadline.expired


def test_deadline_requires_positive_budget() -> None:
    with pytest.raises(ValueError, match="budget_seconds"):
        Deadline(0)


async def test_run_within_exhausted_deadline_raises_before_scheduling() -> None:
    clock = StepClock()
    deadline = Deadline(1.0, clock=clock)
    clock.now += 2.0

    with warnings.catch_warnings():
        warnings.simplefilter("error", RuntimeWarning)
        with pytest.raises(TimeoutError, match="exhausted"):
            await run_within(_value(), deadline)
        gc.collect()


async def test_run_within_uses_remaining_budget() -> None:
    deadline = Deadline(0.05)

    assert await run_within(_value(3), deadline) == 3
    with pytest.raises(TimeoutError):
        await run_within(_value(delay=1.0), deadline)


async def test_cancelling_the_caller_cancels_the_operation() -> None:
    started = asyncio.Event()
    trace: list[str] = []

    async def slow() -> int:
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            trace.append("cancelled")
            raise
        trace.append("finished")
        return 1

    caller = asyncio.create_task(run_with_timeout(slow(), 5.0))
    await started.wait()
    caller.cancel()

    with pytest.raises(asyncio.CancelledError):
        await caller
    assert trace == ["cancelled"]
