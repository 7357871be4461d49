"""Tests for the sliding-window rate limiter."""

from __future__ import annotations

import asyncio

import pytest

from deltascan.common.rate_limiter import RateLimiter


def _max_in_any_window(timestamps: list[float], window: float = 60.0) -> int:
    return max(
        sum(1 for t in timestamps if start <= t < start + window)
        for start in timestamps
    )


@pytest.mark.asyncio
async def test_results_returned_in_fifo_order(clock):
    limiter = RateLimiter(100, min_delay=0.1, clock=clock, sleep=clock.sleep)
    order: list[int] = []

    async def op(i: int) -> int:
        order.append(i)
        return i * 2

    results = await asyncio.gather(*(limiter.enqueue(lambda i=i: op(i)) for i in range(20)))

    assert results == [i * 2 for i in range(20)]
    assert order == list(range(20))


@pytest.mark.asyncio
async def test_250_requests_never_exceed_quota_in_any_window(clock):
    limiter = RateLimiter(100, min_delay=0.1, clock=clock, sleep=clock.sleep)
    dispatched: list[float] = []

    async def op(i: int) -> int:
        dispatched.append(clock.now)
        return i

    results = await asyncio.gather(*(limiter.enqueue(lambda i=i: op(i)) for i in range(250)))

    assert results == list(range(250))
    assert len(dispatched) == 250
    assert _max_in_any_window(dispatched) <= 100


@pytest.mark.asyncio
async def test_150_burst_first_100_immediate_rest_wait_for_window(clock):
    limiter = RateLimiter(100, min_delay=0.1, clock=clock, sleep=clock.sleep)
    dispatched: list[float] = []

    async def op() -> str:
        dispatched.append(clock.now)
        return "ok"

    results = await asyncio.gather(*(limiter.enqueue(op) for _ in range(150)))

    assert results == ["ok"] * 150
    # First 100 only spaced by the minimum delay
    assert dispatched[99] == pytest.approx(9.9)
    # The 101st waits for the oldest dispatch to leave the window
    assert dispatched[100] >= 60.0
    assert _max_in_any_window(dispatched) <= 100


@pytest.mark.asyncio
async def test_failure_goes_to_caller_only_and_queue_continues(clock):
    limiter = RateLimiter(10, min_delay=0.0, clock=clock, sleep=clock.sleep)

    async def ok() -> str:
        return "ok"

    async def boom() -> str:
        raise ConnectionError("upstream down")

    results = await asyncio.gather(
        limiter.enqueue(ok),
        limiter.enqueue(boom),
        limiter.enqueue(ok),
        return_exceptions=True,
    )

    assert results[0] == "ok"
    assert isinstance(results[1], ConnectionError)
    assert results[2] == "ok"
    assert not limiter.status().draining


@pytest.mark.asyncio
async def test_request_raising_cancelled_error_does_not_stall_queue(clock):
    limiter = RateLimiter(10, min_delay=0.0, clock=clock, sleep=clock.sleep)

    async def cancelled() -> str:
        raise asyncio.CancelledError()

    async def ok() -> str:
        return "ok"

    t1 = asyncio.create_task(limiter.enqueue(cancelled))
    t2 = asyncio.create_task(limiter.enqueue(ok))

    with pytest.raises(asyncio.CancelledError):
        await t1
    assert await t2 == "ok"
    assert not limiter.status().draining


@pytest.mark.asyncio
async def test_cancelling_drain_task_cancels_waiting_callers(clock):
    limiter = RateLimiter(10, min_delay=0.0, clock=clock, sleep=clock.sleep)
    started = asyncio.Event()

    async def blocked() -> None:
        started.set()
        await asyncio.Event().wait()

    async def queued() -> str:
        return "queued"

    t1 = asyncio.create_task(limiter.enqueue(blocked))
    t2 = asyncio.create_task(limiter.enqueue(queued))
    await started.wait()

    limiter._drain_task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await t1
    with pytest.raises(asyncio.CancelledError):
        await t2
    for _ in range(5):
        await asyncio.sleep(0)
    assert not limiter.status().draining


@pytest.mark.asyncio
async def test_requests_never_run_concurrently(clock):
    limiter = RateLimiter(100, min_delay=0.0, clock=clock, sleep=clock.sleep)
    in_flight = 0
    peak = 0

    async def op() -> None:
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        in_flight -= 1

    await asyncio.gather(*(limiter.enqueue(op) for _ in range(10)))
    # Second wave after the first drain finished
    await asyncio.gather(*(limiter.enqueue(op) for _ in range(10)))

    assert peak == 1


@pytest.mark.asyncio
async def test_status_while_draining(clock):
    limiter = RateLimiter(100, min_delay=0.0, clock=clock, sleep=clock.sleep)
    release = asyncio.Event()

    async def blocked() -> str:
        await release.wait()
        return "first"

    async def quick() -> str:
        return "second"

    t1 = asyncio.create_task(limiter.enqueue(blocked))
    t2 = asyncio.create_task(limiter.enqueue(quick))
    for _ in range(5):
        await asyncio.sleep(0)

    status = limiter.status()
    assert status.draining is True
    assert status.queue_length == 1
    assert status.requests_in_window == 1

    release.set()
    assert await t1 == "first"
    assert await t2 == "second"

    status = limiter.status()
    assert status.draining is False
    assert status.queue_length == 0
    assert status.requests_in_window == 2


@pytest.mark.asyncio
async def test_window_slides_in_status(clock):
    limiter = RateLimiter(100, min_delay=0.0, clock=clock, sleep=clock.sleep)

    async def op() -> None:
        return None

    await limiter.enqueue(op)
    assert limiter.status().requests_in_window == 1

    clock.now += 61
    assert limiter.status().requests_in_window == 0


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_consume_quota(clock):
    limiter = RateLimiter(100, min_delay=0.0, clock=clock, sleep=clock.sleep)
    release = asyncio.Event()
    called: list[str] = []

    async def blocked() -> None:
        await release.wait()

    async def never() -> None:
        called.append("never")

    t1 = asyncio.create_task(limiter.enqueue(blocked))
    t2 = asyncio.create_task(limiter.enqueue(never))
    for _ in range(5):
        await asyncio.sleep(0)

    t2.cancel()
    release.set()
    await t1
    with pytest.raises(asyncio.CancelledError):
        await t2
    for _ in range(5):
        await asyncio.sleep(0)

    assert called == []
    assert limiter.status().requests_in_window == 1


@pytest.mark.asyncio
async def test_clear_cancels_queued_callers(clock):
    limiter = RateLimiter(100, min_delay=0.0, clock=clock, sleep=clock.sleep)
    release = asyncio.Event()

    async def blocked() -> str:
        await release.wait()
        return "done"

    async def queued() -> str:
        return "queued"

    t1 = asyncio.create_task(limiter.enqueue(blocked))
    t2 = asyncio.create_task(limiter.enqueue(queued))
    for _ in range(5):
        await asyncio.sleep(0)

    limiter.clear()
    assert limiter.status().queue_length == 0

    with pytest.raises(asyncio.CancelledError):
        await t2

    release.set()
    assert await t1 == "done"


def test_invalid_quota_rejected():
    with pytest.raises(ValueError):
        RateLimiter(0)
