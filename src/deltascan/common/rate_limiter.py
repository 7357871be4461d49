"""Sliding-window rate limiter for outbound API calls.

Requests are queued FIFO and dispatched by a single drain task, so the
window state is only ever touched by one coroutine at a time. Bursts wait
for capacity instead of being rejected.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RateLimiterStatus:
    """Snapshot of limiter state for health reporting."""

    queue_length: int
    requests_in_window: int
    draining: bool


class RateLimiter:
    """Throttle calls to at most ``max_requests_per_minute`` per rolling window.

    Args:
        max_requests_per_minute: Quota per window
        min_delay: Pause between consecutive dispatches (seconds)
        window: Window length in seconds
        buffer: Extra wait added when the window is full
        clock: Monotonic time source, injectable for tests
        sleep: Async sleep, injectable for tests
    """

    def __init__(
        self,
        max_requests_per_minute: int = 100,
        min_delay: float = 0.1,
        window: float = 60.0,
        buffer: float = 0.1,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if max_requests_per_minute <= 0:
            raise ValueError(f"max_requests_per_minute must be > 0, got {max_requests_per_minute}")
        if min_delay < 0 or window <= 0 or buffer < 0:
            raise ValueError("min_delay and buffer must be >= 0, window must be > 0")

        self._max_requests = max_requests_per_minute
        self._min_delay = min_delay
        self._window = window
        self._buffer = buffer
        self._clock = clock
        self._sleep = sleep

        self._queue: deque[tuple[Callable[[], Awaitable[Any]], asyncio.Future[Any]]] = deque()
        self._timestamps: deque[float] = deque()
        self._drain_task: asyncio.Task[None] | None = None

        logger.info(
            "RateLimiter initialized: %d req/%.0fs, min delay %.3fs",
            max_requests_per_minute, window, min_delay,
        )

    async def enqueue(self, request: Callable[[], Awaitable[T]]) -> T:
        """Queue ``request`` and wait for its result.

        The request's exception, if any, is raised here and nowhere else.
        """
        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._queue.append((request, future))

        if self._drain_task is None:
            self._drain_task = asyncio.create_task(self._drain())

        return await future

    async def _drain(self) -> None:
        try:
            while self._queue:
                await self._wait_for_slot()
                if not self._queue:
                    break

                request, future = self._queue.popleft()
                if future.done():
                    # Caller gave up while queued
                    continue

                self._timestamps.append(self._clock())

                try:
                    result = await request()
                except asyncio.CancelledError:
                    if not future.done():
                        future.cancel()
                    task = asyncio.current_task()
                    if task is not None and task.cancelling():
                        # The drain task itself is being cancelled
                        self._cancel_queued()
                        raise
                    logger.warning("Request cancelled in rate limiter")
                except Exception as exc:
                    logger.warning("Request failed in rate limiter: %s", exc)
                    if not future.done():
                        future.set_exception(exc)
                else:
                    if not future.done():
                        future.set_result(result)

                if self._min_delay > 0 and self._queue:
                    await self._sleep(self._min_delay)
        finally:
            self._drain_task = None

    async def _wait_for_slot(self) -> None:
        """Sleep until the window has room; re-checks since the window slides."""
        while True:
            now = self._clock()
            self._prune(now)
            if len(self._timestamps) < self._max_requests:
                return

            wait = self._timestamps[0] + self._window - now + self._buffer
            logger.warning(
                "Rate limit reached (%d in window), waiting %.2fs",
                len(self._timestamps), wait,
            )
            await self._sleep(max(wait, 0.0))

    def _prune(self, now: float) -> None:
        cutoff = now - self._window
        while self._timestamps and self._timestamps[0] <= cutoff:
            self._timestamps.popleft()

    def status(self) -> RateLimiterStatus:
        self._prune(self._clock())
        return RateLimiterStatus(
            queue_length=len(self._queue),
            requests_in_window=len(self._timestamps),
            draining=self._drain_task is not None,
        )

    def _cancel_queued(self) -> None:
        while self._queue:
            _, future = self._queue.popleft()
            future.cancel()

    def clear(self) -> None:
        """Drop queued requests and reset the window.

        Callers still waiting on a dropped request receive CancelledError.
        """
        self._cancel_queued()
        self._timestamps.clear()
        logger.info("RateLimiter queue cleared")
