"""
Rate limiter for BoardGameGeek requests.

BGG throttles aggressively (roughly two requests per second), so every
outbound call is funneled through a single FIFO queue drained by one task.
"""
import asyncio
import time
from collections import deque
from typing import Any, Awaitable, Callable, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


class RateLimiter:
    """
    Serializing rate limiter.

    Work items are queued in submission order and executed one at a time.
    Consecutive dispatches are spaced at least ``min_delay`` seconds apart,
    measured from the start of the previous item, no matter how many callers
    submit concurrently.
    """

    def __init__(self, min_delay: float = 0.6):
        """
        Initialize rate limiter.

        Args:
            min_delay: Minimum seconds between the start of two work items
        """
        self.min_delay = min_delay
        self._queue: deque[tuple[Callable[[], Awaitable[Any]], asyncio.Future]] = deque()
        self._draining = False
        self._drain_task: asyncio.Task | None = None
        self._last_dispatch: float | None = None
        self._dispatched = 0

    async def submit(self, work: Callable[[], Awaitable[T]]) -> T:
        """
        Queue ``work`` and wait for its result.

        Exceptions raised by ``work`` propagate to this caller only; the
        queue keeps draining.
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._queue.append((work, future))

        if not self._draining:
            self._draining = True
            self._drain_task = asyncio.create_task(self._drain())

        return await future

    async def _drain(self) -> None:
        try:
            while self._queue:
                work, future = self._queue.popleft()

                if self._last_dispatch is not None:
                    remaining = self.min_delay - (time.monotonic() - self._last_dispatch)
                    if remaining > 0:
                        await asyncio.sleep(remaining)

                self._last_dispatch = time.monotonic()
                self._dispatched += 1

                if future.cancelled():
                    continue

                try:
                    result = await work()
                except Exception as e:
                    logger.debug("Rate limited work failed", error=str(e))
                    if not future.cancelled():
                        future.set_exception(e)
                else:
                    if not future.cancelled():
                        future.set_result(result)
        finally:
            self._draining = False
            self._drain_task = None

    @property
    def pending(self) -> int:
        """Number of queued work items not yet dispatched."""
        return len(self._queue)

    @property
    def is_draining(self) -> bool:
        return self._draining

    @property
    def dispatched(self) -> int:
        """Total work items dispatched since construction."""
        return self._dispatched
