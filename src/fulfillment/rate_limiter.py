"""Fixed-window rate limiter for outbound provider calls.

Calls are queued FIFO and drained by a single loop. When the window's quota
is used up, the loop sleeps until the window rolls over; queued calls wait,
nothing is dropped. Calling ``execute`` while a drain is running only
enqueues, so two drains can never race on the counter.

Example:
    limiter = RateLimiter(RateLimitSettings(max_requests=120, window_seconds=60))
    order = await limiter.execute(lambda: client.get("/orders/1"))
"""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from src.fulfillment.config import RateLimitSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimiter:
    """Single-drain FIFO limiter with a fixed request window.

    Attributes:
        request_count: Calls started in the current window.
        window_start: Clock reading when the current window opened.
    """

    def __init__(
        self,
        settings: RateLimitSettings | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize an empty limiter.

        Args:
            settings: Quota and window; defaults to 120 calls per 60 s.
            clock: Monotonic clock in seconds (injectable for tests).
            sleep: Async sleep used while waiting for the window to roll.
        """
        self._settings = settings or RateLimitSettings()
        self._clock = clock
        self._sleep = sleep
        self._queue: deque[tuple[Callable[[], Awaitable[Any]], asyncio.Future]] = deque()
        self._draining = False
        self._drain_task: asyncio.Task | None = None
        self.request_count = 0
        self.window_start = clock()

    @property
    def pending(self) -> int:
        """Number of calls waiting to start."""
        return len(self._queue)

    @property
    def is_draining(self) -> bool:
        """Whether the drain loop is currently running."""
        return self._draining

    async def execute(self, task: Callable[[], Awaitable[T]]) -> T:
        """Queue ``task`` and wait for its result.

        Args:
            task: Zero-argument callable returning an awaitable.

        Returns:
            Whatever the task returns.

        Raises:
            Exception: Whatever the task raises; other queued calls are unaffected.
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._queue.append((task, future))
        if not self._draining:
            self._draining = True
            self._drain_task = asyncio.create_task(self._drain())
        return await future

    async def _drain(self) -> None:
        try:
            while self._queue:
                await self._wait_for_capacity()
                task, future = self._queue.popleft()
                if future.cancelled():
                    continue
                self.request_count += 1
                try:
                    result = await task()
                except Exception as e:
                    if not future.cancelled():
                        future.set_exception(e)
                else:
                    if not future.cancelled():
                        future.set_result(result)
        finally:
            self._draining = False

    async def _wait_for_capacity(self) -> None:
        settings = self._settings
        now = self._clock()
        if now - self.window_start >= settings.window_seconds:
            self.request_count = 0
            self.window_start = now

        if self.request_count < settings.max_requests:
            return

        wait = settings.window_seconds - (now - self.window_start) + settings.reset_buffer_seconds
        if wait > 0:
            logger.info(
                "rate_limit quota=%d reached, waiting %.2fs queued=%d",
                settings.max_requests, wait, len(self._queue),
            )
            await self._sleep(wait)
        self.request_count = 0
        self.window_start = self._clock()
