"""
Sliding-window rate limiter shared by the workers of one pool.

The limiter keeps the start times of the last ``max_starts`` jobs, so no
rolling window of ``period`` seconds ever contains more than ``max_starts``
starts (a fixed window would allow up to twice that across a boundary).
"""

import asyncio
import time
from collections import deque
from typing import Callable, Deque


class SlidingWindowRateLimiter:
    def __init__(
        self,
        max_starts: int,
        period: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_starts < 1:
            raise ValueError("max_starts must be at least 1")
        if period <= 0:
            raise ValueError("period must be positive")
        self.max_starts = max_starts
        self.period = period
        self._clock = clock
        self._starts: Deque[float] = deque()

    def _prune(self, now: float) -> None:
        while self._starts and now - self._starts[0] >= self.period:
            self._starts.popleft()

    def delay_until_available(self) -> float:
        """Seconds to wait before another start fits in the window (0 if now)."""
        now = self._clock()
        self._prune(now)
        if len(self._starts) < self.max_starts:
            return 0.0
        return self._starts[0] + self.period - now

    async def wait_available(self) -> None:
        """Suspend until a start would be within budget. Does not consume it."""
        while True:
            delay = self.delay_until_available()
            if delay <= 0:
                return
            await asyncio.sleep(delay)

    def record_start(self) -> None:
        now = self._clock()
        self._prune(now)
        self._starts.append(now)

    async def acquire(self) -> None:
        await self.wait_available()
        self.record_start()

    @property
    def starts_in_window(self) -> int:
        self._prune(self._clock())
        return len(self._starts)
