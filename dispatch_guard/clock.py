"""Injectable clocks.

Every time-dependent component (rate limiter, CSRF store, cache, posture
monitor, scheduler) reads the current instant through a ``Clock`` so tests can
substitute a ``ManualClock`` and advance virtual time deterministically.

Usage::

    clock = ManualClock(start=1_000.0)
    limiter = SlidingWindowRateLimiter(config, clock=clock)
    clock.advance(60)
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from abc import ABC, abstractmethod


class Clock(ABC):
    """Source of the current time (Unix epoch seconds) and of sleeps."""

    @abstractmethod
    def now(self) -> float:
        """Return the current instant in seconds."""

    @abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task for *seconds* of this clock's time."""


class SystemClock(Clock):
    """Wall-clock time backed by :func:`time.time` and :func:`asyncio.sleep`."""

    def now(self) -> float:
        return time.time()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(max(0.0, seconds))


class ManualClock(Clock):
    """Virtual clock that only moves when :meth:`advance` is called.

    Sleepers are woken in deadline order once virtual time reaches their
    deadline.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = float(start)
        self._sleepers: list[tuple[float, int, asyncio.Future[None]]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    async def sleep(self, seconds: float) -> None:
        if seconds <= 0:
            await asyncio.sleep(0)
            return
        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self._now + seconds, next(self._seq), fut))
        await fut

    def advance(self, seconds: float) -> None:
        """Move virtual time forward and wake every sleeper now due."""
        if seconds < 0:
            raise ValueError(f"Cannot move a clock backwards (got {seconds})")
        self._now += seconds
        while self._sleepers and self._sleepers[0][0] <= self._now:
            _, _, fut = heapq.heappop(self._sleepers)
            if not fut.done():
                fut.set_result(None)

    @property
    def pending_sleepers(self) -> int:
        return sum(1 for _, _, fut in self._sleepers if not fut.done())
