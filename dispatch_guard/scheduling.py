"""Periodic task scheduler driven by an injectable clock.

Recurring work (posture checks, score recovery, cache sweeps) is modelled as
explicit ``PeriodicTask`` entries instead of free-running timers.  A task
becomes due one full interval after registration (no immediate run on
start), matching ``setInterval`` semantics.

Two ways to drive the scheduler:

  - ``await scheduler.start()`` — background asyncio task that sleeps on the
    clock until the next deadline and runs whatever is due; registering a
    task wakes it so an earlier deadline is honoured.
  - ``await scheduler.run_due()`` — run everything due *now*; tests advance a
    ``ManualClock`` and call this directly.

If the clock jumps forward by several intervals, a task runs once per
elapsed interval so hourly recovery after a three-hour gap applies three
steps.
"""

from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from dispatch_guard.clock import Clock, SystemClock
from dispatch_guard.logging import get_logger

log = get_logger(__name__)

TaskCallback = Callable[[], Awaitable[Any] | Any]


@dataclass
class PeriodicTask:
    name: str
    interval: float
    callback: TaskCallback
    next_run: float
    run_count: int = field(default=0)

    async def run(self) -> None:
        result = self.callback()
        if inspect.isawaitable(result):
            await result
        self.run_count += 1


class Scheduler:
    """Run registered periodic tasks when their deadlines pass."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._tasks: dict[str, PeriodicTask] = {}
        self._runner: asyncio.Task[None] | None = None
        self._wakeup = asyncio.Event()

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    def every(self, name: str, interval: float, callback: TaskCallback) -> PeriodicTask:
        """Register *callback* to run every *interval* seconds."""
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        task = PeriodicTask(
            name=name,
            interval=interval,
            callback=callback,
            next_run=self._clock.now() + interval,
        )
        self._tasks[name] = task
        self._wakeup.set()
        log.debug("periodic_task_registered", task=name, interval=interval)
        return task

    def cancel(self, name: str) -> bool:
        return self._tasks.pop(name, None) is not None

    def get(self, name: str) -> PeriodicTask | None:
        return self._tasks.get(name)

    async def run_due(self) -> int:
        """Run every task whose deadline has passed; return the number of runs."""
        runs = 0
        now = self._clock.now()
        for task in sorted(self._tasks.values(), key=lambda t: t.next_run):
            while task.next_run <= now and task.name in self._tasks:
                task.next_run += task.interval
                try:
                    await task.run()
                except Exception as exc:
                    log.error("periodic_task_failed", task=task.name, error=str(exc))
                runs += 1
        return runs

    def seconds_until_next(self) -> float | None:
        if not self._tasks:
            return None
        next_run = min(t.next_run for t in self._tasks.values())
        return max(0.0, next_run - self._clock.now())

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self.running:
            return
        self._runner = asyncio.create_task(self._loop(), name="dispatch_guard_scheduler")
        log.debug("scheduler_started", tasks=list(self._tasks))

    async def stop(self) -> None:
        if self._runner and not self._runner.done():
            self._runner.cancel()
            try:
                await self._runner
            except asyncio.CancelledError:
                pass
        self._runner = None
        log.debug("scheduler_stopped")

    async def _loop(self) -> None:
        while True:
            delay = self.seconds_until_next()
            self._wakeup.clear()
            if delay is None:
                await self._wakeup.wait()
                continue
            sleeper = asyncio.ensure_future(self._clock.sleep(delay))
            waker = asyncio.ensure_future(self._wakeup.wait())
            try:
                done, _ = await asyncio.wait(
                    {sleeper, waker}, return_when=asyncio.FIRST_COMPLETED
                )
            finally:
                sleeper.cancel()
                waker.cancel()
            if sleeper not in done:
                # A registration changed the next deadline.
                continue
            await self.run_due()
