"""Unit tests — Injectable clocks."""

from __future__ import annotations

import asyncio

import pytest

from dispatch_guard.clock import ManualClock, SystemClock


@pytest.mark.unit
class TestManualClock:
    def test_advance(self) -> None:
        clock = ManualClock(start=10.0)
        clock.advance(5)
        assert clock.now() == 15.0

    def test_cannot_go_backwards(self) -> None:
        with pytest.raises(ValueError):
            ManualClock().advance(-1)

    async def test_sleepers_wake_in_deadline_order(self) -> None:
        clock = ManualClock()
        woke: list[str] = []

        async def sleeper(name: str, seconds: float) -> None:
            await clock.sleep(seconds)
            woke.append(name)

        tasks = [
            asyncio.create_task(sleeper("late", 10)),
            asyncio.create_task(sleeper("early", 5)),
        ]
        await asyncio.sleep(0)
        assert clock.pending_sleepers == 2

        clock.advance(5)
        await asyncio.sleep(0)
        assert woke == ["early"]

        clock.advance(5)
        await asyncio.gather(*tasks)
        assert woke == ["early", "late"]

    async def test_zero_sleep_yields(self) -> None:
        await ManualClock().sleep(0)


@pytest.mark.unit
class TestSystemClock:
    async def test_now_and_sleep(self) -> None:
        clock = SystemClock()
        before = clock.now()
        await clock.sleep(0)
        assert clock.now() >= before
