"""Unit tests — Connectivity monitor."""

from __future__ import annotations

import pytest

from dispatch_guard.connectivity import ConnectivityMonitor


@pytest.mark.unit
class TestConnectivityMonitor:
    def test_sync_listener_called_on_change_only(self) -> None:
        monitor = ConnectivityMonitor()
        seen: list[bool] = []
        monitor.subscribe(seen.append)
        monitor.set_offline(False)
        monitor.set_offline(True)
        monitor.set_offline(True)
        monitor.set_offline(False)
        assert seen == [True, False]

    def test_unsubscribe(self) -> None:
        monitor = ConnectivityMonitor()
        seen: list[bool] = []
        unsubscribe = monitor.subscribe(seen.append)
        unsubscribe()
        unsubscribe()
        monitor.set_offline(True)
        assert seen == []

    def test_failing_listener_does_not_block_others(self) -> None:
        monitor = ConnectivityMonitor()
        seen: list[bool] = []

        def broken(_: bool) -> None:
            raise RuntimeError("listener bug")

        monitor.subscribe(broken)
        monitor.subscribe(seen.append)
        monitor.set_offline(True)
        assert seen == [True]
        assert monitor.is_offline is True

    async def test_async_listener_awaited(self) -> None:
        monitor = ConnectivityMonitor(is_offline=True)
        seen: list[bool] = []

        async def listener(is_offline: bool) -> None:
            seen.append(is_offline)

        monitor.subscribe(listener)
        monitor.set_offline(False)
        await monitor.wait_for_listeners()
        assert seen == [False]
