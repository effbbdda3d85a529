"""Unit tests — ResilienceCoordinator."""

from __future__ import annotations

from typing import Any

import pytest

from dispatch_guard.clock import ManualClock
from dispatch_guard.config import Settings
from dispatch_guard.connectivity import ConnectivityMonitor
from dispatch_guard.events import TOPIC_REQUESTS, MemoryEventBus
from dispatch_guard.exceptions import (
    ClientError,
    CSRFValidationError,
    RateLimitExceededError,
    ResponseShapeError,
    TransportError,
)
from dispatch_guard.posture import SecurityPostureMonitor
from dispatch_guard.resilience import ResilienceCoordinator, request_key
from dispatch_guard.scheduling import Scheduler
from dispatch_guard.security import EventCategory, Severity
from dispatch_guard.storage import MemoryStorage
from dispatch_guard.transport import CallContext

ORDER_SCHEMA = {
    "required": ["id", "status"],
    "properties": {"id": {"type": "string"}, "status": {"type": "string"}},
}


@pytest.mark.unit
class TestRequestKey:
    def test_operation_only(self) -> None:
        assert request_key("orders:list") == "orders:list"
        assert request_key("orders:list", {}) == "orders:list"

    def test_args_canonical(self) -> None:
        assert request_key("orders:get", {"b": 1, "a": 2}) == request_key("orders:get", {"a": 2, "b": 1})
        assert request_key("orders:get", {"a": 2}) == 'orders:get:{"a":2}'


@pytest.mark.unit
class TestFetch:
    async def test_network_then_cache(self, coordinator: ResilienceCoordinator, ops) -> None:
        ops.respond("orders:list", [{"id": "o1"}])
        first = await coordinator.fetch("orders:list")
        second = await coordinator.fetch("orders:list")
        assert first.ok and first.data == [{"id": "o1"}]
        assert first.from_cache is False
        assert second.from_cache is True
        assert len(ops.calls) == 1

    async def test_offline_serves_stale(
        self, coordinator: ResilienceCoordinator, ops, clock: ManualClock, connectivity: ConnectivityMonitor
    ) -> None:
        ops.respond("orders:list", ["o1"])
        await coordinator.fetch("orders:list", ttl=10)
        clock.advance(60)
        connectivity.set_offline(True)

        result = await coordinator.fetch("orders:list")
        assert result.data == ["o1"]
        assert result.stale is True
        assert len(ops.calls) == 1

    async def test_connection_lost_mid_fetch_falls_back(
        self,
        coordinator: ResilienceCoordinator,
        ops,
        clock: ManualClock,
        connectivity: ConnectivityMonitor,
        bus: MemoryEventBus,
    ) -> None:
        ops.respond("orders:list", ["o1"])
        await coordinator.fetch("orders:list", ttl=10)
        clock.advance(60)

        async def drop(args: dict[str, Any], ctx: CallContext) -> Any:
            connectivity.set_offline(True)
            raise TransportError("network unreachable")

        ops.register("orders:list", drop)
        result = await coordinator.fetch("orders:list")
        assert result.ok is True
        assert result.stale is True
        assert result.data == ["o1"]
        assert [e["event"] for e in bus.events_for(TOPIC_REQUESTS)][-1] == "cache_fallback"

    async def test_failure_without_cache_returns_error(
        self, coordinator: ResilienceCoordinator, ops
    ) -> None:
        ops.fail_next("orders:list", *[TransportError("down")] * 3)
        result = await coordinator.fetch("orders:list")
        assert result.ok is False
        assert isinstance(result.error, TransportError)
        assert len(ops.calls) == 3

    async def test_raw_socket_error_returned_as_result(
        self, coordinator: ResilienceCoordinator, ops
    ) -> None:
        async def broken(args: dict[str, Any], ctx: CallContext) -> Any:
            raise ConnectionError("socket closed")

        ops.register("orders:list", broken)
        result = await coordinator.fetch("orders:list")
        assert result.ok is False
        assert isinstance(result.error, TransportError)
        assert isinstance(result.error.__cause__, ConnectionError)

    async def test_shape_violation(
        self, coordinator: ResilienceCoordinator, ops, monitor: SecurityPostureMonitor
    ) -> None:
        ops.respond("orders:get", {"id": "o1"})
        coordinator.register_schema("orders:get", ORDER_SCHEMA)
        result = await coordinator.fetch("orders:get", {"order_id": "o1"})
        assert isinstance(result.error, ResponseShapeError)
        assert coordinator.optimizer.cache.get_stale(request_key("orders:get", {"order_id": "o1"})) is None
        [event] = monitor.get_security_events(category=EventCategory.INVALID_INPUT)
        assert event.metadata["operation"] == "orders:get"

    async def test_repeated_failures_reported(
        self, coordinator: ResilienceCoordinator, ops, monitor: SecurityPostureMonitor
    ) -> None:
        ops.fail_next("orders:list", *[TransportError("down")] * 15)
        for _ in range(5):
            await coordinator.fetch("orders:list")
        [event] = monitor.get_security_events(category=EventCategory.SUSPICIOUS_ACTIVITY)
        assert event.severity is Severity.LOW
        assert event.metadata == {"consecutive_failures": 5}
        assert monitor.score == 99


@pytest.mark.unit
class TestMutate:
    async def test_online_attaches_csrf(self, coordinator: ResilienceCoordinator, ops) -> None:
        ops.respond("orders:create", {"id": "o9", "status": "placed"})
        result = await coordinator.mutate("orders:create", {"sku": "A1"}, session_id="s1")
        assert result.queued is False
        assert result.data == {"id": "o9", "status": "placed"}
        [(_, args, headers)] = ops.calls
        assert args == {"sku": "A1"}
        assert headers == {"X-CSRF-Token": coordinator.guard.current_csrf_token("s1")}

    async def test_offline_queues(
        self, coordinator: ResilienceCoordinator, ops, connectivity: ConnectivityMonitor
    ) -> None:
        connectivity.set_offline(True)
        result = await coordinator.mutate("orders:create", {"sku": "A1"}, session_id="s1")
        assert result.queued is True
        assert result.action_id.startswith("orders:create_")
        assert coordinator.queue.pending_count == 1
        assert ops.calls == []

    async def test_rate_limit_refused_before_queue(
        self, coordinator: ResilienceCoordinator, ops, connectivity: ConnectivityMonitor
    ) -> None:
        for _ in range(100):
            coordinator.guard.check_rate_limit("s1")
        connectivity.set_offline(True)
        with pytest.raises(RateLimitExceededError):
            await coordinator.mutate("orders:create", {}, session_id="s1")
        assert coordinator.queue.pending_count == 0

    async def test_forged_csrf_refused(
        self, coordinator: ResilienceCoordinator, ops, monitor: SecurityPostureMonitor
    ) -> None:
        coordinator.guard.generate_csrf_token("s1")
        with pytest.raises(CSRFValidationError):
            await coordinator.mutate("orders:create", {}, session_id="s1", csrf_token="forged")
        assert ops.calls == []
        assert monitor.get_security_events(category=EventCategory.CSRF_ATTACK)

    async def test_client_error_not_queued(
        self, coordinator: ResilienceCoordinator, ops
    ) -> None:
        ops.fail_next("orders:create", ClientError("bad sku", status_code=422))
        with pytest.raises(ClientError):
            await coordinator.mutate("orders:create", {}, session_id="s1")
        assert len(ops.calls) == 1
        assert coordinator.queue.pending_count == 0

    async def test_connection_lost_mid_mutation_queues(
        self, coordinator: ResilienceCoordinator, ops, connectivity: ConnectivityMonitor
    ) -> None:
        async def drop(args: dict[str, Any], ctx: CallContext) -> Any:
            connectivity.set_offline(True)
            raise TransportError("network unreachable")

        ops.register("orders:create", drop)
        result = await coordinator.mutate("orders:create", {"sku": "A1"}, session_id="s1")
        assert result.queued is True
        assert coordinator.queue.pending_actions[0].payload == {"sku": "A1"}

    async def test_socket_error_after_connection_lost_queues(
        self, coordinator: ResilienceCoordinator, ops, connectivity: ConnectivityMonitor
    ) -> None:
        async def drop(args: dict[str, Any], ctx: CallContext) -> Any:
            connectivity.set_offline(True)
            raise ConnectionResetError("reset by peer")

        ops.register("orders:create", drop)
        result = await coordinator.mutate("orders:create", {"sku": "A1"}, session_id="s1")
        assert result.queued is True
        assert coordinator.queue.pending_count == 1

    async def test_invalidates_cached_reads(self, coordinator: ResilienceCoordinator, ops) -> None:
        ops.respond("orders:list", ["o1"])
        ops.respond("orders:create", {"id": "o2", "status": "placed"})
        await coordinator.fetch("orders:list")
        await coordinator.mutate("orders:create", {}, session_id="s1", invalidates=["orders:"])
        assert coordinator.optimizer.cache.get("orders:list") is None


@pytest.mark.unit
class TestLifecycle:
    async def test_reconnect_replays_with_fresh_token(
        self, coordinator: ResilienceCoordinator, ops, connectivity: ConnectivityMonitor
    ) -> None:
        ops.respond("orders:create", {"id": "o1", "status": "placed"})
        await coordinator.start()
        try:
            connectivity.set_offline(True)
            await coordinator.mutate("orders:create", {"sku": "A1"}, session_id="s1")
            connectivity.set_offline(False)
            await connectivity.wait_for_listeners()

            assert coordinator.queue.pending_count == 0
            [(_, _, headers)] = ops.calls
            assert headers["X-CSRF-Token"] == coordinator.guard.current_csrf_token("s1")
        finally:
            await coordinator.stop()

    async def test_start_replays_persisted_actions(
        self, coordinator: ResilienceCoordinator, ops, storage: MemoryStorage
    ) -> None:
        ops.respond("orders:create", {"ok": True})
        await storage.persist(
            "dispatch_guard.offline_actions",
            [{"id": "orders:create_1", "type": "orders:create", "created_at": 1.0, "payload": {"sku": "A"}}],
        )
        await coordinator.start()
        try:
            assert coordinator.queue.pending_count == 0
            assert ops.calls[0][1] == {"sku": "A"}
        finally:
            await coordinator.stop()

    async def test_trust_failure_on_replay_reported(
        self,
        coordinator: ResilienceCoordinator,
        ops,
        connectivity: ConnectivityMonitor,
        monitor: SecurityPostureMonitor,
    ) -> None:
        connectivity.set_offline(True)
        await coordinator.mutate("orders:create", {}, session_id="s1")
        ops.fail_next("orders:create", CSRFValidationError("s1"))
        connectivity.set_offline(False)

        report = await coordinator.force_sync()
        assert report.failed == 1
        [event] = monitor.get_security_events(category=EventCategory.CSRF_ATTACK)
        assert event.message == "Replay of orders:create refused"

    async def test_cache_sweep_scheduled(
        self, coordinator: ResilienceCoordinator, ops, clock: ManualClock, scheduler: Scheduler
    ) -> None:
        ops.respond("orders:list", ["o1"])
        await coordinator.fetch("orders:list", ttl=10)
        clock.advance(600)
        await scheduler.run_due()
        assert coordinator.optimizer.cache.get_stale("orders:list") is None

    def test_from_settings(self, ops) -> None:
        coordinator = ResilienceCoordinator.from_settings(Settings(), ops)
        assert coordinator.is_offline is False
        assert coordinator.snapshot().score == 100
        assert coordinator.guard.csrf_header_name == "X-CSRF-Token"
