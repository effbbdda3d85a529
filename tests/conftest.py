"""Shared pytest fixtures for the dispatch-guard test suite."""

from __future__ import annotations

from typing import Any

import pytest

from dispatch_guard.clock import ManualClock
from dispatch_guard.config import Settings, override_settings
from dispatch_guard.connectivity import ConnectivityMonitor
from dispatch_guard.events import MemoryEventBus
from dispatch_guard.posture import SecurityPostureMonitor
from dispatch_guard.resilience import ResilienceCoordinator, ResponseCache, RequestOptimizer
from dispatch_guard.scheduling import Scheduler
from dispatch_guard.security import TrustGuard
from dispatch_guard.storage import MemoryStorage
from dispatch_guard.transport import CallContext, OperationTable

START = 1_700_000_000.0


# ---------------------------------------------------------------------------
# Settings and time
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> Settings:
    settings = Settings(
        optimizer={"retry_base_delay": 0.0, "max_retries": 2},
        logging={"level": "debug", "format": "console"},
    )
    override_settings(settings)
    return settings


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(start=START)


@pytest.fixture
def bus() -> MemoryEventBus:
    return MemoryEventBus()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def connectivity() -> ConnectivityMonitor:
    return ConnectivityMonitor()


# ---------------------------------------------------------------------------
# Components
# ---------------------------------------------------------------------------


@pytest.fixture
def scheduler(clock: ManualClock) -> Scheduler:
    return Scheduler(clock)


@pytest.fixture
def monitor(
    test_settings: Settings, clock: ManualClock, bus: MemoryEventBus, scheduler: Scheduler
) -> SecurityPostureMonitor:
    return SecurityPostureMonitor(
        test_settings.posture, clock=clock, event_bus=bus, scheduler=scheduler
    )


@pytest.fixture
def guard(
    test_settings: Settings, clock: ManualClock, monitor: SecurityPostureMonitor
) -> TrustGuard:
    return TrustGuard(
        test_settings.rate_limit,
        test_settings.csrf,
        test_settings.headers,
        sink=monitor,
        clock=clock,
    )


class RecordingOperations(OperationTable):
    """OperationTable that records every call and can be told to fail."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[tuple[str, dict[str, Any], dict[str, str]]] = []
        self.failures: dict[str, list[Exception]] = {}

    def fail_next(self, operation: str, *errors: Exception) -> None:
        self.failures.setdefault(operation, []).extend(errors)

    def respond(self, operation: str, value: Any) -> None:
        async def handler(args: dict[str, Any], ctx: CallContext) -> Any:
            return value

        self.register(operation, handler)

    async def send(self, operation, args, *, signal=None, headers=None):  # type: ignore[override]
        self.calls.append((operation, dict(args), dict(headers or {})))
        pending = self.failures.get(operation)
        if pending:
            raise pending.pop(0)
        return await super().send(operation, args, signal=signal, headers=headers)

    def calls_for(self, operation: str) -> list[tuple[str, dict[str, Any], dict[str, str]]]:
        return [c for c in self.calls if c[0] == operation]


@pytest.fixture
def ops() -> RecordingOperations:
    return RecordingOperations()


@pytest.fixture
def optimizer(
    test_settings: Settings, clock: ManualClock, bus: MemoryEventBus, storage: MemoryStorage
) -> RequestOptimizer:
    cache = ResponseCache(test_settings.cache, clock=clock, storage=storage)
    return RequestOptimizer(test_settings.optimizer, cache=cache, clock=clock, event_bus=bus)


@pytest.fixture
def coordinator(
    test_settings: Settings,
    ops: RecordingOperations,
    guard: TrustGuard,
    monitor: SecurityPostureMonitor,
    optimizer: RequestOptimizer,
    connectivity: ConnectivityMonitor,
    storage: MemoryStorage,
    clock: ManualClock,
    bus: MemoryEventBus,
    scheduler: Scheduler,
) -> ResilienceCoordinator:
    return ResilienceCoordinator(
        ops,
        guard,
        monitor,
        optimizer,
        connectivity=connectivity,
        storage=storage,
        settings=test_settings,
        clock=clock,
        event_bus=bus,
        scheduler=scheduler,
    )
