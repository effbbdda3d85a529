"""Resilience layer — Coordinator.

Single entry point the UI talks to.  Composes the offline queue, the request
optimizer and cache, the trust guard and the posture monitor:

    fetch  → fresh cache ─┐
                          ├─ dedup → retry → network → shape check → cache
           offline + failure → stale cache (error cleared)

    mutate → rate limit (charged once)
             ├─ offline → offline queue (optimistic ack)
             └─ online  → CSRF header → retry → network → shape check

Trust failures (rate limit, CSRF, malformed response) are raised to the
caller and never queued or retried.  Repeated transport failures are
reported to the posture monitor at low severity.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from dispatch_guard.clock import Clock, SystemClock
from dispatch_guard.config import Settings
from dispatch_guard.connectivity import ConnectivityMonitor
from dispatch_guard.events.bus import TOPIC_REQUESTS, EventBus, NullEventBus
from dispatch_guard.exceptions import (
    ClientError,
    CSRFValidationError,
    DispatchGuardError,
    RateLimitExceededError,
    ResponseShapeError,
    TransportError,
    TrustError,
)
from dispatch_guard.logging import bind_request_context, get_logger
from dispatch_guard.posture.monitor import PostureSnapshot, SecurityPostureMonitor
from dispatch_guard.resilience.cache import ResponseCache
from dispatch_guard.resilience.offline_queue import OfflineActionQueue, PendingAction, SyncReport
from dispatch_guard.resilience.optimizer import RequestOptimizer
from dispatch_guard.scheduling import Scheduler
from dispatch_guard.security.guard import TrustGuard
from dispatch_guard.security.models import EventCategory, Severity
from dispatch_guard.storage import DurableStorage, MemoryStorage, create_storage
from dispatch_guard.transport import NetworkCapability

log = get_logger(__name__)

CACHE_SWEEP_TASK = "cache_sweep"


@dataclass(frozen=True)
class FetchResult:
    data: Any = None
    error: DispatchGuardError | None = None
    from_cache: bool = False
    stale: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class MutationResult:
    data: Any = None
    queued: bool = False
    action_id: str | None = None


def request_key(operation: str, args: Mapping[str, Any] | None = None) -> str:
    """Stable key for an operation call: the operation id plus canonical JSON args."""
    if not args:
        return operation
    canonical = json.dumps(args, sort_keys=True, separators=(",", ":"), default=str)
    return f"{operation}:{canonical}"


def _trust_category(exc: Exception) -> tuple[EventCategory, Severity]:
    if isinstance(exc, CSRFValidationError):
        return EventCategory.CSRF_ATTACK, Severity.HIGH
    if isinstance(exc, RateLimitExceededError):
        return EventCategory.RATE_LIMIT, Severity.MEDIUM
    if isinstance(exc, ResponseShapeError):
        return EventCategory.INVALID_INPUT, Severity.MEDIUM
    return EventCategory.SUSPICIOUS_ACTIVITY, Severity.MEDIUM


class ResilienceCoordinator:
    """Offline-aware, trust-checked request front door.

    Build one with :meth:`from_settings` in application code; tests construct
    the parts explicitly.
    """

    def __init__(
        self,
        network: NetworkCapability,
        guard: TrustGuard,
        monitor: SecurityPostureMonitor,
        optimizer: RequestOptimizer,
        connectivity: ConnectivityMonitor | None = None,
        storage: DurableStorage | None = None,
        settings: Settings | None = None,
        clock: Clock | None = None,
        event_bus: EventBus | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._network = network
        self._guard = guard
        self._monitor = monitor
        self._optimizer = optimizer
        self._connectivity = connectivity or ConnectivityMonitor()
        self._storage = storage or MemoryStorage()
        self._clock = clock or SystemClock()
        self._bus = event_bus or NullEventBus()
        self._scheduler = scheduler or monitor.scheduler
        self._schemas: dict[str, Mapping[str, Any]] = {}
        self._consecutive_failures = 0
        self._unsubscribe: Callable[[], None] | None = None

        self._monitor.set_connectivity_source(lambda: self._connectivity.is_offline)
        self._queue = OfflineActionQueue(
            network,
            storage=self._storage,
            config=self._settings.offline,
            clock=self._clock,
            event_bus=self._bus,
            is_offline=lambda: self._connectivity.is_offline,
            headers_for=self._replay_headers,
            on_replay_failed=self._on_replay_failed,
        )
        self._scheduler.every(
            CACHE_SWEEP_TASK,
            self._settings.cache.sweep_interval_seconds,
            self._optimizer.clear_old_cache,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        network: NetworkCapability,
        clock: Clock | None = None,
        event_bus: EventBus | None = None,
        connectivity: ConnectivityMonitor | None = None,
    ) -> "ResilienceCoordinator":
        clock = clock or SystemClock()
        bus = event_bus or NullEventBus()
        storage = create_storage(settings.storage)
        scheduler = Scheduler(clock)
        monitor = SecurityPostureMonitor(
            settings.posture, clock=clock, event_bus=bus, scheduler=scheduler
        )
        guard = TrustGuard(
            settings.rate_limit, settings.csrf, settings.headers, sink=monitor, clock=clock
        )
        cache = ResponseCache(settings.cache, clock=clock, storage=storage)
        optimizer = RequestOptimizer(settings.optimizer, cache=cache, clock=clock, event_bus=bus)
        return cls(
            network,
            guard,
            monitor,
            optimizer,
            connectivity=connectivity,
            storage=storage,
            settings=settings,
            clock=clock,
            event_bus=bus,
            scheduler=scheduler,
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def guard(self) -> TrustGuard:
        return self._guard

    @property
    def monitor(self) -> SecurityPostureMonitor:
        return self._monitor

    @property
    def queue(self) -> OfflineActionQueue:
        return self._queue

    @property
    def optimizer(self) -> RequestOptimizer:
        return self._optimizer

    @property
    def connectivity(self) -> ConnectivityMonitor:
        return self._connectivity

    @property
    def is_offline(self) -> bool:
        return self._connectivity.is_offline

    def register_schema(self, operation: str, schema: Mapping[str, Any]) -> None:
        """Validate every response of *operation* against *schema*."""
        self._schemas[operation] = schema

    def snapshot(self) -> PostureSnapshot:
        return self._monitor.snapshot()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self._storage.init()
        await self._queue.load()
        await self._optimizer.cache.load()
        if self._unsubscribe is None:
            self._unsubscribe = self._connectivity.subscribe(self.handle_connectivity_change)
        await self._scheduler.start()
        log.info(
            "coordinator_started",
            pending_actions=self._queue.pending_count,
            is_offline=self.is_offline,
        )
        if self._queue.pending_count and not self.is_offline:
            await self._queue.force_sync()

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self._scheduler.stop()
        await self._queue.wait_idle()
        await self._connectivity.wait_for_listeners()
        await self._monitor.flush()
        await self._storage.close()
        log.info("coordinator_stopped")

    async def handle_connectivity_change(self, is_offline: bool) -> SyncReport | None:
        if is_offline or not self._settings.offline.sync_on_reconnect:
            return None
        log.info("connectivity_restored", pending_actions=self._queue.pending_count)
        return await self._queue.force_sync()

    async def force_sync(self) -> SyncReport:
        return await self._queue.force_sync()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch(
        self,
        operation: str,
        args: Mapping[str, Any] | None = None,
        cache_key: str | None = None,
        ttl: float | None = None,
    ) -> FetchResult:
        key = cache_key or request_key(operation, args)
        bind_request_context(request_key=key)
        payload = dict(args or {})

        fresh = self._optimizer.cache.get(key)
        if fresh is not None:
            return FetchResult(data=fresh.value, from_cache=True)

        if self.is_offline:
            stale = self._optimizer.cache.get_stale(key)
            if stale is not None:
                log.info("offline_cache_fallback", request_key=key)
                return FetchResult(data=stale.value, from_cache=True, stale=True)

        async def call() -> Any:
            response = await self._network.send(operation, payload)
            return self._check_shape(operation, response)

        try:
            data = await self._optimizer.fetch_cached(key, call, ttl)
        except DispatchGuardError as exc:
            self._record_failure(exc)
            stale = self._optimizer.cache.get_stale(key)
            if self.is_offline and stale is not None:
                log.info("offline_cache_fallback", request_key=key, error=exc.message)
                await self._bus.emit(
                    TOPIC_REQUESTS, {"event": "cache_fallback", "key": key, "error": exc.message}
                )
                return FetchResult(data=stale.value, from_cache=True, stale=True)
            log.warning("fetch_failed", operation=operation, error=exc.message)
            return FetchResult(error=exc)

        self._consecutive_failures = 0
        return FetchResult(data=data)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def mutate(
        self,
        operation: str,
        args: Mapping[str, Any] | None,
        session_id: str,
        identifier: str | None = None,
        csrf_token: str | None = None,
        invalidates: list[str] | None = None,
    ) -> MutationResult:
        """Send a mutating call, or queue it while offline.

        Raises:
            RateLimitExceededError: The identifier exhausted its window.
            CSRFValidationError: *csrf_token* was given and is not the live token.
            ResponseShapeError: A schema is registered and the response breaks it.
            TransportError: The call failed after retries while still online.
        """
        bind_request_context(session_id=session_id)
        payload = dict(args or {})
        self._guard.enforce_rate_limit(identifier or session_id)

        if csrf_token is not None and not self._guard.validate_csrf_token(session_id, csrf_token):
            raise CSRFValidationError(session_id)

        if self.is_offline:
            return await self._enqueue(operation, payload, session_id)

        headers = self._guard.mutation_headers(session_id)

        async def call() -> Any:
            return await self._network.send(operation, payload, headers=headers)

        try:
            response = await self._optimizer.with_retry(call, key=operation)
        except TransportError as exc:
            self._record_failure(exc)
            if self.is_offline and not isinstance(exc, ClientError):
                return await self._enqueue(operation, payload, session_id)
            raise

        self._consecutive_failures = 0
        data = self._check_shape(operation, response)
        for prefix in invalidates or []:
            await self._optimizer.invalidate_prefix(prefix)
        return MutationResult(data=data)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _enqueue(self, operation: str, payload: dict[str, Any], session_id: str) -> MutationResult:
        action_id = await self._queue.store_offline_action(operation, payload, session_id=session_id)
        return MutationResult(queued=True, action_id=action_id)

    def _check_shape(self, operation: str, response: Any) -> Any:
        schema = self._schemas.get(operation)
        if schema is None:
            return response
        return self._guard.ensure_response(response, schema, operation)

    def _record_failure(self, exc: DispatchGuardError) -> None:
        if not isinstance(exc, TransportError) or isinstance(exc, ClientError):
            return
        self._consecutive_failures += 1
        threshold = self._settings.optimizer.failure_report_threshold
        if self._consecutive_failures >= threshold:
            self._monitor.log_security_event(
                EventCategory.SUSPICIOUS_ACTIVITY,
                "Repeated request failures",
                Severity.LOW,
                {"consecutive_failures": self._consecutive_failures},
            )
            self._consecutive_failures = 0

    def _replay_headers(self, action: PendingAction) -> dict[str, str]:
        if action.session_id is None:
            return {}
        return self._guard.mutation_headers(action.session_id)

    def _on_replay_failed(self, action: PendingAction, exc: Exception) -> None:
        if not isinstance(exc, TrustError):
            return
        category, severity = _trust_category(exc)
        self._monitor.log_security_event(
            category,
            f"Replay of {action.type} refused",
            severity,
            {"action_id": action.id, "error": str(exc)},
        )
