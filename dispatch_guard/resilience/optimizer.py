"""Resilience layer — Request optimizer.

Shapes outgoing calls so the network sees as little redundant traffic as
possible:

  - **deduplicate_request** — one physical call per request key; concurrent
    callers share the same future.
  - **batch_requests** — per batch key, drained in groups of ``batch_size``;
    each group settles before the next starts.
  - **create_debounced_request** — trailing edge; a burst resolves with one
    result.
  - **create_throttled_request** — leading edge; calls inside the interval
    are dropped and receive the most recent result.

    Both fire through ``deduplicate_request`` under their key, so they share
    any call already in flight for it.
  - **create_cancellable_request** — the callable receives a ``CancelSignal``.
  - **with_retry** — exponential backoff for transport failures only.
  - **TTL cache** — ``fetch_cached`` / ``prefetch`` / ``invalidate*``.

All timing goes through the injected ``Clock``.
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from functools import partial
from typing import Any, Awaitable, Callable, Iterable, Mapping

from dispatch_guard.clock import Clock, SystemClock
from dispatch_guard.config import OptimizerConfig
from dispatch_guard.events.bus import TOPIC_REQUESTS, EventBus, NullEventBus
from dispatch_guard.exceptions import (
    ClientError,
    QueueError,
    RequestCancelledError,
    TransportError,
    TrustError,
)
from dispatch_guard.logging import get_logger
from dispatch_guard.resilience.cache import ResponseCache
from dispatch_guard.transport import CancelSignal

log = get_logger(__name__)

RequestFn = Callable[[], Awaitable[Any]]

# Never retried: the answer will not change on a second attempt.
_NON_RETRYABLE: tuple[type[BaseException], ...] = (
    ClientError,
    TrustError,
    RequestCancelledError,
    QueueError,
)
_RETRYABLE: tuple[type[BaseException], ...] = (TransportError, OSError)


async def _invoke(fn: RequestFn) -> Any:
    return await fn()


@dataclass
class _BatchItem:
    fn: RequestFn
    future: asyncio.Future[Any]


# ---------------------------------------------------------------------------
# Wrapped callables
# ---------------------------------------------------------------------------


class DebouncedRequest:
    """Trailing-edge debounced callable.  Await it; call ``cancel()`` to drop."""

    def __init__(self, key: str, fn: Callable[..., Awaitable[Any]], delay: float, clock: Clock) -> None:
        self.key = key
        self._fn = fn
        self._delay = delay
        self._clock = clock
        self._timer: asyncio.Task[None] | None = None
        self._firing: asyncio.Task[None] | None = None
        self._waiters: list[asyncio.Future[Any]] = []
        self._args: tuple[Any, ...] = ()
        self._kwargs: dict[str, Any] = {}

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    async def __call__(self, *args: Any, **kwargs: Any) -> Any:
        self._args, self._kwargs = args, kwargs
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        waiter: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        self._timer = asyncio.ensure_future(self._fire())
        return await waiter

    def cancel(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(RequestCancelledError(self.key))
        if waiters:
            log.debug("debounced_request_cancelled", request_key=self.key, waiters=len(waiters))

    async def _fire(self) -> None:
        await self._clock.sleep(self._delay)
        # Past the quiet period: later calls start a new burst.
        self._firing, self._timer = self._timer, None
        waiters, self._waiters = self._waiters, []
        try:
            result = await self._fn(*self._args, **self._kwargs)
        except Exception as exc:
            for waiter in waiters:
                if not waiter.done():
                    waiter.set_exception(exc)
            return
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(result)


class ThrottledRequest:
    """Leading-edge throttled callable."""

    def __init__(self, key: str, fn: Callable[..., Awaitable[Any]], interval: float, clock: Clock) -> None:
        self.key = key
        self._fn = fn
        self._interval = interval
        self._clock = clock
        self._last_run: float | None = None
        self.last_result: Any = None
        self.dropped = 0

    async def __call__(self, *args: Any, **kwargs: Any) -> Any:
        now = self._clock.now()
        if self._last_run is not None and now - self._last_run < self._interval:
            self.dropped += 1
            log.debug("throttled_request_dropped", request_key=self.key)
            return self.last_result
        self._last_run = now
        self.last_result = await self._fn(*args, **kwargs)
        return self.last_result


class CancellableRequest:
    """A request whose callable receives a ``CancelSignal``.

    ``cancel()`` sets the signal and cancels the running task; it is
    idempotent and a no-op once the request has settled.  The invoker sees
    ``RequestCancelledError``.
    """

    def __init__(self, key: str, fn: Callable[[CancelSignal], Awaitable[Any]]) -> None:
        self.key = key
        self._fn = fn
        self._signal = CancelSignal()
        self._task: asyncio.Task[Any] | None = None

    @property
    def signal(self) -> CancelSignal:
        return self._signal

    @property
    def settled(self) -> bool:
        return self._task is not None and self._task.done()

    async def invoke(self) -> Any:
        if self._signal.cancelled:
            raise RequestCancelledError(self.key)
        self._task = asyncio.ensure_future(self._fn(self._signal))
        try:
            return await self._task
        except asyncio.CancelledError:
            if self._signal.cancelled:
                raise RequestCancelledError(self.key) from None
            raise

    def cancel(self) -> None:
        if self._signal.cancelled or self.settled:
            return
        self._signal.cancel()
        if self._task is not None:
            self._task.cancel()
        log.debug("request_cancelled", request_key=self.key)


# ---------------------------------------------------------------------------
# RequestOptimizer
# ---------------------------------------------------------------------------


@dataclass
class _Metrics:
    physical_calls: int = 0
    deduplicated: int = 0
    retries: int = 0


class RequestOptimizer:
    def __init__(
        self,
        config: OptimizerConfig | None = None,
        cache: ResponseCache | None = None,
        clock: Clock | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._config = config or OptimizerConfig()
        self._clock = clock or SystemClock()
        self._cache = cache or ResponseCache(clock=self._clock)
        self._bus = event_bus or NullEventBus()
        self._inflight: dict[str, asyncio.Future[Any]] = {}
        self._batches: dict[str, deque[_BatchItem]] = {}
        self._drainers: dict[str, asyncio.Task[None]] = {}
        self._metrics = _Metrics()

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    def inflight_keys(self) -> list[str]:
        return list(self._inflight)

    # ------------------------------------------------------------------
    # Deduplication
    # ------------------------------------------------------------------

    async def deduplicate_request(self, key: str, fn: RequestFn) -> Any:
        """Run *fn* unless a call for *key* is already in flight; share its outcome."""
        future = self._inflight.get(key)
        if future is None:
            future = asyncio.ensure_future(fn())
            self._inflight[key] = future
            self._metrics.physical_calls += 1
            future.add_done_callback(lambda f, k=key: self._settle(k, f))
        else:
            self._metrics.deduplicated += 1
            log.debug("request_deduplicated", request_key=key)
        return await asyncio.shield(future)

    def _settle(self, key: str, future: asyncio.Future[Any]) -> None:
        if self._inflight.get(key) is future:
            del self._inflight[key]
        if not future.cancelled():
            future.exception()  # mark retrieved; joiners re-raise it

    # ------------------------------------------------------------------
    # Batching
    # ------------------------------------------------------------------

    async def batch_requests(self, requests: Iterable[RequestFn], batch_key: str = "default") -> list[Any]:
        """Queue *requests* under *batch_key*; return results in input order."""
        loop = asyncio.get_running_loop()
        queue = self._batches.setdefault(batch_key, deque())
        futures: list[asyncio.Future[Any]] = []
        for fn in requests:
            item = _BatchItem(fn=fn, future=loop.create_future())
            queue.append(item)
            futures.append(item.future)
        if not futures:
            return []

        drainer = self._drainers.get(batch_key)
        if drainer is None or drainer.done():
            self._drainers[batch_key] = asyncio.ensure_future(self._drain(batch_key))

        await asyncio.wait(futures)
        for future in futures:
            if future.exception() is not None:
                raise future.exception()  # type: ignore[misc]
        return [future.result() for future in futures]

    async def _drain(self, batch_key: str) -> None:
        queue = self._batches[batch_key]
        group: list[_BatchItem] = []
        try:
            while queue:
                group = [queue.popleft() for _ in range(min(self._config.batch_size, len(queue)))]
                log.debug("batch_group_started", batch_key=batch_key, size=len(group))
                self._metrics.physical_calls += len(group)
                outcomes = await asyncio.gather(
                    *(_invoke(item.fn) for item in group), return_exceptions=True
                )
                for item, outcome in zip(group, outcomes):
                    if item.future.done():
                        continue
                    if isinstance(outcome, BaseException):
                        item.future.set_exception(outcome)
                    else:
                        item.future.set_result(outcome)
        finally:
            # Fail whatever is still unsettled if the drainer is cancelled.
            for item in [*group, *queue]:
                if not item.future.done():
                    item.future.set_exception(RequestCancelledError(batch_key))
            queue.clear()
            if self._drainers.get(batch_key) is asyncio.current_task():
                self._drainers.pop(batch_key, None)
            if self._batches.get(batch_key) is queue:
                self._batches.pop(batch_key, None)

    # ------------------------------------------------------------------
    # Debounce / throttle / cancel
    # ------------------------------------------------------------------

    def create_debounced_request(
        self,
        key: str,
        fn: Callable[..., Awaitable[Any]],
        delay: float | None = None,
    ) -> DebouncedRequest:
        return DebouncedRequest(
            key,
            self._deduplicated(key, fn),
            self._config.debounce_delay if delay is None else delay,
            self._clock,
        )

    def create_throttled_request(
        self,
        key: str,
        fn: Callable[..., Awaitable[Any]],
        interval: float | None = None,
    ) -> ThrottledRequest:
        return ThrottledRequest(
            key,
            self._deduplicated(key, fn),
            self._config.throttle_interval if interval is None else interval,
            self._clock,
        )

    def create_cancellable_request(
        self,
        key: str,
        fn: Callable[[CancelSignal], Awaitable[Any]],
    ) -> CancellableRequest:
        return CancellableRequest(key, fn)

    def _deduplicated(
        self, key: str, fn: Callable[..., Awaitable[Any]]
    ) -> Callable[..., Awaitable[Any]]:
        """Wrap *fn* so every firing shares the in-flight call for *key*."""

        async def call(*args: Any, **kwargs: Any) -> Any:
            return await self.deduplicate_request(key, partial(fn, *args, **kwargs))

        return call

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------

    def retry_delay(self, attempt: int) -> float:
        """Backoff before retry number *attempt* (0-based)."""
        delay = self._config.retry_base_delay * (2**attempt)
        return min(delay, self._config.retry_max_delay)

    async def with_retry(
        self,
        fn: RequestFn,
        max_retries: int | None = None,
        key: str | None = None,
    ) -> Any:
        """Call *fn*, retrying transport failures with exponential backoff.

        A raw ``OSError`` that survives every retry is re-raised as
        ``TransportError``.
        """
        retries = self._config.max_retries if max_retries is None else max_retries
        attempt = 0
        while True:
            try:
                return await fn()
            except _NON_RETRYABLE:
                raise
            except _RETRYABLE as exc:
                if attempt >= retries:
                    log.warning(
                        "request_failed", request_key=key, attempts=attempt + 1, error=str(exc)
                    )
                    if isinstance(exc, TransportError):
                        raise
                    raise TransportError(
                        f"Network failure: {exc}", context={"key": key}
                    ) from exc
                delay = self.retry_delay(attempt)
                attempt += 1
                self._metrics.retries += 1
                log.info(
                    "request_retry_scheduled",
                    request_key=key,
                    attempt=attempt,
                    delay=delay,
                    error=str(exc),
                )
                await self._bus.emit(
                    TOPIC_REQUESTS,
                    {"event": "request_retry", "key": key, "attempt": attempt, "delay": delay},
                )
                await self._clock.sleep(delay)

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    async def fetch_cached(
        self,
        key: str,
        fn: RequestFn,
        ttl: float | None = None,
        max_retries: int | None = None,
    ) -> Any:
        """Cache hit, else deduplicated + retried call whose result is cached."""
        entry = self._cache.get(key)
        if entry is not None:
            return entry.value

        async def load() -> Any:
            value = await self.with_retry(fn, max_retries=max_retries, key=key)
            await self._cache.put(key, value, ttl)
            return value

        return await self.deduplicate_request(key, load)

    async def prefetch(
        self,
        entries: Mapping[str, RequestFn],
        ttl: float | None = None,
    ) -> list[str]:
        """Warm the cache for every key not already fresh; return the keys fetched."""
        stale = [key for key in entries if self._cache.get(key) is None]
        if not stale:
            return []
        outcomes = await asyncio.gather(
            *(self.fetch_cached(key, entries[key], ttl) for key in stale),
            return_exceptions=True,
        )
        fetched: list[str] = []
        for key, outcome in zip(stale, outcomes):
            if isinstance(outcome, Exception):
                log.warning("prefetch_failed", request_key=key, error=str(outcome))
            else:
                fetched.append(key)
        return fetched

    async def invalidate(self, key: str) -> bool:
        return await self._cache.invalidate(key)

    async def invalidate_prefix(self, prefix: str) -> int:
        return await self._cache.invalidate_prefix(prefix)

    async def clear_old_cache(self) -> int:
        return await self._cache.evict_expired()

    def get_performance_metrics(self) -> dict[str, int]:
        return {
            "pending_requests": len(self._inflight),
            "queue_length": sum(len(q) for q in self._batches.values()),
            "cache_size": self._cache.size,
            "physical_calls": self._metrics.physical_calls,
            "deduplicated": self._metrics.deduplicated,
            "retries": self._metrics.retries,
        }
