"""Resilience layer — offline queue, request optimizer, cache and coordinator."""

from dispatch_guard.resilience.cache import CacheEntry, ResponseCache
from dispatch_guard.resilience.coordinator import (
    FetchResult,
    MutationResult,
    ResilienceCoordinator,
    request_key,
)
from dispatch_guard.resilience.offline_queue import OfflineActionQueue, PendingAction, SyncReport
from dispatch_guard.resilience.optimizer import (
    CancellableRequest,
    DebouncedRequest,
    RequestOptimizer,
    ThrottledRequest,
)

__all__ = [
    "ResilienceCoordinator",
    "FetchResult",
    "MutationResult",
    "request_key",
    "OfflineActionQueue",
    "PendingAction",
    "SyncReport",
    "RequestOptimizer",
    "DebouncedRequest",
    "ThrottledRequest",
    "CancellableRequest",
    "ResponseCache",
    "CacheEntry",
]
