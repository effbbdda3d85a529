"""Dispatch Guard — Client-side resilience and trust layer for a delivery app.

Sits between UI code and the network and answers three questions for every
outgoing call: is it well-formed, is it trusted, and can it be delivered?

Architecture layers (bottom to top):
    1. Validation — sanitisation and per-field rule checks
    2. Security   — sliding-window rate limit, CSRF, response shape, headers
    3. Posture    — decaying security score, bounded event log, advice
    4. Resilience — offline queue, request optimizer, TTL cache, coordinator
"""

__version__ = "0.1.0"

from dispatch_guard.posture import PostureSnapshot, SecurityPostureMonitor
from dispatch_guard.resilience import FetchResult, MutationResult, ResilienceCoordinator
from dispatch_guard.security import TrustGuard

__all__ = [
    "__version__",
    "TrustGuard",
    "SecurityPostureMonitor",
    "PostureSnapshot",
    "ResilienceCoordinator",
    "FetchResult",
    "MutationResult",
]
