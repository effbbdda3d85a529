"""Trust layer — Sliding-window rate limiter.

In-memory limiter keyed by a caller-supplied identifier (session id or an
IP-equivalent token).  Each identifier owns an ordered list of request
instants; entries older than the window are pruned lazily every time the
identifier is consulted, so an idle limiter costs nothing.

Usage::

    limiter = SlidingWindowRateLimiter(RateLimitConfig(max_requests=100, window_seconds=900))
    result = limiter.check("session-42")
    if not result.allowed:
        ...
"""

from __future__ import annotations

from bisect import bisect_right

from dispatch_guard.clock import Clock, SystemClock
from dispatch_guard.config import RateLimitConfig
from dispatch_guard.exceptions import RateLimitExceededError
from dispatch_guard.logging import get_logger
from dispatch_guard.security.models import RateLimitResult

log = get_logger(__name__)


class SlidingWindowRateLimiter:
    """Allow at most ``max_requests`` per identifier in any trailing window."""

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._config = config or RateLimitConfig()
        self._clock = clock or SystemClock()
        self._timestamps: dict[str, list[float]] = {}

    @property
    def max_requests(self) -> int:
        return self._config.max_requests

    @property
    def window_seconds(self) -> float:
        return self._config.window_seconds

    def check(self, identifier: str) -> RateLimitResult:
        """Record a request for *identifier* if the window has room."""
        now = self._clock.now()
        window = self._prune(identifier, now)
        allowed = len(window) < self._config.max_requests
        if allowed:
            window.append(now)
        else:
            log.info(
                "rate_limit_exceeded",
                identifier=identifier,
                limit=self._config.max_requests,
            )
        return RateLimitResult(
            allowed=allowed,
            remaining=max(0, self._config.max_requests - len(window)),
            reset_time=self._reset_time(window, now),
        )

    def check_or_raise(self, identifier: str) -> RateLimitResult:
        result = self.check(identifier)
        if not result.allowed:
            raise RateLimitExceededError(
                identifier=identifier,
                limit=self._config.max_requests,
                reset_time=result.reset_time,
            )
        return result

    def peek(self, identifier: str) -> RateLimitResult:
        """Report the window state without recording a request."""
        now = self._clock.now()
        window = self._prune(identifier, now)
        return RateLimitResult(
            allowed=len(window) < self._config.max_requests,
            remaining=max(0, self._config.max_requests - len(window)),
            reset_time=self._reset_time(window, now),
        )

    def get_remaining(self, identifier: str) -> int:
        return self.peek(identifier).remaining

    def reset(self, identifier: str | None = None) -> None:
        """Reset state for *identifier*, or for every identifier when None."""
        if identifier is None:
            self._timestamps.clear()
        else:
            self._timestamps.pop(identifier, None)

    def tracked_identifiers(self) -> list[str]:
        return list(self._timestamps)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _prune(self, identifier: str, now: float) -> list[float]:
        """Drop instants that have left the window and return the live list."""
        window = self._timestamps.setdefault(identifier, [])
        cutoff = now - self._config.window_seconds
        expired = bisect_right(window, cutoff)
        if expired:
            del window[:expired]
        return window

    def _reset_time(self, window: list[float], now: float) -> float:
        if not window:
            return now
        return window[0] + self._config.window_seconds
