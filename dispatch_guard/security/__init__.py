"""Trust layer — rate limiting, CSRF, request/response shape and headers."""

from dispatch_guard.security.csrf import CSRFTokenStore
from dispatch_guard.security.guard import TrustGuard
from dispatch_guard.security.headers import build_csp, build_security_headers, generate_nonce
from dispatch_guard.security.models import (
    SEVERITY_PENALTY,
    CSRFEntry,
    EventCategory,
    NullEventSink,
    RateLimitResult,
    SecurityEvent,
    SecurityEventSink,
    SecurityHeaders,
    Severity,
)
from dispatch_guard.security.rate_limiter import SlidingWindowRateLimiter
from dispatch_guard.security.response_schema import validate_response

__all__ = [
    "TrustGuard",
    "SlidingWindowRateLimiter",
    "CSRFTokenStore",
    "build_security_headers",
    "build_csp",
    "generate_nonce",
    "validate_response",
    "EventCategory",
    "Severity",
    "SEVERITY_PENALTY",
    "SecurityEvent",
    "RateLimitResult",
    "CSRFEntry",
    "SecurityHeaders",
    "SecurityEventSink",
    "NullEventSink",
]
