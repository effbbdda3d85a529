"""Trust layer — TrustGuard facade.

Bundles the rate limiter, CSRF store, request/response validation and the
header builder behind one object that the coordinator and UI adapters are
handed explicitly.  Every refusal is reported to the configured
``SecurityEventSink`` (normally the posture monitor) before the caller sees
it.

Usage::

    monitor = SecurityPostureMonitor(settings.posture, clock=clock)
    guard = TrustGuard(settings.rate_limit, settings.csrf, settings.headers,
                       sink=monitor, clock=clock)
    guard.authorize_mutation(session_id, token, identifier=session_id)
"""

from __future__ import annotations

from typing import Any, Mapping

from dispatch_guard.clock import Clock, SystemClock
from dispatch_guard.config import CSRFConfig, HeadersConfig, RateLimitConfig
from dispatch_guard.exceptions import (
    CSRFValidationError,
    RateLimitExceededError,
    ResponseShapeError,
)
from dispatch_guard.logging import get_logger
from dispatch_guard.security.csrf import CSRFTokenStore
from dispatch_guard.security.headers import build_security_headers
from dispatch_guard.security.models import (
    EventCategory,
    NullEventSink,
    RateLimitResult,
    SecurityEventSink,
    SecurityHeaders,
    Severity,
)
from dispatch_guard.security.rate_limiter import SlidingWindowRateLimiter
from dispatch_guard.security.response_schema import validate_response as _check_shape
from dispatch_guard.validation import (
    FieldRule,
    RequestValidationResult,
    RuleType,
    contains_markup,
)
from dispatch_guard.validation import validate_request as _validate_fields

log = get_logger(__name__)


class TrustGuard:
    def __init__(
        self,
        rate_limit: RateLimitConfig | None = None,
        csrf: CSRFConfig | None = None,
        headers: HeadersConfig | None = None,
        sink: SecurityEventSink | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._clock = clock or SystemClock()
        self._csrf_config = csrf or CSRFConfig()
        self._headers_config = headers or HeadersConfig()
        self._limiter = SlidingWindowRateLimiter(rate_limit, clock=self._clock)
        self._csrf = CSRFTokenStore(self._csrf_config, clock=self._clock)
        self._sink: SecurityEventSink = sink or NullEventSink()

    @property
    def rate_limiter(self) -> SlidingWindowRateLimiter:
        return self._limiter

    @property
    def csrf_header_name(self) -> str:
        return self._csrf_config.header_name

    def attach_sink(self, sink: SecurityEventSink) -> None:
        """Route future security events to *sink*."""
        self._sink = sink

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    def check_rate_limit(self, identifier: str) -> RateLimitResult:
        result = self._limiter.check(identifier)
        if not result.allowed:
            self._sink.log_security_event(
                EventCategory.RATE_LIMIT,
                f"Rate limit exceeded for {identifier}",
                Severity.MEDIUM,
                {"identifier": identifier, "remaining": result.remaining},
            )
        return result

    def is_rate_limited(self, identifier: str) -> bool:
        return not self._limiter.peek(identifier).allowed

    def enforce_rate_limit(self, identifier: str) -> RateLimitResult:
        result = self.check_rate_limit(identifier)
        if not result.allowed:
            raise RateLimitExceededError(
                identifier=identifier,
                limit=self._limiter.max_requests,
                reset_time=result.reset_time,
            )
        return result

    def reset(self, identifier: str | None = None) -> None:
        self._limiter.reset(identifier)

    # ------------------------------------------------------------------
    # CSRF
    # ------------------------------------------------------------------

    def generate_csrf_token(self, session_id: str) -> str:
        return self._csrf.generate(session_id)

    def validate_csrf_token(self, session_id: str, presented: str | None) -> bool:
        if self._csrf.validate(session_id, presented):
            return True
        fragment = self._csrf.fragment(presented)
        log.warning("csrf_validation_failed", session_id=session_id, token=fragment)
        self._sink.log_security_event(
            EventCategory.CSRF_ATTACK,
            "Invalid CSRF token detected",
            Severity.HIGH,
            {"session_id": session_id, "token": fragment},
        )
        return False

    def revoke_csrf_token(self, session_id: str) -> bool:
        return self._csrf.revoke(session_id)

    def current_csrf_token(self, session_id: str) -> str | None:
        return self._csrf.current(session_id)

    # ------------------------------------------------------------------
    # Request / response shape
    # ------------------------------------------------------------------

    def validate_request(
        self,
        data: Mapping[str, Any],
        rules: Mapping[str, FieldRule],
    ) -> RequestValidationResult:
        result = _validate_fields(data, rules)
        if not result.valid:
            self._sink.log_security_event(
                EventCategory.INVALID_INPUT,
                "Request validation failed",
                Severity.MEDIUM,
                {"fields": list(result.failed_fields), "errors": list(result.errors)},
            )
        tainted = [
            name
            for name, value in data.items()
            if _is_sanitised(rules.get(name)) and contains_markup(value)
        ]
        if tainted:
            self._sink.log_security_event(
                EventCategory.XSS_ATTEMPT,
                "Markup stripped from request input",
                Severity.HIGH,
                {"fields": tainted},
            )
        return result

    def validate_response(
        self,
        response: Any,
        schema: Mapping[str, Any],
        operation: str = "response",
    ) -> RequestValidationResult:
        result = _check_shape(response, schema)
        if not result.valid:
            self._sink.log_security_event(
                EventCategory.INVALID_INPUT,
                f"Malformed response for {operation}",
                Severity.MEDIUM,
                {"operation": operation, "errors": list(result.errors)},
            )
        return result

    def ensure_response(
        self,
        response: Any,
        schema: Mapping[str, Any],
        operation: str = "response",
    ) -> dict[str, Any]:
        result = self.validate_response(response, schema, operation)
        if not result.valid:
            raise ResponseShapeError(operation, result.errors)
        return result.data

    # ------------------------------------------------------------------
    # Headers and mutations
    # ------------------------------------------------------------------

    def get_security_headers(self) -> SecurityHeaders:
        return build_security_headers(self._headers_config)

    def authorize_mutation(
        self,
        session_id: str,
        token: str | None,
        identifier: str | None = None,
    ) -> None:
        """Rate limit then CSRF check; raise on the first refusal."""
        self.enforce_rate_limit(identifier or session_id)
        if not self.validate_csrf_token(session_id, token):
            raise CSRFValidationError(session_id)

    def mutation_headers(self, session_id: str) -> dict[str, str]:
        token = self._csrf.current(session_id) or self._csrf.generate(session_id)
        return {self._csrf_config.header_name: token}


def _is_sanitised(rule: FieldRule | None) -> bool:
    # Passwords and files are validated raw.
    return rule is None or rule.type not in (RuleType.PASSWORD, RuleType.FILE)
