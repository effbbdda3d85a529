"""Trust layer — Security event categories, severities and data records.

  - ``EventCategory``   — the fixed set of security event categories
  - ``Severity``        — LOW / MEDIUM / HIGH / CRITICAL with score penalties
  - ``SecurityEvent``   — frozen record appended to the posture log
  - ``RateLimitResult`` — outcome of one sliding-window check
  - ``CSRFEntry``       — the live token for one session
  - ``SecurityHeaders`` — header map plus the nonce it was built with
  - ``SecurityEventSink`` — what the guard reports to (the posture monitor)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol


class EventCategory(str, Enum):
    RATE_LIMIT = "rate_limit"
    CSRF_ATTACK = "csrf_attack"
    XSS_ATTEMPT = "xss_attempt"
    INVALID_INPUT = "invalid_input"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def penalty(self) -> int:
        return SEVERITY_PENALTY[self]


SEVERITY_PENALTY: dict[Severity, int] = {
    Severity.LOW: 1,
    Severity.MEDIUM: 3,
    Severity.HIGH: 7,
    Severity.CRITICAL: 15,
}


@dataclass(frozen=True)
class SecurityEvent:
    id: str
    category: EventCategory
    message: str
    timestamp: float
    severity: Severity
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "severity": self.severity.value,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: float


@dataclass(frozen=True)
class CSRFEntry:
    session_id: str
    token: str
    issued_at: float

    def is_expired(self, now: float, ttl: float) -> bool:
        return ttl > 0 and now - self.issued_at > ttl


@dataclass(frozen=True)
class SecurityHeaders:
    headers: dict[str, str]
    nonce: str

    def as_dict(self) -> dict[str, str]:
        return dict(self.headers)


class SecurityEventSink(Protocol):
    def log_security_event(
        self,
        category: EventCategory,
        message: str,
        severity: Severity,
        metadata: dict[str, Any] | None = None,
    ) -> SecurityEvent | None: ...


class NullEventSink:
    """Sink used when no posture monitor is wired in."""

    def log_security_event(
        self,
        category: EventCategory,
        message: str,
        severity: Severity,
        metadata: dict[str, Any] | None = None,
    ) -> SecurityEvent | None:
        return None
