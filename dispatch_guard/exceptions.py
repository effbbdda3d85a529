"""Dispatch Guard — Exception hierarchy.

All exceptions raised by the library inherit from DispatchGuardError so that
callers can catch the full family with a single except clause when needed.

Hierarchy:
    DispatchGuardError
    ├── ConfigurationError
    ├── ValidationFailedError
    ├── TrustError
    │   ├── RateLimitExceededError
    │   ├── CSRFValidationError
    │   └── ResponseShapeError
    ├── TransportError
    │   ├── ClientError
    │   └── RequestTimeoutError
    ├── RequestCancelledError
    ├── QueueError
    │   ├── ReplayError
    │   └── UnknownOperationError
    └── StorageError
"""

from __future__ import annotations

from typing import Any


class DispatchGuardError(Exception):
    """Base exception for all Dispatch Guard errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context or {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context})"


class ConfigurationError(DispatchGuardError):
    """Settings could not be loaded or are inconsistent."""


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationFailedError(DispatchGuardError):
    """Raised by ``ensure_*`` helpers when field validation fails."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__(
            f"Validation failed: {'; '.join(errors)}",
            context={"errors": errors},
        )
        self.errors = errors


# ---------------------------------------------------------------------------
# Trust layer
# ---------------------------------------------------------------------------


class TrustError(DispatchGuardError):
    """Base for refusals issued by the trust guard.  Never retried."""


class RateLimitExceededError(TrustError):
    """An identifier has exceeded its sliding-window request ceiling."""

    def __init__(self, identifier: str, limit: int, reset_time: float) -> None:
        super().__init__(
            f"Rate limit exceeded for '{identifier}': max {limit} per window",
            context={"identifier": identifier, "limit": limit, "reset_time": reset_time},
        )
        self.identifier = identifier
        self.limit = limit
        self.reset_time = reset_time


class CSRFValidationError(TrustError):
    """The presented CSRF token is not the live token for the session."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            f"Invalid CSRF token for session '{session_id}'",
            context={"session_id": session_id},
        )
        self.session_id = session_id


class ResponseShapeError(TrustError):
    """A response did not match its declared schema."""

    def __init__(self, operation: str, errors: list[str]) -> None:
        super().__init__(
            f"Malformed response for '{operation}': {'; '.join(errors)}",
            context={"operation": operation, "errors": errors},
        )
        self.operation = operation
        self.errors = errors


# ---------------------------------------------------------------------------
# Transport layer
# ---------------------------------------------------------------------------


class TransportError(DispatchGuardError):
    """The network capability failed to deliver a request."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        ctx = dict(context or {})
        ctx["status_code"] = status_code
        super().__init__(message, context=ctx)
        self.status_code = status_code


class ClientError(TransportError):
    """The remote service rejected the request with a 4xx status."""


class RequestTimeoutError(TransportError):
    """The network capability timed out."""


class RequestCancelledError(DispatchGuardError):
    """A cancellable request was cancelled before it settled."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Request '{key}' was cancelled", context={"key": key})
        self.key = key


# ---------------------------------------------------------------------------
# Offline queue
# ---------------------------------------------------------------------------


class QueueError(DispatchGuardError):
    """Base for offline queue errors."""


class ReplayError(QueueError):
    """Replaying a pending action failed."""

    def __init__(self, action_id: str, action_type: str, cause: Exception) -> None:
        super().__init__(
            f"Replay of '{action_type}' ({action_id}) failed: {cause}",
            context={"action_id": action_id, "action_type": action_type, "cause": str(cause)},
        )
        self.action_id = action_id
        self.action_type = action_type
        self.cause = cause


class UnknownOperationError(QueueError):
    """No handler is registered for the requested operation identifier."""

    def __init__(self, operation: str) -> None:
        super().__init__(
            f"No handler registered for operation '{operation}'",
            context={"operation": operation},
        )
        self.operation = operation


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class StorageError(DispatchGuardError):
    """The durable storage capability failed."""
