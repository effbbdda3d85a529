"""Trust layer — CSRF token store.

One live token per session.  Regenerating supersedes the previous entry
outright, so a token leaked earlier stops working as soon as a new one is
issued.  Validation compares in constant time against the live entry only.
"""

from __future__ import annotations

import hmac
import secrets

from dispatch_guard.clock import Clock, SystemClock
from dispatch_guard.config import CSRFConfig
from dispatch_guard.logging import get_logger
from dispatch_guard.security.models import CSRFEntry

log = get_logger(__name__)


class CSRFTokenStore:
    def __init__(self, config: CSRFConfig | None = None, clock: Clock | None = None) -> None:
        self._config = config or CSRFConfig()
        self._clock = clock or SystemClock()
        self._entries: dict[str, CSRFEntry] = {}

    def generate(self, session_id: str) -> str:
        token = secrets.token_hex(self._config.token_bytes)
        superseded = session_id in self._entries
        self._entries[session_id] = CSRFEntry(
            session_id=session_id,
            token=token,
            issued_at=self._clock.now(),
        )
        log.debug("csrf_token_issued", session_id=session_id, superseded=superseded)
        return token

    def validate(self, session_id: str, presented: str | None) -> bool:
        entry = self.live_entry(session_id)
        if entry is None or not presented:
            return False
        return hmac.compare_digest(entry.token.encode(), presented.encode())

    def live_entry(self, session_id: str) -> CSRFEntry | None:
        """Return the live entry, dropping it first if it has outlived its TTL."""
        entry = self._entries.get(session_id)
        if entry is None:
            return None
        if entry.is_expired(self._clock.now(), self._config.token_ttl_seconds):
            del self._entries[session_id]
            log.debug("csrf_token_expired", session_id=session_id)
            return None
        return entry

    def current(self, session_id: str) -> str | None:
        entry = self.live_entry(session_id)
        return entry.token if entry else None

    def revoke(self, session_id: str) -> bool:
        return self._entries.pop(session_id, None) is not None

    def fragment(self, token: str | None) -> str:
        """Truncated form safe to record in logs and event metadata."""
        return (token or "")[: self._config.fragment_length] + "..."

    def __len__(self) -> int:
        return len(self._entries)
