"""Unit tests — CSRF token store."""

from __future__ import annotations

import pytest

from dispatch_guard.clock import ManualClock
from dispatch_guard.config import CSRFConfig
from dispatch_guard.security import CSRFTokenStore


@pytest.fixture
def store(clock: ManualClock) -> CSRFTokenStore:
    return CSRFTokenStore(clock=clock)


@pytest.mark.unit
class TestCSRFTokenStore:
    def test_token_is_64_hex_chars(self, store: CSRFTokenStore) -> None:
        token = store.generate("s1")
        assert len(token) == 64
        int(token, 16)

    def test_validate_live_token(self, store: CSRFTokenStore) -> None:
        token = store.generate("s1")
        assert store.validate("s1", token) is True

    def test_regeneration_supersedes(self, store: CSRFTokenStore) -> None:
        old = store.generate("s1")
        new = store.generate("s1")
        assert old != new
        assert store.validate("s1", old) is False
        assert store.validate("s1", new) is True
        assert len(store) == 1

    def test_other_session_token_rejected(self, store: CSRFTokenStore) -> None:
        token = store.generate("s1")
        store.generate("s2")
        assert store.validate("s2", token) is False

    def test_unknown_session_and_empty_token(self, store: CSRFTokenStore) -> None:
        assert store.validate("nobody", "abc") is False
        store.generate("s1")
        assert store.validate("s1", None) is False
        assert store.validate("s1", "") is False

    def test_revoke(self, store: CSRFTokenStore) -> None:
        token = store.generate("s1")
        assert store.revoke("s1") is True
        assert store.validate("s1", token) is False
        assert store.revoke("s1") is False

    def test_current(self, store: CSRFTokenStore) -> None:
        assert store.current("s1") is None
        token = store.generate("s1")
        assert store.current("s1") == token

    def test_ttl_expiry(self, clock: ManualClock) -> None:
        store = CSRFTokenStore(CSRFConfig(token_ttl_seconds=60), clock=clock)
        token = store.generate("s1")
        clock.advance(59)
        assert store.validate("s1", token) is True
        clock.advance(2)
        assert store.validate("s1", token) is False
        assert store.current("s1") is None

    def test_fragment_truncates(self, store: CSRFTokenStore) -> None:
        assert store.fragment("0123456789abcdef") == "01234567..."
        assert store.fragment(None) == "..."
