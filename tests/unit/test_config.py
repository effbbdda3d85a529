"""Unit tests — Configuration."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from dispatch_guard.config import (
    RateLimitConfig,
    Settings,
    get_settings,
    override_settings,
)
from dispatch_guard.exceptions import ConfigurationError


@pytest.mark.unit
class TestDefaults:
    def test_defaults(self) -> None:
        settings = Settings()
        assert settings.rate_limit.max_requests == 100
        assert settings.rate_limit.window_seconds == 900
        assert settings.csrf.token_bytes == 32
        assert settings.headers.nonce_bytes == 16
        assert settings.posture.event_log_capacity == 100
        assert settings.posture.burst_threshold == 20
        assert settings.optimizer.retry_max_delay == 30
        assert settings.cache.default_ttl_seconds == 300
        assert settings.offline.storage_key == "dispatch_guard.offline_actions"
        assert settings.storage.backend == "memory"

    def test_bounds_enforced(self) -> None:
        with pytest.raises(ValidationError):
            RateLimitConfig(max_requests=0)

    def test_storage_path_expanded(self) -> None:
        settings = Settings(storage={"sqlite_path": "~/dg.db"})
        assert "~" not in str(settings.storage.sqlite_path)


@pytest.mark.unit
class TestEnvironment:
    def test_nested_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("DISPATCH_GUARD_RATE_LIMIT__MAX_REQUESTS", "5")
        assert Settings().rate_limit.max_requests == 5


@pytest.mark.unit
class TestLoad:
    def test_explicit_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("rate_limit:\n  max_requests: 7\nstorage:\n  backend: sqlite\n")
        settings = Settings.load(path)
        assert settings.rate_limit.max_requests == 7
        assert settings.storage.backend == "sqlite"

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError):
            Settings.load(tmp_path / "missing.yaml")

    def test_non_mapping_file(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(ConfigurationError):
            Settings.load(path)

    def test_override_settings(self) -> None:
        custom = Settings(rate_limit={"max_requests": 3})
        override_settings(custom)
        assert get_settings() is custom
