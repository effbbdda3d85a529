"""Dispatch Guard — Configuration.

Configuration is loaded from (in order of increasing priority):
    1. Built-in defaults (this file)
    2. System config: /etc/dispatch-guard/config.yaml
    3. User config:   ~/.dispatch-guard/config.yaml
    4. An explicit config file passed to ``Settings.load()``
    5. Environment variables prefixed with DISPATCH_GUARD_

Library components take their config block explicitly (``TrustGuard(
settings.rate_limit, settings.csrf, ...)``); the module-level singleton below
exists for the CLI only.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dispatch_guard.exceptions import ConfigurationError


# ---------------------------------------------------------------------------
# Sub-configuration blocks
# ---------------------------------------------------------------------------


class RateLimitConfig(BaseModel):
    max_requests: Annotated[int, Field(ge=1, le=100_000)] = Field(
        default=100,
        description="Maximum requests allowed per identifier inside one window.",
    )
    window_seconds: Annotated[float, Field(gt=0, le=86_400)] = Field(
        default=15 * 60,
        description="Length of the trailing sliding window in seconds.",
    )


class CSRFConfig(BaseModel):
    token_bytes: Annotated[int, Field(ge=16, le=128)] = 32
    token_ttl_seconds: Annotated[float, Field(ge=0)] = Field(
        default=0,
        description="Maximum age of a live token. 0 = tokens never expire on their own.",
    )
    header_name: str = "X-CSRF-Token"
    fragment_length: Annotated[int, Field(ge=0, le=16)] = Field(
        default=8,
        description="Number of token characters recorded in security event metadata.",
    )


class HeadersConfig(BaseModel):
    nonce_bytes: Annotated[int, Field(ge=8, le=64)] = 16
    hsts_max_age: Annotated[int, Field(ge=0)] = 31_536_000
    referrer_policy: str = "strict-origin-when-cross-origin"
    script_sources: list[str] = Field(
        default_factory=lambda: ["https://maps.googleapis.com", "https://maps.gstatic.com"],
        description="Extra script-src sources appended after the nonce.",
    )
    style_sources: list[str] = Field(
        default_factory=lambda: ["https://fonts.googleapis.com"],
    )
    font_sources: list[str] = Field(
        default_factory=lambda: ["https://fonts.gstatic.com"],
    )
    connect_sources: list[str] = Field(
        default_factory=lambda: ["https://maps.googleapis.com", "wss:", "ws:"],
    )


class PostureConfig(BaseModel):
    initial_score: Annotated[int, Field(ge=0, le=100)] = 100
    secure_threshold: Annotated[int, Field(ge=0, le=100)] = Field(
        default=70,
        description="The session is considered secure while score > this value.",
    )
    event_log_capacity: Annotated[int, Field(ge=1, le=10_000)] = 100
    check_interval_seconds: Annotated[float, Field(gt=0)] = 60.0
    recovery_interval_seconds: Annotated[float, Field(gt=0)] = 3600.0
    recovery_step: Annotated[int, Field(ge=1, le=100)] = 1
    burst_window_seconds: Annotated[float, Field(gt=0)] = 5 * 60
    burst_threshold: Annotated[int, Field(ge=1)] = Field(
        default=20,
        description="More events than this inside the burst window raise suspicious_activity.",
    )
    low_score_advisory: Annotated[int, Field(ge=0, le=100)] = 80
    daily_event_advisory: Annotated[int, Field(ge=1)] = 10


class OptimizerConfig(BaseModel):
    debounce_delay: Annotated[float, Field(ge=0)] = 0.3
    throttle_interval: Annotated[float, Field(ge=0)] = 1.0
    max_retries: Annotated[int, Field(ge=0, le=10)] = 3
    retry_base_delay: Annotated[float, Field(ge=0)] = 1.0
    retry_max_delay: Annotated[float, Field(ge=0)] = 30.0
    batch_size: Annotated[int, Field(ge=1, le=1000)] = 10
    failure_report_threshold: Annotated[int, Field(ge=1)] = Field(
        default=5,
        description="Consecutive transport failures before the posture monitor is told.",
    )


class CacheConfig(BaseModel):
    default_ttl_seconds: Annotated[float, Field(gt=0)] = 5 * 60
    sweep_interval_seconds: Annotated[float, Field(gt=0)] = 10 * 60
    persist: bool = Field(
        default=True,
        description="Mirror cache entries to durable storage so they survive reloads.",
    )


class OfflineConfig(BaseModel):
    storage_key: str = "dispatch_guard.offline_actions"
    sync_on_reconnect: bool = True
    sync_on_enqueue_when_online: bool = True


class StorageConfig(BaseModel):
    backend: Literal["memory", "sqlite"] = "memory"
    sqlite_path: Path = Path("~/.dispatch-guard/storage.db")


class LoggingConfig(BaseModel):
    level: Literal["debug", "info", "warning", "error", "critical"] = "info"
    format: Literal["json", "console"] = "console"
    file: Path | None = None
    events_file: Path | None = Field(
        default=None,
        description="NDJSON file receiving every bus event. None = no event file.",
    )


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DISPATCH_GUARD_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    csrf: CSRFConfig = Field(default_factory=CSRFConfig)
    headers: HeadersConfig = Field(default_factory=HeadersConfig)
    posture: PostureConfig = Field(default_factory=PostureConfig)
    optimizer: OptimizerConfig = Field(default_factory=OptimizerConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    offline: OfflineConfig = Field(default_factory=OfflineConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("storage", mode="before")
    @classmethod
    def expand_storage_path(cls, v: object) -> object:
        if isinstance(v, dict) and isinstance(v.get("sqlite_path"), str):
            v["sqlite_path"] = Path(v["sqlite_path"]).expanduser()
        return v

    @classmethod
    def load(cls, config_file: Path | None = None) -> "Settings":
        """Load settings from YAML files + environment variables."""
        data: dict[str, object] = {}

        candidates = [
            Path("/etc/dispatch-guard/config.yaml"),
            Path.home() / ".dispatch-guard" / "config.yaml",
        ]
        if config_file:
            if not config_file.exists():
                raise ConfigurationError(
                    f"Config file not found: {config_file}",
                    context={"path": str(config_file)},
                )
            candidates.append(config_file)

        for path in candidates:
            if path.exists():
                import yaml  # lazy: only needed when a file exists

                with path.open() as f:
                    loaded = yaml.safe_load(f) or {}
                if not isinstance(loaded, dict):
                    raise ConfigurationError(
                        f"Config file {path} must contain a mapping",
                        context={"path": str(path)},
                    )
                data.update(loaded)

        return cls(**data)


# Module-level singleton, used by the CLI.
_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def override_settings(settings: Settings) -> None:
    """Replace the module-level singleton. Used in tests."""
    global _settings
    _settings = settings
