"""Posture layer — Security posture monitor.

Aggregates security events into a bounded log and a decaying score.

Score model:
  - starts at ``initial_score`` (100)
  - each event subtracts its severity penalty (low 1, medium 3, high 7,
    critical 15), floored at 0
  - the hourly recovery task adds ``recovery_step``, capped at 100

Two explicit periodic tasks run on the monitor's ``Scheduler``:
  - ``posture_check`` (every minute) — burst detection + ``is_secure`` refresh
  - ``posture_recovery`` (every hour) — score recovery

Events are published on ``dispatch.security``.  Logging a security event is
synchronous; bus publication is scheduled on the running loop and can be
awaited with :meth:`SecurityPostureMonitor.flush`.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field

from dispatch_guard.clock import Clock, SystemClock
from dispatch_guard.config import PostureConfig
from dispatch_guard.events.bus import TOPIC_SECURITY, EventBus, NullEventBus
from dispatch_guard.logging import get_logger
from dispatch_guard.scheduling import Scheduler
from dispatch_guard.security.models import EventCategory, SecurityEvent, Severity

log = get_logger(__name__)

_DAY = 24 * 60 * 60

CHECK_TASK = "posture_check"
RECOVERY_TASK = "posture_recovery"


class PostureSnapshot(BaseModel):
    """Read-only view of the posture at one instant."""

    model_config = ConfigDict(frozen=True)

    score: int = Field(ge=0, le=100)
    is_secure: bool
    last_check: float
    events: tuple[SecurityEvent, ...] = ()
    recommendations: tuple[str, ...] = ()


class SecurityPostureMonitor:
    def __init__(
        self,
        config: PostureConfig | None = None,
        clock: Clock | None = None,
        event_bus: EventBus | None = None,
        scheduler: Scheduler | None = None,
        is_offline: Callable[[], bool] | None = None,
    ) -> None:
        self._config = config or PostureConfig()
        self._clock = clock or SystemClock()
        self._bus = event_bus or NullEventBus()
        self._scheduler = scheduler or Scheduler(self._clock)
        self._is_offline = is_offline or (lambda: False)
        self._events: deque[SecurityEvent] = deque(maxlen=self._config.event_log_capacity)
        self._score = self._config.initial_score
        self._is_secure = self._score > self._config.secure_threshold
        self._last_check = self._clock.now()
        self._pending_publish: set[asyncio.Task[None]] = set()

        self._scheduler.every(
            CHECK_TASK, self._config.check_interval_seconds, self.run_periodic_check
        )
        self._scheduler.every(
            RECOVERY_TASK, self._config.recovery_interval_seconds, self.recover
        )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def score(self) -> int:
        return self._score

    @property
    def is_secure(self) -> bool:
        return self._is_secure

    @property
    def last_check(self) -> float:
        return self._last_check

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    def set_connectivity_source(self, is_offline: Callable[[], bool]) -> None:
        self._is_offline = is_offline

    def get_security_events(
        self,
        category: EventCategory | None = None,
        severity: Severity | None = None,
    ) -> list[SecurityEvent]:
        """Events newest first, optionally filtered."""
        return [
            e
            for e in self._events
            if (category is None or e.category == category)
            and (severity is None or e.severity == severity)
        ]

    def get_security_recommendations(self) -> list[str]:
        now = self._clock.now()
        recent = [e for e in self._events if now - e.timestamp < _DAY]
        recommendations: list[str] = []
        if self._score < self._config.low_score_advisory:
            recommendations.append(
                "Your security score is low. Consider reviewing your recent activity."
            )
        if self._is_offline():
            recommendations.append(
                "You are currently offline. Some security features may be limited."
            )
        if len(recent) > self._config.daily_event_advisory:
            recommendations.append(
                "High number of security events detected. Please contact support if this continues."
            )
        if any(e.severity == Severity.CRITICAL for e in recent):
            recommendations.append(
                "Critical security events detected. Please change your password immediately."
            )
        return recommendations

    def snapshot(self) -> PostureSnapshot:
        return PostureSnapshot(
            score=self._score,
            is_secure=self._is_secure,
            last_check=self._last_check,
            events=tuple(self._events),
            recommendations=tuple(self.get_security_recommendations()),
        )

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    def log_security_event(
        self,
        category: EventCategory,
        message: str,
        severity: Severity,
        metadata: dict[str, Any] | None = None,
    ) -> SecurityEvent:
        event = SecurityEvent(
            id=f"sec_{uuid.uuid4()}",
            category=EventCategory(category),
            message=message,
            timestamp=self._clock.now(),
            severity=Severity(severity),
            metadata=dict(metadata or {}),
        )
        self._events.appendleft(event)
        self._score = max(0, self._score - event.severity.penalty)
        log.warning(
            "security_event",
            category=event.category.value,
            severity=event.severity.value,
            message=message,
            score=self._score,
        )
        self._publish({"event": "security_event", **event.to_dict(), "score": self._score})
        return event

    def run_periodic_check(self) -> None:
        now = self._clock.now()
        self._last_check = now
        window = self._config.burst_window_seconds
        recent = sum(1 for e in self._events if now - e.timestamp < window)
        if recent > self._config.burst_threshold:
            self.log_security_event(
                EventCategory.SUSPICIOUS_ACTIVITY,
                "High frequency of security events detected",
                Severity.HIGH,
                {"event_count": recent},
            )
        self._is_secure = self._score > self._config.secure_threshold

    def recover(self) -> None:
        before = self._score
        self._score = min(100, self._score + self._config.recovery_step)
        if self._score != before:
            log.debug("security_score_recovered", score=self._score)

    def clear_events(self) -> None:
        self._events.clear()
        log.info("security_events_cleared")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self._scheduler.start()

    async def stop(self) -> None:
        await self._scheduler.stop()
        await self.flush()

    async def flush(self) -> None:
        """Wait until every scheduled bus publication has completed."""
        while self._pending_publish:
            await asyncio.gather(*list(self._pending_publish))

    def _publish(self, payload: dict[str, Any]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.debug("security_event_publish_skipped", reason="no running event loop")
            return
        task = loop.create_task(self._bus.emit(TOPIC_SECURITY, payload))
        self._pending_publish.add(task)
        task.add_done_callback(self._pending_publish.discard)
