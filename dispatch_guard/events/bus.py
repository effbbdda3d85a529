"""Event streaming — EventBus protocol and implementations.

Every observable occurrence in the library (security event logged, offline
action stored or replayed, request retried) is emitted as a structured dict
to a topic, so consumers (UI adapters, audit files, tests) can react
independently of the producer.

Swap the backend by injecting a different EventBus implementation:
  - NullEventBus    → default (no-op, zero overhead)
  - LogEventBus     → NDJSON append-only file
  - MemoryEventBus  → bounded in-memory history + async subscriptions
  - FanoutEventBus  → broadcast to several backends

Standard topic names:
  TOPIC_SECURITY = "dispatch.security"  — posture monitor events
  TOPIC_QUEUE    = "dispatch.queue"     — offline queue lifecycle
  TOPIC_REQUESTS = "dispatch.requests"  — retries, cache fallbacks, cancellations
"""

from __future__ import annotations

import asyncio
import json
import time
from abc import ABC, abstractmethod
from collections import deque
from pathlib import Path
from typing import Any, AsyncIterator

from dispatch_guard.logging import get_logger

log = get_logger(__name__)

# ---------------------------------------------------------------------------
# Standard topic constants
# ---------------------------------------------------------------------------

TOPIC_SECURITY = "dispatch.security"
TOPIC_QUEUE = "dispatch.queue"
TOPIC_REQUESTS = "dispatch.requests"


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------


class EventBus(ABC):
    """Abstract event bus.  All implementations must be safe for concurrent async use.

    An event is a plain dict.  The bus adds a ``_topic`` key and a
    ``_timestamp`` (Unix epoch float) before forwarding to the backend.
    """

    @abstractmethod
    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        """Publish *event* to *topic*.

        This method must not raise — failures are logged so that a backend
        outage never propagates into the request path.
        """

    async def subscribe(
        self, topics: list[str]
    ) -> AsyncIterator[dict[str, Any]]:
        """Return an async iterator of events from *topics*."""
        raise NotImplementedError(
            f"{self.__class__.__name__} does not support event subscriptions."
        )
        yield {}  # pragma: no cover

    def _stamp(self, topic: str, event: dict[str, Any]) -> dict[str, Any]:
        """Add metadata fields to *event* in-place and return it."""
        event.setdefault("_topic", topic)
        event.setdefault("_timestamp", time.time())
        return event


# ---------------------------------------------------------------------------
# NullEventBus: default
# ---------------------------------------------------------------------------


class NullEventBus(EventBus):
    """Discards all events."""

    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        pass


# ---------------------------------------------------------------------------
# LogEventBus: NDJSON file
# ---------------------------------------------------------------------------


class LogEventBus(EventBus):
    """Writes events as NDJSON to a file — one line per event, append-only.

    Usage::

        bus = LogEventBus(Path("~/.dispatch-guard/events.ndjson"))
        await bus.emit(TOPIC_QUEUE, {"event": "offline_action_stored", "action_id": "a1"})
    """

    def __init__(self, log_file: Path | None = None) -> None:
        self._file = log_file.expanduser() if log_file else None
        self._lock = asyncio.Lock()

    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        self._stamp(topic, event)
        log.debug("event_bus_emit", topic=topic, event_type=event.get("event"))
        if self._file is None:
            return
        line = json.dumps(event, default=str) + "\n"
        async with self._lock:
            try:
                self._file.parent.mkdir(parents=True, exist_ok=True)
                with self._file.open("a", encoding="utf-8") as f:
                    f.write(line)
            except OSError as exc:
                log.error("event_bus_write_failed", topic=topic, error=str(exc))


# ---------------------------------------------------------------------------
# MemoryEventBus: in-process history and subscriptions
# ---------------------------------------------------------------------------


class MemoryEventBus(EventBus):
    """Keeps the most recent events in memory and fans them out to subscribers.

    Subscribers receive only events emitted after they subscribed.  Slow
    subscribers drop their oldest undelivered event rather than blocking the
    producer.
    """

    def __init__(self, history: int = 1000, subscriber_buffer: int = 256) -> None:
        self._history: deque[dict[str, Any]] = deque(maxlen=history)
        self._buffer = subscriber_buffer
        self._subscribers: list[tuple[frozenset[str], asyncio.Queue[dict[str, Any]]]] = []

    @property
    def events(self) -> list[dict[str, Any]]:
        return list(self._history)

    def events_for(self, topic: str) -> list[dict[str, Any]]:
        return [e for e in self._history if e.get("_topic") == topic]

    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        self._stamp(topic, event)
        self._history.append(event)
        for topics, queue in self._subscribers:
            if topics and topic not in topics:
                continue
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(dict(event))

    async def subscribe(
        self, topics: list[str]
    ) -> AsyncIterator[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self._buffer)
        entry = (frozenset(topics), queue)
        self._subscribers.append(entry)
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers.remove(entry)


# ---------------------------------------------------------------------------
# FanoutEventBus: broadcast to several backends
# ---------------------------------------------------------------------------


class FanoutEventBus(EventBus):
    """Routes each event to multiple EventBus backends in parallel."""

    def __init__(self, backends: list[EventBus]) -> None:
        self._backends = backends

    async def emit(self, topic: str, event: dict[str, Any]) -> None:
        self._stamp(topic, event)
        results = await asyncio.gather(
            *(b.emit(topic, dict(event)) for b in self._backends),
            return_exceptions=True,
        )
        for backend, result in zip(self._backends, results):
            if isinstance(result, Exception):
                log.error(
                    "event_bus_backend_failed",
                    backend=backend.__class__.__name__,
                    topic=topic,
                    error=str(result),
                )
