"""Event streaming infrastructure."""

from dispatch_guard.events.bus import (
    TOPIC_QUEUE,
    TOPIC_REQUESTS,
    TOPIC_SECURITY,
    EventBus,
    FanoutEventBus,
    LogEventBus,
    MemoryEventBus,
    NullEventBus,
)

__all__ = [
    "EventBus",
    "NullEventBus",
    "LogEventBus",
    "MemoryEventBus",
    "FanoutEventBus",
    "TOPIC_SECURITY",
    "TOPIC_QUEUE",
    "TOPIC_REQUESTS",
]
