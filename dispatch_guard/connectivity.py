"""Connectivity signal.

The host application feeds online/offline transitions in with
:meth:`ConnectivityMonitor.set_offline`; listeners are called only on an
actual change.  Listeners may be sync callables or coroutine functions.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable

from dispatch_guard.logging import get_logger

log = get_logger(__name__)

Listener = Callable[[bool], Awaitable[Any] | Any]


class ConnectivityMonitor:
    def __init__(self, is_offline: bool = False) -> None:
        self._is_offline = is_offline
        self._listeners: list[Listener] = []
        self._pending: set[asyncio.Task[Any]] = set()

    @property
    def is_offline(self) -> bool:
        return self._is_offline

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; return a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_offline(self, is_offline: bool) -> None:
        if is_offline == self._is_offline:
            return
        self._is_offline = is_offline
        log.info("connectivity_changed", is_offline=is_offline)
        for listener in list(self._listeners):
            try:
                result = listener(is_offline)
            except Exception as exc:
                log.error("connectivity_listener_failed", error=str(exc))
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._pending.add(task)
                task.add_done_callback(self._on_listener_done)

    async def wait_for_listeners(self) -> None:
        """Wait until every async listener started by a transition has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _on_listener_done(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            log.error("connectivity_listener_failed", error=str(task.exception()))
