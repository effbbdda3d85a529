"""Resilience layer — Offline action queue.

Mutations attempted while disconnected are acknowledged immediately with a
fresh action id and appended to a FIFO queue that is persisted to durable
storage after every change.  ``force_sync`` replays the queue in order
through the network capability:

  - an action is removed only after its replay succeeds
  - the first failure increments ``attempt_count``, records ``last_error``
    and halts the pass, leaving the failed action and everything behind it
  - concurrent ``force_sync`` calls join the pass already running

Acknowledgements are never rolled back; failed replays stay queued and are
published on ``dispatch.queue`` as ``replay_failed``.
"""

from __future__ import annotations

import asyncio
import itertools
import uuid
from dataclasses import dataclass
from typing import Any, Callable

from pydantic import BaseModel, Field, ValidationError

from dispatch_guard.clock import Clock, SystemClock
from dispatch_guard.config import OfflineConfig
from dispatch_guard.events.bus import TOPIC_QUEUE, EventBus, NullEventBus
from dispatch_guard.exceptions import ReplayError, StorageError
from dispatch_guard.logging import bind_request_context, get_logger
from dispatch_guard.storage.interface import DurableStorage
from dispatch_guard.storage.memory import MemoryStorage
from dispatch_guard.transport import NetworkCapability

log = get_logger(__name__)


class PendingAction(BaseModel):
    id: str
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: float
    sequence: int = 0
    session_id: str | None = None
    attempt_count: int = Field(default=0, ge=0)
    last_error: str | None = None


@dataclass(frozen=True)
class SyncReport:
    replayed: int
    failed: int
    remaining: int
    error: ReplayError | None = None

    @property
    def complete(self) -> bool:
        return self.remaining == 0


HeaderProvider = Callable[[PendingAction], dict[str, str]]
FailureListener = Callable[[PendingAction, Exception], None]


class OfflineActionQueue:
    """FIFO queue of mutations awaiting connectivity.

    Args:
        network: Capability that replays an action by its type.
        storage: Durable storage holding the serialised queue.
        config: Storage key and sync triggers.
        clock: Source of ``created_at``.
        event_bus: Receives queue lifecycle events on ``dispatch.queue``.
        is_offline: Connectivity check; replay is skipped while it returns True.
        headers_for: Per-action headers attached on replay (fresh CSRF token).
        on_replay_failed: Called with the action and the cause of a failed replay.
    """

    def __init__(
        self,
        network: NetworkCapability,
        storage: DurableStorage | None = None,
        config: OfflineConfig | None = None,
        clock: Clock | None = None,
        event_bus: EventBus | None = None,
        is_offline: Callable[[], bool] | None = None,
        headers_for: HeaderProvider | None = None,
        on_replay_failed: FailureListener | None = None,
    ) -> None:
        self._network = network
        self._storage = storage or MemoryStorage()
        self._config = config or OfflineConfig()
        self._clock = clock or SystemClock()
        self._bus = event_bus or NullEventBus()
        self._is_offline = is_offline or (lambda: False)
        self._headers_for = headers_for
        self._on_replay_failed = on_replay_failed
        self._actions: list[PendingAction] = []
        self._sequence = itertools.count()
        self._sync_task: asyncio.Task[SyncReport] | None = None
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def pending_actions(self) -> list[PendingAction]:
        return [a.model_copy(deep=True) for a in self._actions]

    @property
    def pending_count(self) -> int:
        return len(self._actions)

    @property
    def syncing(self) -> bool:
        return self._sync_task is not None and not self._sync_task.done()

    # ------------------------------------------------------------------
    # Enqueue / clear / load
    # ------------------------------------------------------------------

    async def store_offline_action(
        self,
        action_type: str,
        payload: dict[str, Any] | None = None,
        session_id: str | None = None,
    ) -> str:
        """Queue an action and return its id immediately."""
        action = PendingAction(
            id=f"{action_type}_{uuid.uuid4().hex}",
            type=action_type,
            payload=dict(payload or {}),
            created_at=self._clock.now(),
            sequence=next(self._sequence),
            session_id=session_id,
        )
        self._actions.append(action)
        log.info(
            "offline_action_stored",
            action_id=action.id,
            action_type=action_type,
            pending=len(self._actions),
        )
        await self._persist()
        await self._bus.emit(
            TOPIC_QUEUE,
            {"event": "offline_action_stored", "action_id": action.id, "action_type": action_type},
        )

        if self._config.sync_on_enqueue_when_online and not self._is_offline():
            self._spawn(self.force_sync())
        return action.id

    async def clear_pending_actions(self) -> int:
        count = len(self._actions)
        self._actions.clear()
        await self._storage.remove(self._config.storage_key)
        log.info("offline_actions_cleared", count=count)
        await self._bus.emit(TOPIC_QUEUE, {"event": "offline_actions_cleared", "count": count})
        return count

    async def load(self) -> int:
        """Restore persisted actions, merged with any already queued; return the total."""
        blob = await self._storage.read(self._config.storage_key)
        if blob is None:
            return len(self._actions)
        if not isinstance(blob, list):
            log.warning("offline_queue_corrupt", key=self._config.storage_key)
            return len(self._actions)

        known = {a.id for a in self._actions}
        for raw in blob:
            try:
                action = PendingAction.model_validate(raw)
            except ValidationError as exc:
                log.warning("offline_action_corrupt", error=str(exc))
                continue
            if action.id not in known:
                self._actions.append(action)
                known.add(action.id)

        self._actions.sort(key=lambda a: (a.created_at, a.sequence))
        next_seq = max((a.sequence for a in self._actions), default=-1) + 1
        self._sequence = itertools.count(next_seq)
        log.info("offline_queue_loaded", pending=len(self._actions))
        return len(self._actions)

    # ------------------------------------------------------------------
    # Replay
    # ------------------------------------------------------------------

    async def force_sync(self) -> SyncReport:
        """Replay the queue now, or join the pass already running."""
        if self._sync_task is None or self._sync_task.done():
            self._sync_task = asyncio.ensure_future(self._replay())
        return await asyncio.shield(self._sync_task)

    async def wait_idle(self) -> None:
        """Wait for background syncs started by enqueues to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _replay(self) -> SyncReport:
        if self._is_offline():
            log.debug("offline_sync_skipped", reason="offline", pending=len(self._actions))
            return SyncReport(replayed=0, failed=0, remaining=len(self._actions))

        replayed = 0
        while self._actions and not self._is_offline():
            action = self._actions[0]
            bind_request_context(action_id=action.id)
            headers = self._headers_for(action) if self._headers_for else None
            try:
                await self._network.send(action.type, action.payload, headers=headers)
            except Exception as exc:
                return await self._record_failure(action, exc, replayed)

            if self._actions and self._actions[0] is action:
                self._actions.pop(0)
            replayed += 1
            log.info("offline_action_replayed", action_type=action.type)
            await self._persist()
            await self._bus.emit(
                TOPIC_QUEUE,
                {"event": "replay_succeeded", "action_id": action.id, "action_type": action.type},
            )

        if replayed:
            log.info("offline_sync_completed", replayed=replayed, remaining=len(self._actions))
        return SyncReport(replayed=replayed, failed=0, remaining=len(self._actions))

    async def _record_failure(self, action: PendingAction, exc: Exception, replayed: int) -> SyncReport:
        action.attempt_count += 1
        action.last_error = str(exc)
        error = ReplayError(action.id, action.type, exc)
        log.warning(
            "replay_failed",
            action_type=action.type,
            attempt_count=action.attempt_count,
            error=str(exc),
        )
        await self._persist()
        await self._bus.emit(
            TOPIC_QUEUE,
            {
                "event": "replay_failed",
                "action_id": action.id,
                "action_type": action.type,
                "attempt_count": action.attempt_count,
                "error": str(exc),
            },
        )
        if self._on_replay_failed is not None:
            self._on_replay_failed(action.model_copy(deep=True), exc)
        return SyncReport(
            replayed=replayed, failed=1, remaining=len(self._actions), error=error
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _persist(self) -> None:
        key = self._config.storage_key
        try:
            if self._actions:
                await self._storage.persist(key, [a.model_dump() for a in self._actions])
            else:
                await self._storage.remove(key)
        except StorageError as exc:
            # The in-memory queue stays authoritative until the next write.
            log.error("offline_queue_persist_failed", error=exc.message)

    def _spawn(self, coro: Any) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
