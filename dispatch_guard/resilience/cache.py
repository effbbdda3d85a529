"""Resilience layer — TTL response cache.

Keyed by request key.  Entries are written only when a fetch settles
successfully and are dropped lazily on read once expired.  The last value is
kept reachable through :meth:`ResponseCache.get_stale` until it is swept or
invalidated, which is what the offline fallback reads.

When a ``DurableStorage`` is supplied every write is mirrored under
``dispatch_guard.cache.<key>`` so entries survive reloads.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from dispatch_guard.clock import Clock, SystemClock
from dispatch_guard.config import CacheConfig
from dispatch_guard.exceptions import StorageError
from dispatch_guard.logging import get_logger
from dispatch_guard.storage.interface import DurableStorage

log = get_logger(__name__)

STORAGE_PREFIX = "dispatch_guard.cache."


@dataclass
class CacheEntry:
    key: str
    value: Any
    stored_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "stored_at": self.stored_at,
            "expires_at": self.expires_at,
        }


class ResponseCache:
    """TTL cache with an optional durable mirror.

    Args:
        config: TTL and persistence settings.
        clock: Time source for expiry.
        storage: Durable mirror; None keeps the cache purely in memory.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        clock: Clock | None = None,
        storage: DurableStorage | None = None,
    ) -> None:
        self._config = config or CacheConfig()
        self._clock = clock or SystemClock()
        self._storage = storage if self._config.persist else None
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0

    @property
    def size(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def get(self, key: str) -> CacheEntry | None:
        """Return the fresh entry for *key*, or None on miss/expiry."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        if entry.is_expired(self._clock.now()):
            self._misses += 1
            return None
        self._hits += 1
        return entry

    def get_stale(self, key: str) -> CacheEntry | None:
        """Return the last stored entry for *key* regardless of TTL."""
        return self._entries.get(key)

    async def put(self, key: str, value: Any, ttl: float | None = None) -> CacheEntry:
        now = self._clock.now()
        entry = CacheEntry(
            key=key,
            value=value,
            stored_at=now,
            expires_at=now + (ttl if ttl is not None else self._config.default_ttl_seconds),
        )
        self._entries[key] = entry
        if self._storage is not None:
            try:
                await self._storage.persist(STORAGE_PREFIX + key, entry.to_dict())
            except StorageError as exc:
                # The in-memory entry stays authoritative.
                log.error("cache_persist_failed", key=key, error=exc.message)
        return entry

    async def invalidate(self, key: str) -> bool:
        removed = self._entries.pop(key, None) is not None
        if self._storage is not None:
            await self._storage.remove(STORAGE_PREFIX + key)
        return removed

    async def invalidate_prefix(self, prefix: str) -> int:
        keys = [k for k in self._entries if k.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        if self._storage is not None:
            for stored in await self._storage.keys(STORAGE_PREFIX + prefix):
                await self._storage.remove(stored)
        return len(keys)

    async def evict_expired(self) -> int:
        now = self._clock.now()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if self._storage is not None:
            for key in expired:
                await self._storage.remove(STORAGE_PREFIX + key)
        if expired:
            log.debug("cache_entries_evicted", count=len(expired))
        return len(expired)

    async def clear(self) -> None:
        keys = list(self._entries)
        self._entries.clear()
        if self._storage is not None:
            for key in keys:
                await self._storage.remove(STORAGE_PREFIX + key)

    async def load(self) -> int:
        """Restore mirrored entries from durable storage; return the count."""
        if self._storage is None:
            return 0
        restored = 0
        for stored in await self._storage.keys(STORAGE_PREFIX):
            blob = await self._storage.read(stored)
            if not isinstance(blob, dict) or "value" not in blob:
                log.warning("cache_entry_corrupt", key=stored)
                await self._storage.remove(stored)
                continue
            key = stored[len(STORAGE_PREFIX):]
            self._entries[key] = CacheEntry(
                key=key,
                value=blob["value"],
                stored_at=float(blob.get("stored_at", 0.0)),
                expires_at=float(blob.get("expires_at", 0.0)),
            )
            restored += 1
        if restored:
            log.info("cache_restored", entries=restored)
        return restored

    def stats(self) -> dict[str, Any]:
        total = self._hits + self._misses
        return {
            "size": len(self._entries),
            "default_ttl_seconds": self._config.default_ttl_seconds,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / total if total > 0 else 0.0,
        }
