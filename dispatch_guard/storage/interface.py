"""Storage layer — Durable storage capability.

The offline queue and the response cache persist JSON-compatible blobs under
string keys.  Implementations must survive process restarts (except
``MemoryStorage``, used in tests and as the default) and raise
``StorageError`` on backend failure.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class DurableStorage(ABC):
    async def init(self) -> None:
        """Open the backend.  No-op by default."""

    async def close(self) -> None:
        """Release the backend.  No-op by default."""

    @abstractmethod
    async def persist(self, key: str, blob: Any) -> None:
        """Store *blob* under *key*, replacing any previous value."""

    @abstractmethod
    async def read(self, key: str) -> Any | None:
        """Return the blob stored under *key*, or None."""

    @abstractmethod
    async def remove(self, key: str) -> None:
        """Delete *key*.  Deleting a missing key is not an error."""

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """Return every stored key starting with *prefix*."""
