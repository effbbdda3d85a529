"""Storage layer — In-process storage."""

from __future__ import annotations

import copy
from typing import Any

from dispatch_guard.storage.interface import DurableStorage


class MemoryStorage(DurableStorage):
    """Dict-backed storage.  Blobs are deep-copied in and out."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}

    async def persist(self, key: str, blob: Any) -> None:
        self._data[key] = copy.deepcopy(blob)

    async def read(self, key: str) -> Any | None:
        if key not in self._data:
            return None
        return copy.deepcopy(self._data[key])

    async def remove(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))

    def __len__(self) -> int:
        return len(self._data)
