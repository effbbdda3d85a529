"""Durable storage backends."""

from dispatch_guard.config import StorageConfig
from dispatch_guard.storage.interface import DurableStorage
from dispatch_guard.storage.memory import MemoryStorage
from dispatch_guard.storage.sqlite import SqliteStorage

__all__ = ["DurableStorage", "MemoryStorage", "SqliteStorage", "create_storage"]


def create_storage(config: StorageConfig) -> DurableStorage:
    """Build the backend selected by ``StorageConfig.backend`` (not yet initialised)."""
    if config.backend == "sqlite":
        return SqliteStorage(config.sqlite_path)
    return MemoryStorage()
