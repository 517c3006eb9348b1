"""
Database layer — Multi-backend queue storage.

Backends:
  - In-memory (dict + asyncio.Lock, for development/testing)
  - File (JSON file on disk, for small deployments)
  - Redis (hash + sorted set with Lua-atomic pops, for hosted deployments)

Quick start:
  from database import create_store
  store = create_store(StoreConfig(backend="memory"))
  item = await store.pop_oldest()
"""
from database.store_base import (
    BaseItemStore, StoreError, DuplicateItemError, StoreUnavailableError,
)
from database.store_memory import InMemoryItemStore
from database.store_file import FileItemStore
from database.store_redis import RedisItemStore
from database.store_factory import create_store

__all__ = [
    # Store interface
    "BaseItemStore",
    # Errors
    "StoreError", "DuplicateItemError", "StoreUnavailableError",
    # Store backends
    "InMemoryItemStore", "FileItemStore", "RedisItemStore",
    # Factory
    "create_store",
]
