"""
Abstract Item Store — Interface for all queue storage backends.

Implementations:
  - InMemoryItemStore (dict + asyncio.Lock, single-process, no persistence)
  - FileItemStore     (JSON file on disk, single-process, durable)
  - RedisItemStore    (hash + sorted-set index, Lua-atomic, multi-process)

Ordering: items are kept by id, and ids sort in creation order, so
"oldest" is always the minimum id currently stored. Every mutation is
indivisible with respect to other callers of the same store.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from models.schemas import QueueItem


class StoreError(Exception):
    """Base class for item store failures."""


class DuplicateItemError(StoreError):
    """An id was inserted twice. The id scheme makes this an internal bug."""

    def __init__(self, item_id: str):
        super().__init__(f"duplicate item id: {item_id}")
        self.item_id = item_id


class StoreUnavailableError(StoreError):
    """The backing service could not be reached or answered with an error."""


class BaseItemStore(ABC):
    """Interface that all item store backends must implement."""

    async def connect(self) -> None:
        """Open connections. Local backends have nothing to do."""

    async def close(self) -> None:
        """Release connections."""

    @abstractmethod
    async def insert(self, item: QueueItem) -> None:
        ...

    @abstractmethod
    async def oldest(self) -> Optional[QueueItem]:
        ...

    @abstractmethod
    async def pop_oldest(self) -> Optional[QueueItem]:
        """Remove and return the minimum-id item, or None when empty."""
        ...

    @abstractmethod
    async def list(self, limit: Optional[int] = None) -> list[QueueItem]:
        """Snapshot of stored items in ascending id order."""
        ...

    @abstractmethod
    async def count(self) -> int:
        ...

    @abstractmethod
    async def delete(self, item_id: str) -> None:
        """Remove one item if present. Missing ids are ignored."""
        ...
