"""
InMemoryItemStore — Dict-backed queue for development and testing.

Features:
  - Zero dependencies (no database, no Redis)
  - One asyncio.Lock guards every mutation and snapshot read
  - All data lost on process restart

Best for: local development, unit tests, single-user bridges.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Optional

from database.store_base import BaseItemStore, DuplicateItemError, StoreError
from models.schemas import QueueItem

logger = structlog.get_logger()


class InMemoryItemStore(BaseItemStore):
    """
    Items keyed by id. Ids sort in creation order, so the oldest item is
    min(self._items) and list() is a sort over the keys.
    """

    def __init__(self):
        self._items: dict[str, QueueItem] = {}         # id → item
        self._lock = asyncio.Lock()
        logger.info("inmemory_store_initialized")

    async def insert(self, item: QueueItem) -> None:
        async with self._lock:
            if item.id in self._items:
                raise DuplicateItemError(item.id)
            self._items[item.id] = item
            try:
                self._changed()
            except StoreError:
                del self._items[item.id]
                raise

    async def oldest(self) -> Optional[QueueItem]:
        async with self._lock:
            if not self._items:
                return None
            return self._items[min(self._items)]

    async def pop_oldest(self) -> Optional[QueueItem]:
        async with self._lock:
            if not self._items:
                return None
            item_id = min(self._items)
            item = self._items.pop(item_id)
            try:
                self._changed()
            except StoreError:
                self._items[item_id] = item
                raise
            return item

    async def list(self, limit: Optional[int] = None) -> list[QueueItem]:
        async with self._lock:
            ids = sorted(self._items)
            if limit is not None:
                ids = ids[:limit]
            return [self._items[i] for i in ids]

    async def count(self) -> int:
        async with self._lock:
            return len(self._items)

    async def delete(self, item_id: str) -> None:
        async with self._lock:
            item = self._items.pop(item_id, None)
            if item is None:
                return
            try:
                self._changed()
            except StoreError:
                self._items[item_id] = item
                raise

    def _changed(self) -> None:
        """
        Hook called under the lock after every mutation. Raising StoreError
        undoes the mutation before the error reaches the caller.
        """

    # ── Stats (for debugging) ─────────────────────────────

    def stats(self) -> dict[str, int]:
        return {"items": len(self._items)}
