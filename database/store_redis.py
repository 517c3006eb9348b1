"""
RedisItemStore — external key-value backend for hosted deployments.

Key layout (prefix defaults to "thymer:queue"):
  {prefix}:items    hash        item_id → item JSON
  {prefix}:index    sorted set  every member scored 0, so members sort
                                lexicographically, i.e. by id, i.e. by age

insert and pop_oldest run as Lua scripts: Redis executes a script without
interleaving other commands, which makes both indivisible across every
process sharing the keys.
"""
from __future__ import annotations

import json
import structlog
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from database.store_base import BaseItemStore, DuplicateItemError, StoreUnavailableError
from models.schemas import QueueItem

logger = structlog.get_logger()

_INSERT_SCRIPT = """
if redis.call('HEXISTS', KEYS[1], ARGV[1]) == 1 then
  return 0
end
redis.call('HSET', KEYS[1], ARGV[1], ARGV[2])
redis.call('ZADD', KEYS[2], 0, ARGV[1])
return 1
"""

# Skips index entries whose payload has gone missing
_POP_SCRIPT = """
while true do
  local ids = redis.call('ZRANGE', KEYS[2], 0, 0)
  if #ids == 0 then
    return false
  end
  local payload = redis.call('HGET', KEYS[1], ids[1])
  redis.call('ZREM', KEYS[2], ids[1])
  redis.call('HDEL', KEYS[1], ids[1])
  if payload then
    return payload
  end
end
"""


class RedisItemStore(BaseItemStore):
    """Queue kept in Redis; safe for several server processes."""

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379",
        key_prefix: str = "thymer:queue",
        client: Any = None,
    ):
        self._redis_url = redis_url
        self._items_key = f"{key_prefix}:items"
        self._index_key = f"{key_prefix}:index"
        self._redis = client
        self._insert_script = None
        self._pop_script = None
        if client is not None:
            self._register_scripts()

    def _register_scripts(self):
        self._insert_script = self._redis.register_script(_INSERT_SCRIPT)
        self._pop_script = self._redis.register_script(_POP_SCRIPT)

    async def connect(self) -> None:
        if self._redis is None:
            self._redis = aioredis.from_url(
                self._redis_url,
                decode_responses=True,
                max_connections=20,
            )
            self._register_scripts()
        try:
            await self._redis.ping()
        except RedisError as e:
            raise StoreUnavailableError(f"redis unreachable: {e}") from e
        logger.info("redis_store_connected", url=self._redis_url)

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()

    @property
    def keys(self) -> tuple[str, str]:
        return self._items_key, self._index_key

    async def insert(self, item: QueueItem) -> None:
        payload = json.dumps(item.to_wire())
        try:
            added = await self._insert_script(keys=list(self.keys), args=[item.id, payload])
        except RedisError as e:
            raise StoreUnavailableError(str(e)) from e
        if not int(added):
            raise DuplicateItemError(item.id)

    async def oldest(self) -> Optional[QueueItem]:
        try:
            ids = await self._redis.zrange(self._index_key, 0, 0)
            if not ids:
                return None
            payload = await self._redis.hget(self._items_key, ids[0])
        except RedisError as e:
            raise StoreUnavailableError(str(e)) from e
        return self._decode(payload)

    async def pop_oldest(self) -> Optional[QueueItem]:
        try:
            payload = await self._pop_script(keys=list(self.keys), args=[])
        except RedisError as e:
            raise StoreUnavailableError(str(e)) from e
        return self._decode(payload)

    async def list(self, limit: Optional[int] = None) -> list[QueueItem]:
        stop = -1 if limit is None else limit - 1
        if stop < -1:
            return []
        try:
            ids = await self._redis.zrange(self._index_key, 0, stop)
            if not ids:
                return []
            payloads = await self._redis.hmget(self._items_key, ids)
        except RedisError as e:
            raise StoreUnavailableError(str(e)) from e
        items = [self._decode(p) for p in payloads]
        return [item for item in items if item is not None]

    async def count(self) -> int:
        try:
            return int(await self._redis.zcard(self._index_key))
        except RedisError as e:
            raise StoreUnavailableError(str(e)) from e

    async def delete(self, item_id: str) -> None:
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.zrem(self._index_key, item_id)
                pipe.hdel(self._items_key, item_id)
                await pipe.execute()
        except RedisError as e:
            raise StoreUnavailableError(str(e)) from e

    @staticmethod
    def _decode(payload: Optional[str]) -> Optional[QueueItem]:
        if not payload:
            return None
        return QueueItem.from_wire(json.loads(payload))
