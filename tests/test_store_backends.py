"""
Tests for all item store backends.

Covers:
  - InMemoryItemStore (ordering, atomic pops, idempotent delete)
  - FileItemStore (JSON file persistence)
  - RedisItemStore (key layout and error mapping, against a mocked client)
  - Store factory
"""
import asyncio
import json
import shutil
import tempfile
from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from config.settings import StoreConfig
from database.store_base import DuplicateItemError, StoreUnavailableError
from models.schemas import QueueItem, new_item_id


def make_item(content: str = "hello", **kwargs) -> QueueItem:
    return QueueItem(id=new_item_id(), content=content, **kwargs)


# ──────────────────────────────────────────────────────────────
#  Shared behaviour (memory + file)
# ──────────────────────────────────────────────────────────────

@pytest.fixture
def tmp_dir():
    d = tempfile.mkdtemp()
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture(params=["memory", "file"])
def any_store(request, tmp_dir):
    if request.param == "memory":
        from database.store_memory import InMemoryItemStore
        return InMemoryItemStore()
    from database.store_file import FileItemStore
    return FileItemStore(data_dir=tmp_dir)


class TestLocalStores:
    @pytest.mark.asyncio
    async def test_pop_returns_items_in_insertion_order(self, any_store):
        items = [make_item(f"item {i}") for i in range(5)]
        for item in items:
            await any_store.insert(item)

        popped = [await any_store.pop_oldest() for _ in range(5)]
        assert [p.id for p in popped] == [i.id for i in items]

    @pytest.mark.asyncio
    async def test_pop_on_empty_store_always_returns_none(self, any_store):
        for _ in range(3):
            assert await any_store.pop_oldest() is None
        assert await any_store.oldest() is None

    @pytest.mark.asyncio
    async def test_oldest_does_not_remove(self, any_store):
        first, second = make_item("a"), make_item("b")
        await any_store.insert(first)
        await any_store.insert(second)
        assert (await any_store.oldest()).id == first.id
        assert await any_store.count() == 2

    @pytest.mark.asyncio
    async def test_list_is_ordered_and_non_destructive(self, any_store):
        items = [make_item(f"n{i}") for i in range(4)]
        # Insert out of order; ids still decide the order
        for item in reversed(items):
            await any_store.insert(item)

        for _ in range(3):
            listed = await any_store.list()
            assert [i.id for i in listed] == [i.id for i in items]
        assert await any_store.count() == 4
        assert (await any_store.pop_oldest()).id == items[0].id

    @pytest.mark.asyncio
    async def test_list_limit(self, any_store):
        for i in range(5):
            await any_store.insert(make_item(f"n{i}"))
        assert len(await any_store.list(limit=2)) == 2

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, any_store):
        item = make_item()
        await any_store.insert(item)
        await any_store.delete(item.id)
        await any_store.delete(item.id)
        await any_store.delete("never-existed")
        assert await any_store.count() == 0

    @pytest.mark.asyncio
    async def test_duplicate_insert_rejected(self, any_store):
        item = make_item()
        await any_store.insert(item)
        with pytest.raises(DuplicateItemError):
            await any_store.insert(item)
        assert await any_store.count() == 1

    @pytest.mark.asyncio
    async def test_concurrent_pops_never_share_an_item(self, any_store):
        items = [make_item(f"c{i}") for i in range(20)]
        for item in items:
            await any_store.insert(item)

        results = await asyncio.gather(*(any_store.pop_oldest() for _ in range(25)))
        popped = [r for r in results if r is not None]
        assert len(popped) == 20
        assert len({p.id for p in popped}) == 20
        assert await any_store.count() == 0

    @pytest.mark.asyncio
    async def test_pops_interleaved_with_later_inserts_stay_ordered(self, any_store):
        seen = []
        await any_store.insert(make_item("0"))
        for i in range(1, 10):
            await any_store.insert(make_item(str(i)))
            seen.append(await any_store.pop_oldest())
        while (item := await any_store.pop_oldest()) is not None:
            seen.append(item)
        assert [s.content for s in seen] == [str(i) for i in range(10)]


# ──────────────────────────────────────────────────────────────
#  FileItemStore
# ──────────────────────────────────────────────────────────────

class TestFileItemStore:
    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_dir):
        from database.store_file import FileItemStore
        store1 = FileItemStore(data_dir=tmp_dir)
        first, second = make_item("first"), make_item("second", title="T")
        await store1.insert(first)
        await store1.insert(second)
        await store1.pop_oldest()

        store2 = FileItemStore(data_dir=tmp_dir)
        remaining = await store2.list()
        assert [i.id for i in remaining] == [second.id]
        assert remaining[0].title == "T"

    @pytest.mark.asyncio
    async def test_file_written_as_json(self, tmp_dir):
        from database.store_file import FileItemStore
        store = FileItemStore(data_dir=tmp_dir)
        item = make_item("hello")
        await store.insert(item)

        with open(store.path) as f:
            data = json.load(f)
        assert data[item.id]["content"] == "hello"
        assert "createdAt" in data[item.id]

    @pytest.mark.asyncio
    async def test_failed_write_rejects_insert(self, tmp_dir, monkeypatch):
        from database.store_file import FileItemStore
        store = FileItemStore(data_dir=tmp_dir)
        kept = make_item("kept")
        await store.insert(kept)

        def disk_full():
            raise OSError("disk full")

        monkeypatch.setattr(store, "_flush", disk_full)
        with pytest.raises(StoreUnavailableError):
            await store.insert(make_item("lost"))

        assert [i.id for i in await store.list()] == [kept.id]
        assert [i.id for i in await FileItemStore(data_dir=tmp_dir).list()] == [kept.id]

    @pytest.mark.asyncio
    async def test_failed_write_keeps_popped_item(self, tmp_dir, monkeypatch):
        from database.store_file import FileItemStore
        store = FileItemStore(data_dir=tmp_dir)
        item = make_item("stays")
        await store.insert(item)

        def disk_full():
            raise OSError("disk full")

        monkeypatch.setattr(store, "_flush", disk_full)
        with pytest.raises(StoreUnavailableError):
            await store.pop_oldest()
        with pytest.raises(StoreUnavailableError):
            await store.delete(item.id)
        assert (await store.oldest()).id == item.id

        monkeypatch.undo()
        assert (await store.pop_oldest()).id == item.id
        assert await FileItemStore(data_dir=tmp_dir).count() == 0

    def test_corrupt_file_starts_empty(self, tmp_dir):
        from database.store_file import FileItemStore
        with open(f"{tmp_dir}/queue.json", "w") as f:
            f.write("{ not json")
        store = FileItemStore(data_dir=tmp_dir)
        assert store.stats() == {"items": 0}


# ──────────────────────────────────────────────────────────────
#  RedisItemStore
# ──────────────────────────────────────────────────────────────

class TestRedisItemStore:
    @pytest.fixture
    def redis_client(self):
        client = MagicMock()
        client.insert_script = AsyncMock(return_value=1)
        client.pop_script = AsyncMock(return_value=None)
        client.register_script.side_effect = [client.insert_script, client.pop_script]
        client.ping = AsyncMock(return_value=True)
        client.zrange = AsyncMock(return_value=[])
        client.hget = AsyncMock(return_value=None)
        client.hmget = AsyncMock(return_value=[])
        client.zcard = AsyncMock(return_value=0)
        client.aclose = AsyncMock()
        return client

    @pytest.fixture
    def store(self, redis_client):
        from database.store_redis import RedisItemStore
        return RedisItemStore(key_prefix="test:q", client=redis_client)

    def test_key_layout(self, store):
        assert store.keys == ("test:q:items", "test:q:index")

    @pytest.mark.asyncio
    async def test_insert_runs_script_with_payload(self, store, redis_client):
        item = make_item("hello")
        await store.insert(item)
        kwargs = redis_client.insert_script.await_args.kwargs
        assert kwargs["keys"] == ["test:q:items", "test:q:index"]
        assert kwargs["args"][0] == item.id
        assert json.loads(kwargs["args"][1])["content"] == "hello"

    @pytest.mark.asyncio
    async def test_insert_duplicate(self, store, redis_client):
        redis_client.insert_script.return_value = 0
        with pytest.raises(DuplicateItemError):
            await store.insert(make_item())

    @pytest.mark.asyncio
    async def test_pop_decodes_payload(self, store, redis_client):
        item = make_item("popped")
        redis_client.pop_script.return_value = json.dumps(item.to_wire())
        assert await store.pop_oldest() == item

    @pytest.mark.asyncio
    async def test_pop_empty(self, store):
        assert await store.pop_oldest() is None

    @pytest.mark.asyncio
    async def test_list_skips_missing_payloads(self, store, redis_client):
        a, b = make_item("a"), make_item("b")
        redis_client.zrange.return_value = [a.id, "ghost", b.id]
        redis_client.hmget.return_value = [json.dumps(a.to_wire()), None, json.dumps(b.to_wire())]
        assert [i.id for i in await store.list()] == [a.id, b.id]
        redis_client.zrange.assert_awaited_with("test:q:index", 0, -1)

    @pytest.mark.asyncio
    async def test_list_limit_maps_to_zrange_stop(self, store, redis_client):
        await store.list(limit=10)
        redis_client.zrange.assert_awaited_with("test:q:index", 0, 9)

    @pytest.mark.asyncio
    async def test_redis_errors_become_store_unavailable(self, store, redis_client):
        redis_client.pop_script.side_effect = RedisConnectionError("down")
        with pytest.raises(StoreUnavailableError):
            await store.pop_oldest()

    @pytest.mark.asyncio
    async def test_connect_failure(self, store, redis_client):
        redis_client.ping.side_effect = RedisConnectionError("refused")
        with pytest.raises(StoreUnavailableError):
            await store.connect()


# ──────────────────────────────────────────────────────────────
#  Store Factory
# ──────────────────────────────────────────────────────────────

class TestStoreFactory:
    def test_memory_default(self):
        from database.store_factory import create_store
        from database.store_memory import InMemoryItemStore
        assert isinstance(create_store(), InMemoryItemStore)

    def test_unknown_backend_falls_back_to_memory(self):
        from database.store_factory import create_store
        from database.store_memory import InMemoryItemStore
        assert isinstance(create_store(StoreConfig(backend="etcd")), InMemoryItemStore)

    def test_file_backend(self, tmp_dir):
        from database.store_factory import create_store
        from database.store_file import FileItemStore
        store = create_store(StoreConfig(backend="file", file_dir=tmp_dir))
        assert isinstance(store, FileItemStore)

    def test_redis_backend(self):
        from database.store_factory import create_store
        from database.store_redis import RedisItemStore
        store = create_store(StoreConfig(backend="redis", key_prefix="x"))
        assert isinstance(store, RedisItemStore)
        assert store.keys == ("x:items", "x:index")

    def test_each_call_builds_a_new_store(self):
        from database.store_factory import create_store
        assert create_store() is not create_store()
