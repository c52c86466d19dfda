"""Unit tests for DualTierCache and the truncation policy."""

import json

import pytest

from task_cache.cache.dual_tier import DualTierCache, truncate_recent
from task_cache.core.errors import QuotaExceededError
from task_cache.core.keys import make_key
from task_cache.core.models import TaskList, TaskStatus
from task_cache.monitoring.metrics import task_cache_persist_failures_total
from task_cache.storage.base import InMemoryStore
from task_cache.utils.config import CacheConfig


class BrokenStore(InMemoryStore):
    """Store whose writes always fail with a non-quota error."""

    async def set_item(self, key, value):
        raise OSError("disk on fire")


class AlwaysFullStore(InMemoryStore):
    async def set_item(self, key, value):
        raise QuotaExceededError(key, len(value), 0)


async def persisted_data(store, key):
    raw = await store.get_item(key)
    return None if raw is None else json.loads(raw)["data"]


@pytest.mark.asyncio
class TestReadWrite:
    async def test_set_writes_both_tiers(self, cache, store, clock):
        entry = await cache.set("task_lists:{}", [{"_id": "1"}])

        assert cache.get("task_lists:{}") is entry
        snapshot = json.loads(await store.get_item("task_lists:{}"))
        assert snapshot == {"data": [{"_id": "1"}], "timestamp": clock.now}

    async def test_load_persisted(self, cache, clock):
        await cache.set("k:1", {"a": 1})

        entry = await cache.load_persisted("k:1")

        assert entry.data == {"a": 1}
        assert entry.timestamp == clock.now
        assert await cache.load_persisted("k:missing") is None

    async def test_models_are_persisted_as_plain_json(self, cache, store):
        task_list = TaskList.from_dict({"_id": "l1", "title": "Opening", "tasks": [{"_id": "t1", "title": "Doors"}]})

        await cache.set("task_lists:{}", [task_list])

        data = await persisted_data(store, "task_lists:{}")
        assert data[0]["_id"] == "l1"
        assert data[0]["tasks"][0]["status"] == TaskStatus.PENDING.value
        # memory keeps the model itself
        assert cache.get("task_lists:{}").data[0] is task_list

    async def test_get_fresh_respects_ttl(self, cache, clock):
        await cache.set("k:1", "v")

        clock.advance(119)
        assert cache.get_fresh("k:1", 120).data == "v"
        clock.advance(1)
        assert cache.get_fresh("k:1", 120) is None
        assert cache.get("k:1").data == "v"

    async def test_corrupt_snapshot_is_ignored(self, cache, store):
        await store.set_item("k:1", "{not json")
        assert await cache.load_persisted("k:1") is None

        await store.set_item("k:2", json.dumps({"data": []}))
        assert await cache.load_persisted("k:2") is None

    async def test_without_store(self, memory):
        cache = DualTierCache(memory, None)

        await cache.set("k:1", "v")

        assert cache.get("k:1").data == "v"
        assert await cache.load_persisted("k:1") is None
        await cache.invalidate_all()
        assert cache.keys() == []

    async def test_persistence_disabled(self, memory, store):
        cache = DualTierCache(memory, store, CacheConfig(persist_enabled=False))

        await cache.set("k:1", "v")

        assert await store.keys() == []


@pytest.mark.asyncio
class TestTruncation:
    async def test_oversized_list_is_truncated_in_store_only(self, memory, store, make_dated_items):
        """A payload over the size threshold is stored truncated; memory keeps it whole."""
        cache = DualTierCache(memory, store, CacheConfig(persist_max_bytes=500))
        items = make_dated_items(30)
        key = make_key("task_history", {"startDate": "2024-01-01"})

        await cache.set(key, items)

        stored = await persisted_data(store, key)
        assert len(stored) == 20
        # newest first
        assert stored[0]["date"] == "2024-01-30"
        assert stored[-1]["date"] == "2024-01-11"
        assert cache.get(key).data == items
        assert len(cache.get(key).data) == 30

    async def test_oversized_non_list_is_stored_untruncated(self, memory, store):
        cache = DualTierCache(memory, store, CacheConfig(persist_max_bytes=10))

        await cache.set("k:1", {"big": "x" * 100})

        assert await persisted_data(store, "k:1") == {"big": "x" * 100}

    async def test_quota_evicts_same_family_and_retries_truncated(self, memory, make_dated_items):
        store = InMemoryStore(quota_bytes=1500)
        await store.set_item('task_instances:{"other":1}', "y" * 300)
        await store.set_item("task_lists:{}", "z" * 100)
        cache = DualTierCache(memory, store, CacheConfig())
        key = make_key("task_instances", {"startDate": "2024-01-01"})
        items = make_dated_items(28)

        await cache.set(key, items)

        keys = await store.keys()
        assert 'task_instances:{"other":1}' not in keys
        assert "task_lists:{}" in keys
        stored = await persisted_data(store, key)
        assert len(stored) == 10
        assert stored[0]["date"] == "2024-01-28"
        assert len(cache.get(key).data) == 28
        assert task_cache_persist_failures_total.get(reason="quota") == 1

    async def test_quota_failure_is_never_fatal(self, memory, make_dated_items):
        cache = DualTierCache(memory, AlwaysFullStore(), CacheConfig())

        entry = await cache.set("task_history:{}", make_dated_items(25))

        assert len(entry.data) == 25
        assert task_cache_persist_failures_total.get(reason="quota_retry") == 1

    async def test_quota_with_non_list_gives_up(self, memory):
        store = AlwaysFullStore()
        cache = DualTierCache(memory, store, CacheConfig())

        await cache.set("task_metrics:{}", {"totalInstances": 3})

        assert await store.keys() == []
        assert cache.get("task_metrics:{}").data == {"totalInstances": 3}

    async def test_other_store_errors_are_swallowed(self, memory):
        cache = DualTierCache(memory, BrokenStore(), CacheConfig())

        await cache.set("k:1", [1, 2, 3])

        assert cache.get("k:1").data == [1, 2, 3]
        assert task_cache_persist_failures_total.get(reason="store") == 1

    async def test_unserializable_data_is_not_persisted(self, cache, store):
        await cache.set("k:1", {"when": object()})

        assert await store.keys() == []
        assert task_cache_persist_failures_total.get(reason="serialize") == 1


class TestTruncateRecent:
    def test_short_lists_are_untouched(self):
        items = [{"date": "2024-01-01"}]
        assert truncate_recent(items, 5) == items

    def test_newest_first_by_recency_field(self):
        items = [{"date": "2024-01-02"}, {"date": "2024-01-03"}, {"date": "2024-01-01"}]
        assert truncate_recent(items, 2) == [{"date": "2024-01-03"}, {"date": "2024-01-02"}]

    def test_undated_items_go_last(self):
        items = [{"title": "a"}, {"date": "2024-01-01"}, {"title": "b"}]
        assert truncate_recent(items, 2) == [{"date": "2024-01-01"}, {"title": "a"}]

    def test_falls_back_to_updated_at(self):
        items = [{"updatedAt": "2024-01-01T00:00:00"}, {"updatedAt": "2024-02-01T00:00:00"}]
        assert truncate_recent(items, 1) == [{"updatedAt": "2024-02-01T00:00:00"}]

    def test_positional_when_nothing_is_dated(self):
        assert truncate_recent([1, 2, 3, 4], 2) == [1, 2]

    def test_custom_field(self):
        items = [{"seen": "1"}, {"seen": "3"}, {"seen": "2"}]
        assert truncate_recent(items, 1, recency_field="seen") == [{"seen": "3"}]


@pytest.mark.asyncio
class TestInvalidation:
    async def _populate(self, cache):
        await cache.set(make_key("task_lists", {"area": "foh"}), ["foh"])
        await cache.set(make_key("task_instances", {"startDate": "2024-03-01"}), ["i1"])
        await cache.set(make_key("task_instances", {"startDate": "2024-03-02"}), ["i2"])
        await cache.set(make_key("task_history", {"startDate": "2024-03-01"}), ["h1"])

    async def test_invalidate_key_removes_both_tiers(self, cache, store):
        await self._populate(cache)
        key = make_key("task_lists", {"area": "foh"})

        await cache.invalidate(key)

        assert cache.get(key) is None
        assert await store.get_item(key) is None
        assert len(cache.keys()) == 3

    async def test_invalidate_matching_substring(self, cache, store):
        await self._populate(cache)

        removed = await cache.invalidate_matching("2024-03-01")

        assert len(removed) == 2
        assert all("2024-03-01" not in key for key in cache.keys())
        assert all("2024-03-01" not in key for key in await store.keys())

    async def test_invalidate_family(self, cache, store):
        await self._populate(cache)

        await cache.invalidate_family("task_instances")

        assert sorted(k.split(":")[0] for k in cache.keys()) == ["task_history", "task_lists"]
        assert sorted(k.split(":")[0] for k in await store.keys()) == ["task_history", "task_lists"]

    async def test_invalidate_all(self, cache, store):
        await self._populate(cache)
        await store.set_item("unrelated", "x")

        await cache.invalidate_all()

        assert cache.keys() == []
        assert await store.keys() == []

    async def test_every_invalidation_bumps_generation(self, cache):
        start = cache.generation
        await cache.set("k:1", "v")
        assert cache.generation == start

        await cache.invalidate("k:1")
        await cache.invalidate_family("task_lists")
        await cache.invalidate_matching("nothing-matches")
        await cache.invalidate_all()

        assert cache.generation == start + 4
