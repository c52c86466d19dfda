from __future__ import annotations

import json
import logging
import typing as t

from task_cache.core.errors import QuotaExceededError
from task_cache.core.keys import family_of
from task_cache.core.models import CacheEntry, to_jsonable
from task_cache.monitoring.metrics import task_cache_invalidations_total, task_cache_persist_failures_total
from task_cache.storage.base import PersistentStore
from task_cache.utils.config import CacheConfig

from .memory import MemoryTier

_logger = logging.getLogger(__name__)

_FALLBACK_RECENCY_FIELDS = ("updatedAt", "createdAt")

KeyMatcher = t.Union[str, t.Callable[[str], bool]]


def truncate_recent(items: t.Sequence[t.Any], limit: int, recency_field: str = "date") -> t.List[t.Any]:
    """Keep the `limit` most recent items.

    Mapping items carrying `recency_field` (or updatedAt/createdAt) are
    ordered newest first by that value and undated items go last. If no item
    carries a date, the first `limit` items are kept in order.
    """
    if len(items) <= limit:
        return list(items)
    fields = (recency_field,) + tuple(f for f in _FALLBACK_RECENCY_FIELDS if f != recency_field)

    def stamp(item: t.Any) -> t.Optional[str]:
        if isinstance(item, t.Mapping):
            for name in fields:
                value = item.get(name)
                if value is not None:
                    return str(value)
        return None

    dated = [item for item in items if stamp(item) is not None]
    if not dated:
        return list(items[:limit])
    undated = [item for item in items if stamp(item) is None]
    dated.sort(key=stamp, reverse=True)
    return (dated + undated)[:limit]


def _matcher(pattern: KeyMatcher) -> t.Callable[[str], bool]:
    if callable(pattern):
        return pattern
    return lambda key: pattern in key


class DualTierCache:
    """In-memory entries backed by a best-effort persistent snapshot store.

    The memory tier always holds the full value. The persistent tier may hold
    a truncated copy, or nothing, when the store is full; persistence errors
    are logged and never raised.
    """

    def __init__(
        self,
        memory: t.Optional[MemoryTier] = None,
        store: t.Optional[PersistentStore] = None,
        config: t.Optional[CacheConfig] = None,
    ) -> None:
        self._memory = memory or MemoryTier()
        self._store = store
        self._config = config or CacheConfig()
        self._generation = 0

    @property
    def memory(self) -> MemoryTier:
        return self._memory

    @property
    def store(self) -> t.Optional[PersistentStore]:
        return self._store

    @property
    def config(self) -> CacheConfig:
        return self._config

    @property
    def generation(self) -> int:
        """Bumped by every invalidation; a fetch started under an older one must not be stored."""
        return self._generation

    def keys(self) -> t.List[str]:
        return self._memory.keys()

    def get(self, key: str) -> t.Optional[CacheEntry]:
        return self._memory.get(key)

    def get_fresh(self, key: str, ttl_seconds: float) -> t.Optional[CacheEntry]:
        return self._memory.get_fresh(key, ttl_seconds)

    async def load_persisted(self, key: str) -> t.Optional[CacheEntry]:
        if self._store is None:
            return None
        try:
            raw = await self._store.get_item(key)
        except Exception as exc:
            _logger.warning("failed to read persisted snapshot %s: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            return CacheEntry.from_snapshot(json.loads(raw))
        except (ValueError, KeyError, TypeError) as exc:
            _logger.warning("discarding corrupt persisted snapshot %s: %s", key, exc)
            return None

    async def set(self, key: str, data: t.Any) -> CacheEntry:
        entry = self._memory.set(key, data)
        if self._store is not None and self._config.persist_enabled:
            await self._persist(key, entry)
        return entry

    def _encode(self, entry: CacheEntry, payload: t.Any) -> str:
        return json.dumps(entry.to_snapshot(payload), separators=(",", ":"))

    def _truncate(self, payload: t.List[t.Any], limit: int) -> t.List[t.Any]:
        return truncate_recent(payload, limit, self._config.recency_field)

    async def _persist(self, key: str, entry: CacheEntry) -> None:
        assert self._store is not None
        try:
            payload = to_jsonable(entry.data)
            raw = self._encode(entry, payload)
        except (TypeError, ValueError) as exc:
            _logger.error("cannot serialize %s for persistence: %s", key, exc)
            task_cache_persist_failures_total.inc(reason="serialize")
            return

        if len(raw) > self._config.persist_max_bytes:
            size_mb = len(raw) / (1024 * 1024)
            if isinstance(payload, list):
                _logger.warning("snapshot for %s is too large (%.2fMB), truncating before persisting", key, size_mb)
                payload = self._truncate(payload, self._config.truncate_items)
                raw = self._encode(entry, payload)
            else:
                _logger.warning("snapshot for %s is too large (%.2fMB) and cannot be truncated", key, size_mb)

        try:
            await self._store.set_item(key, raw)
            return
        except QuotaExceededError as exc:
            _logger.warning("storage quota exceeded, clearing old %s snapshots: %s", family_of(key), exc)
            task_cache_persist_failures_total.inc(reason="quota")
        except Exception as exc:
            _logger.error("failed to persist %s: %s", key, exc)
            task_cache_persist_failures_total.inc(reason="store")
            return

        await self._evict_family(key)
        if not isinstance(payload, list):
            _logger.error("unable to persist %s even after clearing space", key)
            return
        payload = self._truncate(payload, self._config.quota_truncate_items)
        try:
            await self._store.set_item(key, self._encode(entry, payload))
        except Exception as exc:
            _logger.error("unable to persist %s even after clearing space: %s", key, exc)
            task_cache_persist_failures_total.inc(reason="quota_retry")

    async def _evict_family(self, key: str) -> None:
        assert self._store is not None
        family = family_of(key)
        try:
            for other in await self._store.keys():
                if other != key and family_of(other) == family:
                    await self._store.remove_item(other)
        except Exception as exc:
            _logger.error("failed to evict %s snapshots: %s", family, exc)

    async def _remove_persisted(self, match: t.Callable[[str], bool]) -> t.List[str]:
        if self._store is None:
            return []
        removed: t.List[str] = []
        try:
            for key in await self._store.keys():
                if match(key):
                    await self._store.remove_item(key)
                    removed.append(key)
        except Exception as exc:
            _logger.error("failed to remove persisted snapshots: %s", exc)
        return removed

    async def invalidate(self, key: str) -> None:
        self._generation += 1
        self._memory.delete(key)
        await self._remove_persisted(lambda other: other == key)
        task_cache_invalidations_total.inc(scope="key")

    async def invalidate_matching(self, pattern: KeyMatcher) -> t.List[str]:
        self._generation += 1
        match = _matcher(pattern)
        removed = set(self._memory.delete_matching(match))
        removed.update(await self._remove_persisted(match))
        task_cache_invalidations_total.inc(scope="match")
        _logger.debug("invalidated %d cache keys", len(removed))
        return sorted(removed)

    async def invalidate_family(self, family: str) -> t.List[str]:
        return await self.invalidate_matching(lambda key: family_of(key) == family)

    async def invalidate_all(self) -> None:
        self._generation += 1
        self._memory.clear()
        if self._store is not None:
            try:
                await self._store.clear()
            except Exception as exc:
                _logger.error("failed to clear persistent store: %s", exc)
        task_cache_invalidations_total.inc(scope="all")
        _logger.info("cleared all cached state")
