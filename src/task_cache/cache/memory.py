from __future__ import annotations

import time
import typing as t
from collections import OrderedDict

from task_cache.core.models import CacheEntry


class MemoryTier:
    """In-process map of cache key to CacheEntry.

    Entries are never dropped by age: an expired entry is still served as a
    fallback when the network fails. `max_size` is unbounded by default;
    when set, the least recently used entry is evicted.
    """

    def __init__(self, max_size: t.Optional[int] = None, clock: t.Callable[[], float] = time.time) -> None:
        self._store: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._max_size = max_size
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    def get(self, key: str) -> t.Optional[CacheEntry]:
        entry = self._store.get(key)
        if entry is not None:
            # mark as recently used
            self._store.move_to_end(key)
        return entry

    def get_fresh(self, key: str, ttl_seconds: float) -> t.Optional[CacheEntry]:
        entry = self.get(key)
        if entry is None or not entry.is_fresh(ttl_seconds, self.now()):
            return None
        return entry

    def set(self, key: str, data: t.Any) -> CacheEntry:
        entry = CacheEntry(data=data, timestamp=self.now())
        self._store[key] = entry
        self._store.move_to_end(key)
        if self._max_size is not None and len(self._store) > self._max_size:
            # evict LRU
            self._store.popitem(last=False)
        return entry

    def delete(self, key: str) -> bool:
        return self._store.pop(key, None) is not None

    def delete_matching(self, predicate: t.Callable[[str], bool]) -> t.List[str]:
        doomed = [key for key in self._store if predicate(key)]
        for key in doomed:
            del self._store[key]
        return doomed

    def keys(self) -> t.List[str]:
        return list(self._store)

    def clear(self) -> None:
        self._store.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._store

    def __len__(self) -> int:
        return len(self._store)
