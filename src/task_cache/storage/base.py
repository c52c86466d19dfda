from __future__ import annotations

import typing as t
from abc import ABC, abstractmethod

from task_cache.core.errors import QuotaExceededError


class PersistentStore(ABC):
    """Small string key-value store whose writes may fail on quota."""

    @abstractmethod
    async def get_item(self, key: str) -> t.Optional[str]:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    async def remove_item(self, key: str) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    async def keys(self) -> t.List[str]:  # pragma: no cover - interface
        raise NotImplementedError

    @abstractmethod
    async def is_healthy(self) -> bool:  # pragma: no cover - interface
        raise NotImplementedError

    async def clear(self) -> None:
        for key in await self.keys():
            await self.remove_item(key)


def entry_size(key: str, value: str) -> int:
    return len(key) + len(value)


class InMemoryStore(PersistentStore):
    """Session-storage analogue for dev/test.

    Usage is counted in characters of key plus value, like browser storage.
    """

    def __init__(self, quota_bytes: int = 5 * 1024 * 1024) -> None:
        self._items: t.Dict[str, str] = {}
        self._quota = quota_bytes

    @property
    def used_bytes(self) -> int:
        return sum(entry_size(k, v) for k, v in self._items.items())

    async def get_item(self, key: str) -> t.Optional[str]:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        current = self._items.get(key)
        used = self.used_bytes - (entry_size(key, current) if current is not None else 0)
        needed = used + entry_size(key, value)
        if needed > self._quota:
            raise QuotaExceededError(key, needed, self._quota)
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    async def keys(self) -> t.List[str]:
        return list(self._items)

    async def is_healthy(self) -> bool:
        return True
