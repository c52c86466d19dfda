from __future__ import annotations

import logging
import typing as t

from redis.asyncio import Redis

from task_cache.core.errors import QuotaExceededError

from .base import PersistentStore, entry_size

_logger = logging.getLogger(__name__)


class RedisStore(PersistentStore):
    """Redis-backed persistent tier.

    - Snapshots are stored as strings at key: `{prefix}:cache:{key}`
    - The quota covers every key under `{prefix}:cache:*`
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        *,
        prefix: str = "task-cache",
        quota_bytes: int = 5 * 1024 * 1024,
        client: t.Optional[t.Any] = None,
    ) -> None:
        self._prefix = prefix.rstrip(":")
        self._quota = quota_bytes
        self._redis = client if client is not None else Redis.from_url(url, decode_responses=True)

    def _key(self, key: str) -> str:
        return f"{self._prefix}:cache:{key}"

    def _strip(self, redis_key: t.Union[str, bytes]) -> str:
        if isinstance(redis_key, (bytes, bytearray)):
            redis_key = redis_key.decode()
        return redis_key[len(self._key("")) :]

    async def _used_bytes(self, exclude: str) -> int:
        total = 0
        async for redis_key in self._redis.scan_iter(match=self._key("*")):
            key = self._strip(redis_key)
            if key == exclude:
                continue
            total += len(key) + int(await self._redis.strlen(redis_key))
        return total

    async def get_item(self, key: str) -> t.Optional[str]:
        raw = await self._redis.get(self._key(key))
        if isinstance(raw, (bytes, bytearray)):
            return raw.decode()
        return raw

    async def set_item(self, key: str, value: str) -> None:
        needed = await self._used_bytes(exclude=key) + entry_size(key, value)
        if needed > self._quota:
            raise QuotaExceededError(key, needed, self._quota)
        await self._redis.set(self._key(key), value)

    async def remove_item(self, key: str) -> None:
        await self._redis.delete(self._key(key))

    async def keys(self) -> t.List[str]:
        return [self._strip(k) async for k in self._redis.scan_iter(match=self._key("*"))]

    async def is_healthy(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except Exception as exc:
            _logger.warning("redis health check failed: %s", exc)
            return False

    async def close(self) -> None:  # pragma: no cover - convenience
        await self._redis.close()
