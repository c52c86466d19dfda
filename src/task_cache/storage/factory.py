from __future__ import annotations

from task_cache.core.errors import ConfigError
from task_cache.utils.config import StorageConfig

from .base import InMemoryStore, PersistentStore
from .file_store import FileStore
from .redis_adapter import RedisStore


def build_store(config: StorageConfig) -> PersistentStore:
    if config.type == "memory":
        return InMemoryStore(quota_bytes=config.quota_bytes)
    if config.type == "file":
        if not config.path:
            raise ConfigError("file storage requires a path")
        return FileStore(config.path, quota_bytes=config.quota_bytes)
    if config.type == "redis":
        return RedisStore(
            config.url or "redis://localhost:6379/0",
            prefix=config.prefix,
            quota_bytes=config.quota_bytes,
        )
    raise ConfigError(f"unknown storage type {config.type!r}")
