from __future__ import annotations

import dataclasses
import os
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from task_cache.core.errors import ConfigError

STORAGE_TYPES = ("memory", "file", "redis")


def _default_ttls() -> Dict[str, float]:
    return {
        "task_lists": 5 * 60,
        "task_instances": 2 * 60,
        "task_history": 2 * 60,
        "task_metrics": 2 * 60,
    }


@dataclass
class ApiConfig:
    base_url: str = "http://localhost:5000/api"
    timeout_seconds: float = 15.0
    history_timeout_seconds: float = 30.0
    token: Optional[str] = None


@dataclass
class RetryConfig:
    max_attempts: int = 3
    base_delay_ms: int = 1000
    history_attempts: int = 2


@dataclass
class CacheConfig:
    ttl_seconds: Dict[str, float] = dataclasses.field(default_factory=_default_ttls)
    default_ttl_seconds: float = 60.0
    persist_enabled: bool = True
    persist_max_bytes: int = 4 * 1024 * 1024
    truncate_items: int = 20
    quota_truncate_items: int = 10
    recency_field: str = "date"

    def ttl_for(self, family: str) -> float:
        return self.ttl_seconds.get(family, self.default_ttl_seconds)


@dataclass
class StorageConfig:
    type: str = "memory"  # memory | file | redis
    path: Optional[str] = None
    url: Optional[str] = None
    prefix: str = "task-cache"
    quota_bytes: int = 5 * 1024 * 1024


@dataclass
class ClientConfig:
    api: ApiConfig = dataclasses.field(default_factory=ApiConfig)
    retry: RetryConfig = dataclasses.field(default_factory=RetryConfig)
    cache: CacheConfig = dataclasses.field(default_factory=CacheConfig)
    storage: StorageConfig = dataclasses.field(default_factory=StorageConfig)

    def validate(self) -> "ClientConfig":
        if self.retry.max_attempts < 1 or self.retry.history_attempts < 1:
            raise ConfigError("retry attempts must be >= 1")
        if self.retry.base_delay_ms < 0:
            raise ConfigError("retry.base_delay_ms must be >= 0")
        if self.storage.type not in STORAGE_TYPES:
            raise ConfigError(f"unknown storage type {self.storage.type!r}; expected one of {STORAGE_TYPES}")
        if self.storage.type == "file" and not self.storage.path:
            raise ConfigError("file storage requires storage.path")
        if self.cache.quota_truncate_items > self.cache.truncate_items:
            raise ConfigError("cache.quota_truncate_items must not exceed cache.truncate_items")
        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClientConfig":
        def build(dc_cls, key):
            values = dict(data.get(key, {}))
            if dc_cls is CacheConfig and "ttl_seconds" in values:
                values["ttl_seconds"] = {**_default_ttls(), **values["ttl_seconds"]}
            try:
                return dc_cls(**values)
            except TypeError as exc:
                raise ConfigError(f"invalid {key} config: {exc}") from exc

        return cls(
            api=build(ApiConfig, "api"),
            retry=build(RetryConfig, "retry"),
            cache=build(CacheConfig, "cache"),
            storage=build(StorageConfig, "storage"),
        ).validate()

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ClientConfig":
        env = os.environ if environ is None else environ
        data: Dict[str, Dict[str, Any]] = {"api": {}, "retry": {}, "storage": {}}
        if "TASK_CACHE_API_URL" in env:
            data["api"]["base_url"] = env["TASK_CACHE_API_URL"]
        if "TASK_CACHE_TOKEN" in env:
            data["api"]["token"] = env["TASK_CACHE_TOKEN"]
        if "TASK_CACHE_STORAGE" in env:
            data["storage"]["type"] = env["TASK_CACHE_STORAGE"]
        if "TASK_CACHE_STORAGE_PATH" in env:
            data["storage"]["path"] = env["TASK_CACHE_STORAGE_PATH"]
        if "TASK_CACHE_REDIS_URL" in env:
            data["storage"]["url"] = env["TASK_CACHE_REDIS_URL"]
        if "TASK_CACHE_MAX_ATTEMPTS" in env:
            try:
                data["retry"]["max_attempts"] = int(env["TASK_CACHE_MAX_ATTEMPTS"])
            except ValueError as exc:
                raise ConfigError("TASK_CACHE_MAX_ATTEMPTS must be an integer") from exc
        return cls.from_dict(data)
