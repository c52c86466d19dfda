"""task_cache

An async client for the restaurant task-tracking API with a client-side
resilience layer: exponential-backoff retries, a dual-tier (memory plus
persistent) cache with TTLs, stale-on-failure reads, and cache invalidation
after writes.
"""

from .cache import DualTierCache, MemoryTier, truncate_recent
from .client import ApiClient
from .core import (
    ApiError,
    CacheEntry,
    CachedFetcher,
    Embedded,
    NetworkError,
    NotAuthenticatedError,
    OperationCancelled,
    QuotaExceededError,
    Reference,
    TaskCacheError,
    TaskInstance,
    TaskList,
    TaskMetrics,
    TaskStatus,
    make_key,
    normalize_ref,
)
from .services import TaskService
from .storage import FileStore, InMemoryStore, PersistentStore, RedisStore, build_store
from .utils import CancelToken, ClientConfig, with_retries

__all__ = [
    "TaskService",
    "CachedFetcher",
    "DualTierCache",
    "MemoryTier",
    "truncate_recent",
    "ApiClient",
    "PersistentStore",
    "InMemoryStore",
    "FileStore",
    "RedisStore",
    "build_store",
    "with_retries",
    "CancelToken",
    "ClientConfig",
    "make_key",
    "CacheEntry",
    "Reference",
    "Embedded",
    "normalize_ref",
    "TaskList",
    "TaskInstance",
    "TaskMetrics",
    "TaskStatus",
    "TaskCacheError",
    "ApiError",
    "NotAuthenticatedError",
    "NetworkError",
    "OperationCancelled",
    "QuotaExceededError",
]

__version__ = "0.1.0"
