"""Core module for task-cache models, keys, errors and the cache-aware fetcher."""

from .errors import (
    ApiError,
    ConfigError,
    NetworkError,
    NotAuthenticatedError,
    OperationCancelled,
    QuotaExceededError,
    RequestTimeout,
    TaskCacheError,
)
from .keys import date_key, family_of, make_key
from .models import (
    Area,
    CacheEntry,
    Embedded,
    Reference,
    Task,
    TaskCategory,
    TaskInstance,
    TaskList,
    TaskMetrics,
    TaskStatus,
    UserRef,
    normalize_ref,
)
from .fetcher import CachedFetcher

__all__ = [
    # Fetching
    "CachedFetcher",
    "make_key",
    "family_of",
    "date_key",
    # Errors
    "TaskCacheError",
    "ApiError",
    "NotAuthenticatedError",
    "NetworkError",
    "RequestTimeout",
    "QuotaExceededError",
    "OperationCancelled",
    "ConfigError",
    # Models
    "CacheEntry",
    "Reference",
    "Embedded",
    "normalize_ref",
    "UserRef",
    "Task",
    "TaskList",
    "TaskInstance",
    "TaskMetrics",
    "TaskStatus",
    "TaskCategory",
    "Area",
]
