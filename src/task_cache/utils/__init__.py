"""Utility module for resilience patterns and configuration."""

from .config import ApiConfig, CacheConfig, ClientConfig, RetryConfig, StorageConfig
from .resilience import CancelToken, backoff_delays, is_retryable, with_retries

__all__ = [
    "CancelToken",
    "backoff_delays",
    "is_retryable",
    "with_retries",
    "ApiConfig",
    "CacheConfig",
    "ClientConfig",
    "RetryConfig",
    "StorageConfig",
]
