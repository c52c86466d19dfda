from __future__ import annotations

import typing as t


class TaskCacheError(Exception):
    """Base class for all task-cache failures."""


class ApiError(TaskCacheError):
    """Non-2xx response from the task API."""

    def __init__(self, status: int, message: str = "", payload: t.Any = None) -> None:
        self.status = status
        self.message = message or f"HTTP {status}"
        self.payload = payload
        super().__init__(f"{status}: {self.message}")

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status < 500

    @property
    def is_retryable(self) -> bool:
        # 429 is a client status but only means "slow down"
        return not self.is_client_error or self.status == 429


class NotAuthenticatedError(ApiError):
    """The API rejected the bearer token; the caller must log in again."""

    def __init__(self, message: str = "re-authentication required", payload: t.Any = None) -> None:
        super().__init__(401, message, payload)


class NetworkError(TaskCacheError):
    pass


class RequestTimeout(NetworkError):
    pass


class QuotaExceededError(TaskCacheError):
    """A persistent store refused a write because it would exceed its quota."""

    def __init__(self, key: str, needed: int, quota: int) -> None:
        self.key = key
        self.needed = needed
        self.quota = quota
        super().__init__(f"quota exceeded writing {key!r}: {needed} > {quota} bytes")


class OperationCancelled(TaskCacheError):
    pass


class ConfigError(TaskCacheError):
    pass
