"""Shared fixtures and fakes for unit tests."""

from __future__ import annotations

import typing as t

import pytest

from task_cache.cache.dual_tier import DualTierCache
from task_cache.cache.memory import MemoryTier
from task_cache.core.errors import ApiError
from task_cache.core.fetcher import CachedFetcher
from task_cache.monitoring import metrics
from task_cache.storage.base import InMemoryStore
from task_cache.utils.config import CacheConfig, RetryConfig


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CallCounter:
    """Async fetch function that replays a script of results and errors."""

    def __init__(self, *outcomes: t.Any) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self) -> t.Any:
        self.calls += 1
        outcome = self.outcomes[min(self.calls, len(self.outcomes)) - 1]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset_all()
    yield
    metrics.reset_all()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory(clock):
    return MemoryTier(clock=clock)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def cache_config():
    return CacheConfig()


@pytest.fixture
def cache(memory, store, cache_config):
    return DualTierCache(memory, store, cache_config)


@pytest.fixture
def retry_config():
    # zero delay keeps retry tests fast; backoff math is covered in test_resilience
    return RetryConfig(max_attempts=3, base_delay_ms=0)


@pytest.fixture
def fetcher(cache, retry_config):
    return CachedFetcher(cache, retry_config)


@pytest.fixture
def server_error():
    return ApiError(500, "boom")


@pytest.fixture
def sample_lists():
    return [{"id": 1, "title": "Opening"}]


def dated_items(count: int, pad: int = 50) -> t.List[t.Dict[str, str]]:
    """Instances dated 2024-01-01.. in ascending order."""
    return [{"date": f"2024-01-{day:02d}", "pad": "x" * pad} for day in range(1, count + 1)]


@pytest.fixture
def make_dated_items():
    return dated_items


@pytest.fixture
def make_counter():
    return CallCounter
