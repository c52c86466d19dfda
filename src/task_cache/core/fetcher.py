from __future__ import annotations

import asyncio
import logging
import time
import typing as t
from dataclasses import dataclass

from task_cache.monitoring.metrics import task_cache_fetch_latency_seconds, task_cache_requests_total
from task_cache.utils.config import RetryConfig
from task_cache.utils.resilience import CancelToken, with_retries

from .errors import NotAuthenticatedError, OperationCancelled

if t.TYPE_CHECKING:
    from task_cache.cache.dual_tier import DualTierCache, KeyMatcher

T = t.TypeVar("T")

_logger = logging.getLogger(__name__)


@dataclass
class _Flight:
    """One shared fetch for a key, started under a given cache generation."""

    task: "asyncio.Task[t.Any]"
    generation: int
    waiters: int = 0


class CachedFetcher:
    """Serves reads from a DualTierCache and keeps it coherent across writes.

    A read returns fresh memory data when it can, otherwise fetches with
    retries, and degrades to stale or persisted data when the fetch fails.
    Concurrent reads of one key share a single in-flight fetch as long as no
    invalidation happened since it started. Each caller's CancelToken only
    abandons that caller's wait; the shared fetch is cancelled once nobody
    is waiting for it.
    """

    def __init__(
        self,
        cache: DualTierCache,
        retry: t.Optional[RetryConfig] = None,
        on_unauthenticated: t.Optional[t.Callable[[], t.Awaitable[None]]] = None,
    ) -> None:
        self._cache = cache
        self._retry = retry or RetryConfig()
        self._on_unauthenticated = on_unauthenticated
        self._inflight: t.Dict[str, _Flight] = {}

    @property
    def cache(self) -> DualTierCache:
        return self._cache

    def inflight_keys(self) -> t.List[str]:
        return list(self._inflight)

    def _attempts(self, attempts: t.Optional[int]) -> int:
        return self._retry.max_attempts if attempts is None else attempts

    def _base_delay(self, base_delay_ms: t.Optional[float]) -> float:
        return self._retry.base_delay_ms if base_delay_ms is None else base_delay_ms

    async def handle_unauthenticated(self) -> None:
        await self._cache.invalidate_all()
        if self._on_unauthenticated is not None:
            await self._on_unauthenticated()

    async def fetch_with_cache(
        self,
        key: str,
        ttl_seconds: float,
        fetch_fn: t.Callable[[], t.Awaitable[T]],
        *,
        attempts: t.Optional[int] = None,
        base_delay_ms: t.Optional[float] = None,
        cancel_token: t.Optional[CancelToken] = None,
        decode: t.Optional[t.Callable[[t.Any], T]] = None,
    ) -> T:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        entry = self._cache.get_fresh(key, ttl_seconds)
        if entry is not None:
            _logger.debug("cache hit %s", key)
            task_cache_requests_total.inc(outcome="hit")
            return entry.data

        generation = self._cache.generation
        flight = self._inflight.get(key)
        if flight is None or flight.generation != generation:
            # a fetch started before an invalidation may carry pre-write data
            _logger.debug("cache miss %s", key)
            task_cache_requests_total.inc(outcome="miss")
            task = asyncio.ensure_future(
                self._load(key, fetch_fn, generation, self._attempts(attempts), self._base_delay(base_delay_ms), decode)
            )
            flight = _Flight(task, generation)
            self._inflight[key] = flight
            task.add_done_callback(lambda done, key=key, flight=flight: self._forget(key, flight))
        else:
            _logger.debug("joining in-flight fetch %s", key)
        return await self._wait(key, flight, cancel_token)

    async def _wait(self, key: str, flight: _Flight, cancel_token: t.Optional[CancelToken]) -> t.Any:
        flight.waiters += 1
        try:
            if cancel_token is None:
                return await asyncio.shield(flight.task)
            watcher = asyncio.ensure_future(cancel_token.wait())
            try:
                await asyncio.wait({flight.task, watcher}, return_when=asyncio.FIRST_COMPLETED)
            finally:
                watcher.cancel()
            if flight.task.done():
                return flight.task.result()
            _logger.debug("caller abandoned fetch %s: %s", key, cancel_token.reason)
            raise OperationCancelled(cancel_token.reason or "cancelled")
        finally:
            flight.waiters -= 1
            if flight.waiters == 0 and not flight.task.done():
                _logger.debug("no callers left for %s, cancelling fetch", key)
                flight.task.cancel()

    def _forget(self, key: str, flight: _Flight) -> None:
        if self._inflight.get(key) is flight:
            del self._inflight[key]

    async def _load(
        self,
        key: str,
        fetch_fn: t.Callable[[], t.Awaitable[T]],
        generation: int,
        attempts: int,
        base_delay_ms: float,
        decode: t.Optional[t.Callable[[t.Any], T]],
    ) -> T:
        started = time.perf_counter()
        try:
            data = await with_retries(fetch_fn, attempts, base_delay_ms)
        except NotAuthenticatedError:
            task_cache_requests_total.inc(outcome="error")
            await self.handle_unauthenticated()
            raise
        except Exception as exc:
            stale = await self._degrade(key, decode)
            if stale is None:
                task_cache_requests_total.inc(outcome="error")
                raise
            _logger.warning("serving stale %s after fetch failure: %s", key, exc)
            task_cache_requests_total.inc(outcome="stale")
            return stale[0]
        finally:
            task_cache_fetch_latency_seconds.observe(time.perf_counter() - started)
        if self._cache.generation == generation:
            await self._cache.set(key, data)
        else:
            _logger.debug("not caching %s, invalidated while fetching", key)
        return data

    async def _degrade(self, key: str, decode: t.Optional[t.Callable[[t.Any], T]]) -> t.Optional[t.Tuple[t.Any]]:
        entry = self._cache.get(key)
        if entry is not None:
            return (entry.data,)
        entry = await self._cache.load_persisted(key)
        if entry is None:
            return None
        return (decode(entry.data) if decode is not None else entry.data,)

    async def call(
        self,
        operation: t.Callable[[], t.Awaitable[T]],
        *,
        attempts: t.Optional[int] = None,
        base_delay_ms: t.Optional[float] = None,
        cancel_token: t.Optional[CancelToken] = None,
    ) -> T:
        """Uncached read with retries and authentication handling."""
        return await self.mutate(
            operation, attempts=attempts, base_delay_ms=base_delay_ms, cancel_token=cancel_token
        )

    async def mutate(
        self,
        operation: t.Callable[[], t.Awaitable[T]],
        *,
        invalidate_families: t.Iterable[str] = (),
        invalidate_matching: t.Iterable[KeyMatcher] = (),
        attempts: t.Optional[int] = None,
        base_delay_ms: t.Optional[float] = None,
        cancel_token: t.Optional[CancelToken] = None,
    ) -> T:
        """Run a write and, only if it succeeds, drop the cache keys it affects."""
        try:
            result = await with_retries(
                operation,
                self._attempts(attempts),
                self._base_delay(base_delay_ms),
                cancel_token=cancel_token,
            )
        except NotAuthenticatedError:
            await self.handle_unauthenticated()
            raise
        for family in invalidate_families:
            await self._cache.invalidate_family(family)
        for pattern in invalidate_matching:
            await self._cache.invalidate_matching(pattern)
        return result

    async def clear(self) -> None:
        await self._cache.invalidate_all()
