from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, TypeVar

from task_cache.core.errors import ApiError, OperationCancelled
from task_cache.monitoring.metrics import task_cache_retries_total

T = TypeVar("T")

_logger = logging.getLogger(__name__)


class CancelToken:
    """Cooperative cancellation flag threaded through retries and fetches."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled(self.reason or "cancelled")

    async def wait(self) -> None:
        await self._event.wait()


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, OperationCancelled):
        return False
    if isinstance(exc, ApiError):
        return exc.is_retryable
    return True


def backoff_delays(attempts: int, base_delay_ms: float) -> List[float]:
    """Delays in ms slept before attempts 2..attempts."""
    return [base_delay_ms * (2 ** (attempt - 2)) for attempt in range(2, attempts + 1)]


async def _sleep_or_cancel(
    delay_s: float,
    cancel_token: Optional[CancelToken],
    sleep: Callable[[float], Awaitable[None]],
) -> None:
    if cancel_token is None:
        await sleep(delay_s)
        return
    sleeper = asyncio.ensure_future(sleep(delay_s))
    waiter = asyncio.ensure_future(cancel_token.wait())
    try:
        await asyncio.wait({sleeper, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for fut in (sleeper, waiter):
            if not fut.done():
                fut.cancel()
    cancel_token.raise_if_cancelled()


async def with_retries(
    coro_factory: Callable[[], Awaitable[T]],
    attempts: int = 3,
    base_delay_ms: float = 1000,
    *,
    cancel_token: Optional[CancelToken] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    last_exc: Exception | None = None
    for attempt in range(1, attempts + 1):
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        if attempt > 1:
            delay_ms = base_delay_ms * (2 ** (attempt - 2))
            _logger.warning("retrying after %s (attempt %d/%d, delay %.0fms)", last_exc, attempt, attempts, delay_ms)
            task_cache_retries_total.inc()
            await _sleep_or_cancel(delay_ms / 1000.0, cancel_token, sleep)
        try:
            return await coro_factory()
        except Exception as exc:  # noqa: BLE001 - broad for retry wrapper
            last_exc = exc
            if not is_retryable(exc):
                break
    assert last_exc is not None
    raise last_exc
