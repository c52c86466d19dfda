from __future__ import annotations

import datetime as dt
import logging
import typing as t

import httpx

from task_cache.cache.dual_tier import DualTierCache
from task_cache.cache.memory import MemoryTier
from task_cache.client.http import ApiClient, TokenProvider
from task_cache.core.errors import ApiError, NotAuthenticatedError, OperationCancelled
from task_cache.core.fetcher import CachedFetcher
from task_cache.core.keys import date_key, family_of, make_key
from task_cache.core.models import (
    Area,
    Embedded,
    TaskInstance,
    TaskList,
    TaskMetrics,
    TaskStatus,
    to_jsonable,
)
from task_cache.storage.base import PersistentStore
from task_cache.storage.factory import build_store
from task_cache.utils.config import ClientConfig
from task_cache.utils.resilience import CancelToken

from .normalize import normalize_instance, normalize_instances, normalize_task_list, normalize_task_lists

_logger = logging.getLogger(__name__)

LISTS = "task_lists"
INSTANCES = "task_instances"
HISTORY = "task_history"
METRICS = "task_metrics"
ALL_FAMILIES = (LISTS, INSTANCES, HISTORY, METRICS)

DateLike = t.Union[str, dt.date, dt.datetime]
TEMP_PREFIX = "temp-"


def _iso(value: t.Optional[DateLike]) -> t.Optional[str]:
    if value is None:
        return None
    if isinstance(value, (dt.date, dt.datetime)):
        return value.isoformat()
    return value


def _decode_lists(data: t.Any) -> t.List[TaskList]:
    return [TaskList.from_dict(item) for item in data]


def _decode_instances(data: t.Any) -> t.List[TaskInstance]:
    return [TaskInstance.from_dict(item) for item in data]


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class TaskService:
    """Task-tracking operations over the cached, retrying API client."""

    def __init__(
        self,
        api: ApiClient,
        fetcher: CachedFetcher,
        config: t.Optional[ClientConfig] = None,
        *,
        clock: t.Callable[[], dt.datetime] = _utcnow,
    ) -> None:
        self._api = api
        self._fetcher = fetcher
        self._config = config or ClientConfig()
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        *,
        token_provider: t.Optional[TokenProvider] = None,
        store: t.Optional[PersistentStore] = None,
        transport: t.Optional[httpx.AsyncBaseTransport] = None,
        on_unauthenticated: t.Optional[t.Callable[[], t.Awaitable[None]]] = None,
    ) -> "TaskService":
        store = store if store is not None else build_store(config.storage)
        cache = DualTierCache(MemoryTier(), store, config.cache)
        fetcher = CachedFetcher(cache, config.retry, on_unauthenticated=on_unauthenticated)
        api = ApiClient(config.api, token_provider=token_provider, transport=transport)
        return cls(api, fetcher, config)

    @property
    def fetcher(self) -> CachedFetcher:
        return self._fetcher

    def _ttl(self, family: str) -> float:
        return self._config.cache.ttl_for(family)

    def _today(self) -> t.Tuple[str, str]:
        today = self._clock().date()
        return today.isoformat(), (today + dt.timedelta(days=1)).isoformat()

    # Task lists

    async def get_lists(
        self, area: t.Optional[t.Union[str, Area]] = None, *, cancel_token: t.Optional[CancelToken] = None
    ) -> t.List[TaskList]:
        params = {"area": Area(area).value if area else None}

        async def fetch() -> t.List[TaskList]:
            return normalize_task_lists(await self._api.get("tasks/lists", params=params))

        return await self._fetcher.fetch_with_cache(
            make_key(LISTS, params), self._ttl(LISTS), fetch, cancel_token=cancel_token, decode=_decode_lists
        )

    async def create_list(self, task_list: t.Mapping[str, t.Any]) -> TaskList:
        body = to_jsonable(dict(task_list))
        result = await self._fetcher.mutate(
            lambda: self._api.post("tasks/lists", json=body), invalidate_families=(LISTS,)
        )
        return normalize_task_list(result)

    async def update_list(self, list_id: str, changes: t.Mapping[str, t.Any]) -> TaskList:
        body = to_jsonable(dict(changes))
        result = await self._fetcher.mutate(
            lambda: self._api.put(f"tasks/lists/{list_id}", json=body), invalidate_families=(LISTS,)
        )
        return normalize_task_list(result)

    async def delete_list(self, list_id: str) -> None:
        await self._fetcher.mutate(lambda: self._api.delete(f"tasks/lists/{list_id}"), invalidate_families=(LISTS,))

    async def get_all_task_lists(self) -> t.List[TaskList]:
        payload = await self._fetcher.call(lambda: self._api.get("tasks"))
        return normalize_task_lists((payload or {}).get("tasks"))

    async def get_task_list(self, list_id: str) -> TaskList:
        payload = await self._fetcher.call(lambda: self._api.get(f"tasks/{list_id}"))
        return normalize_task_list((payload or {}).get("task") or {})

    # Task instances

    async def get_instances(
        self,
        start_date: t.Optional[DateLike] = None,
        end_date: t.Optional[DateLike] = None,
        task_list_id: t.Optional[str] = None,
        area: t.Optional[t.Union[str, Area]] = None,
        *,
        cancel_token: t.Optional[CancelToken] = None,
    ) -> t.List[TaskInstance]:
        params = {
            "startDate": _iso(start_date),
            "endDate": _iso(end_date),
            "taskListId": task_list_id,
            "area": Area(area).value if area else None,
        }

        async def fetch() -> t.List[TaskInstance]:
            return normalize_instances(await self._api.get("tasks/instances", params=params))

        return await self._fetcher.fetch_with_cache(
            make_key(INSTANCES, params),
            self._ttl(INSTANCES),
            fetch,
            cancel_token=cancel_token,
            decode=_decode_instances,
        )

    async def create_instance(
        self,
        task_list_id: str,
        date: DateLike,
        assigned_tasks: t.Optional[t.Mapping[str, t.Union[str, TaskStatus]]] = None,
    ) -> TaskInstance:
        body = {
            "taskListId": task_list_id,
            "date": _iso(date),
            "assignedTasks": to_jsonable(dict(assigned_tasks or {})),
        }
        day = date_key(date)
        _logger.info("creating instance of list %s for %s", task_list_id, day)
        result = await self._fetcher.mutate(
            lambda: self._api.post("tasks/instances", json=body),
            invalidate_families=(INSTANCES,),
            invalidate_matching=(lambda key: family_of(key) == HISTORY and day in key,),
        )
        return normalize_instance(result)

    async def delete_instance(self, instance_id: str) -> None:
        # the instance date is unknown here, so every instance query is dropped
        await self._fetcher.mutate(
            lambda: self._api.delete(f"tasks/instances/{instance_id}"),
            invalidate_families=(INSTANCES, HISTORY),
        )

    async def update_task_status(
        self,
        instance_id: str,
        task_id: str,
        status: t.Union[str, TaskStatus],
        completed_at: t.Optional[DateLike] = None,
        completed_by: t.Optional[t.Mapping[str, t.Any]] = None,
        *,
        _recover: bool = True,
    ) -> TaskInstance:
        status = TaskStatus(status)
        if instance_id.startswith(TEMP_PREFIX):
            _logger.info("creating instance for temporary id %s", instance_id)
            today, _ = self._today()
            instance = await self.create_instance(
                instance_id[len(TEMP_PREFIX) :], today, {task_id: status.value}
            )
            return await self.update_task_status(
                instance.id, task_id, status, completed_at, completed_by, _recover=_recover
            )

        body = {
            "status": status.value,
            "completedAt": _iso(completed_at),
            "completedBy": dict(completed_by) if completed_by else None,
        }
        path = f"tasks/instances/{instance_id}/tasks/{task_id}"
        try:
            result = await self._fetcher.mutate(
                lambda: self._api.patch(path, json=body), invalidate_families=ALL_FAMILIES
            )
        except ApiError as exc:
            if exc.status != 404 or not _recover:
                raise
            _logger.warning("instance %s not found, it may be stale; recovering", instance_id)
            return await self._recover_stale_instance(instance_id, task_id, status, completed_at, completed_by)

        if isinstance(result, dict) and result.get("_id"):
            return normalize_instance(result)

        _logger.info("update of %s returned no instance, fetching latest", instance_id)
        start, end = self._today()
        for instance in await self.get_instances(start_date=start, end_date=end):
            if instance.id == instance_id:
                return instance
        raise ApiError(404, f"instance {instance_id} not found after update")

    async def _recover_stale_instance(
        self,
        instance_id: str,
        task_id: str,
        status: TaskStatus,
        completed_at: t.Optional[DateLike],
        completed_by: t.Optional[t.Mapping[str, t.Any]],
    ) -> TaskInstance:
        start, end = self._today()
        instances = await self.get_instances(start_date=start, end_date=end)
        for instance in instances:
            if instance.task_list_id == instance_id and instance.id != instance_id:
                return await self.update_task_status(
                    instance.id, task_id, status, completed_at, completed_by, _recover=False
                )

        task_list_id = instance_id
        if instances and isinstance(instances[0].task_list, Embedded):
            task_list_id = instances[0].task_list_id
        _logger.info("no matching instance for %s, creating one from list %s", instance_id, task_list_id)
        return await self.create_instance(task_list_id, start, {task_id: status.value})

    # Metrics and history

    async def get_metrics(
        self,
        start_date: DateLike,
        end_date: DateLike,
        department: t.Optional[str] = None,
        shift: t.Optional[str] = None,
    ) -> TaskMetrics:
        params = {
            "startDate": _iso(start_date),
            "endDate": _iso(end_date),
            "department": department,
            "shift": shift,
        }

        async def fetch() -> TaskMetrics:
            return TaskMetrics.from_dict(await self._api.get("tasks/metrics", params=params) or {})

        return await self._fetcher.fetch_with_cache(
            make_key(METRICS, params), self._ttl(METRICS), fetch, decode=TaskMetrics.from_dict
        )

    async def get_task_history(
        self,
        start_date: DateLike,
        end_date: DateLike,
        *,
        cancel_token: t.Optional[CancelToken] = None,
    ) -> t.List[TaskInstance]:
        """Instances completed in a date range.

        History never fails the caller: without network or cache it returns
        an empty list, except when authentication is required.
        """
        key = make_key(HISTORY, {"startDate": date_key(start_date), "endDate": date_key(end_date)})
        params = {"startDate": _iso(start_date), "endDate": _iso(end_date)}

        async def fetch() -> t.List[TaskInstance]:
            payload = await self._api.get(
                "tasks/history", params=params, timeout=self._config.api.history_timeout_seconds
            )
            if not isinstance(payload, list):
                _logger.warning("history returned empty or invalid data")
                return []
            return normalize_instances(payload, embed_task_list=True)

        try:
            return await self._fetcher.fetch_with_cache(
                key,
                self._ttl(HISTORY),
                fetch,
                attempts=self._config.retry.history_attempts,
                cancel_token=cancel_token,
                decode=_decode_instances,
            )
        except (NotAuthenticatedError, OperationCancelled):
            raise
        except Exception as exc:
            _logger.error("error fetching task history, returning empty: %s", exc)
            return []

    async def clear_cache(self) -> None:
        await self._fetcher.clear()

    async def close(self) -> None:
        await self._api.close()

    async def __aenter__(self) -> "TaskService":
        return self

    async def __aexit__(self, *exc_info: t.Any) -> None:
        await self.close()
