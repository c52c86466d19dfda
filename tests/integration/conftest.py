"""A fake task API served in-process through httpx's ASGI transport."""

from __future__ import annotations

import datetime as dt
import itertools
import typing as t
from collections import Counter, defaultdict

import httpx
import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from task_cache.cache.dual_tier import DualTierCache
from task_cache.cache.memory import MemoryTier
from task_cache.client.http import ApiClient
from task_cache.core.fetcher import CachedFetcher
from task_cache.monitoring import metrics
from task_cache.services.task_service import TaskService
from task_cache.storage.base import InMemoryStore
from task_cache.utils.config import ApiConfig, ClientConfig, RetryConfig

TODAY = dt.datetime(2024, 3, 1, 10, 0, tzinfo=dt.timezone.utc)


class FakeApi:
    """State behind the fake API: documents, hit counts and scripted failures."""

    def __init__(self) -> None:
        self.lists: t.Dict[str, t.Dict[str, t.Any]] = {
            "l1": {
                "_id": "l1",
                "title": "Opening",
                "category": "opening",
                "area": "foh",
                "tasks": [{"_id": "t1", "title": "Unlock doors"}, {"_id": "t2", "title": "Start fryers"}],
            },
            "l2": {"_id": "l2", "name": "Closing", "category": "closing", "area": "boh", "tasks": []},
        }
        self.instances: t.Dict[str, t.Dict[str, t.Any]] = {}
        self.hits: t.Counter[str] = Counter()
        self.failures: t.Dict[str, t.List[int]] = defaultdict(list)
        self.history_payload: t.Any = None
        self.update_returns_body = True
        self._ids = itertools.count(1)

    def fail(self, route: str, status: int, times: int = 1) -> None:
        self.failures[route].extend([status] * times)

    def add_instance(self, list_id: str, date: str, **extra: t.Any) -> t.Dict[str, t.Any]:
        instance_id = f"i{next(self._ids)}"
        task_list = self.lists[list_id]
        self.instances[instance_id] = {
            "_id": instance_id,
            "taskList": list_id,
            "date": date,
            "tasks": [dict(task, status="pending") for task in task_list["tasks"]],
            **extra,
        }
        return self.instances[instance_id]

    def check(self, route: str) -> t.Optional[Response]:
        self.hits[route] += 1
        if self.failures[route]:
            status = self.failures[route].pop(0)
            return JSONResponse({"message": f"scripted {status}"}, status_code=status)
        return None

    def app(self) -> Starlette:
        async def lists(request: Request) -> Response:
            route = f"{request.method} lists"
            failure = self.check(route)
            if failure is not None:
                return failure
            if request.method == "POST":
                body = await request.json()
                list_id = f"l{len(self.lists) + 1}"
                self.lists[list_id] = {**body, "_id": list_id}
                return JSONResponse(self.lists[list_id], status_code=201)
            area = request.query_params.get("area")
            return JSONResponse([tl for tl in self.lists.values() if area is None or tl.get("area") == area])

        async def all_lists(request: Request) -> Response:
            failure = self.check("GET all")
            return failure or JSONResponse({"tasks": list(self.lists.values())})

        async def one_list(request: Request) -> Response:
            failure = self.check("GET one")
            if failure is not None:
                return failure
            task_list = self.lists.get(request.path_params["list_id"])
            if task_list is None:
                return JSONResponse({"message": "Task list not found"}, status_code=404)
            return JSONResponse({"task": task_list})

        async def instances(request: Request) -> Response:
            route = f"{request.method} instances"
            failure = self.check(route)
            if failure is not None:
                return failure
            if request.method == "POST":
                body = await request.json()
                if body["taskListId"] not in self.lists:
                    return JSONResponse({"message": "Task list not found"}, status_code=404)
                instance = self.add_instance(body["taskListId"], body["date"][:10])
                for task in instance["tasks"]:
                    task["status"] = body["assignedTasks"].get(task["_id"], "pending")
                return JSONResponse(instance, status_code=201)
            start = request.query_params.get("startDate")
            return JSONResponse([i for i in self.instances.values() if start is None or i["date"] >= start[:10]])

        async def delete_instance(request: Request) -> Response:
            failure = self.check("DELETE instances")
            if failure is not None:
                return failure
            self.instances.pop(request.path_params["instance_id"], None)
            return Response(status_code=204)

        async def update_task(request: Request) -> Response:
            failure = self.check("PATCH task")
            if failure is not None:
                return failure
            instance = self.instances.get(request.path_params["instance_id"])
            if instance is None:
                return JSONResponse({"message": "Task instance not found"}, status_code=404)
            body = await request.json()
            for task in instance["tasks"]:
                if task["_id"] == request.path_params["task_id"]:
                    task.update(status=body["status"], completedAt=body.get("completedAt"))
            if not self.update_returns_body:
                return JSONResponse({})
            return JSONResponse(instance)

        async def history(request: Request) -> Response:
            failure = self.check("GET history")
            if failure is not None:
                return failure
            if self.history_payload is not None:
                return JSONResponse(self.history_payload)
            return JSONResponse(list(self.instances.values()))

        async def task_metrics(request: Request) -> Response:
            failure = self.check("GET metrics")
            if failure is not None:
                return failure
            completed = [i for i in self.instances.values() if all(task["status"] == "completed" for task in i["tasks"])]
            return JSONResponse(
                {
                    "totalInstances": len(self.instances),
                    "completedInstances": len(completed),
                    "averageCompletionRate": 50.0,
                    "tasksByUser": {},
                }
            )

        return Starlette(
            routes=[
                Route("/api/tasks", all_lists, methods=["GET"]),
                Route("/api/tasks/lists", lists, methods=["GET", "POST"]),
                Route("/api/tasks/instances", instances, methods=["GET", "POST"]),
                Route("/api/tasks/instances/{instance_id}", delete_instance, methods=["DELETE"]),
                Route("/api/tasks/instances/{instance_id}/tasks/{task_id}", update_task, methods=["PATCH"]),
                Route("/api/tasks/history", history, methods=["GET"]),
                Route("/api/tasks/metrics", task_metrics, methods=["GET"]),
                Route("/api/tasks/{list_id}", one_list, methods=["GET"]),
            ]
        )


class Clock:
    """Wall clock for the memory tier, advanced by hand."""

    def __init__(self) -> None:
        self.now = TODAY.timestamp()

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset_all()
    yield
    metrics.reset_all()


@pytest.fixture
def fake_api():
    return FakeApi()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def make_service(fake_api, clock, store):
    """Build a TaskService talking to the fake API with zero retry delay."""

    def build(*, token: t.Optional[str] = "token", on_unauthenticated=None, memory_store=None) -> TaskService:
        config = ClientConfig(
            api=ApiConfig(base_url="http://testserver/api", token=token),
            retry=RetryConfig(max_attempts=3, base_delay_ms=0, history_attempts=2),
        )
        cache = DualTierCache(MemoryTier(clock=clock), memory_store or store, config.cache)
        fetcher = CachedFetcher(cache, config.retry, on_unauthenticated=on_unauthenticated)
        api = ApiClient(config.api, transport=httpx.ASGITransport(app=fake_api.app()))
        return TaskService(api, fetcher, config, clock=lambda: TODAY)

    return build
