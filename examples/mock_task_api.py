from __future__ import annotations

import random
import uuid
from datetime import datetime, timezone

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

# In-memory stand-in for the task API. Set FAIL_RATE via /_chaos to make
# reads fail with 503 and watch the client retry and fall back to cache.

LISTS: dict[str, dict] = {
    "list-open": {
        "_id": "list-open",
        "title": "Opening",
        "category": "opening",
        "area": "foh",
        "tasks": [{"_id": "t1", "title": "Unlock doors"}, {"_id": "t2", "title": "Start fryers"}],
    },
}
INSTANCES: dict[str, dict] = {}
STATE = {"fail_rate": 0.0}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _authorized(request: Request) -> bool:
    return request.headers.get("authorization", "").startswith("Bearer ")


def _chaos() -> JSONResponse | None:
    if random.random() < STATE["fail_rate"]:
        return JSONResponse({"message": "service unavailable"}, status_code=503)
    return None


async def lists(request: Request):
    if not _authorized(request):
        return JSONResponse({"message": "unauthorized"}, status_code=401)
    if request.method == "POST":
        body = await request.json()
        list_id = str(uuid.uuid4())
        LISTS[list_id] = {**body, "_id": list_id, "createdAt": _now(), "updatedAt": _now()}
        return JSONResponse(LISTS[list_id], status_code=201)
    failure = _chaos()
    if failure is not None:
        return failure
    area = request.query_params.get("area")
    return JSONResponse([tl for tl in LISTS.values() if area is None or tl.get("area") == area])


async def instances(request: Request):
    if not _authorized(request):
        return JSONResponse({"message": "unauthorized"}, status_code=401)
    if request.method == "POST":
        body = await request.json()
        task_list = LISTS.get(body.get("taskListId"))
        if task_list is None:
            return JSONResponse({"message": "Task list not found"}, status_code=404)
        instance_id = str(uuid.uuid4())
        assigned = body.get("assignedTasks") or {}
        INSTANCES[instance_id] = {
            "_id": instance_id,
            "taskList": task_list,
            "date": body["date"],
            "tasks": [{**task, "status": assigned.get(task["_id"], "pending")} for task in task_list["tasks"]],
        }
        return JSONResponse(INSTANCES[instance_id], status_code=201)
    failure = _chaos()
    if failure is not None:
        return failure
    return JSONResponse(list(INSTANCES.values()))


async def update_task(request: Request):
    instance = INSTANCES.get(request.path_params["instance_id"])
    if instance is None:
        return JSONResponse({"message": "Task instance not found"}, status_code=404)
    body = await request.json()
    for task in instance["tasks"]:
        if task["_id"] == request.path_params["task_id"]:
            task.update({k: v for k, v in body.items() if v is not None})
    return JSONResponse(instance)


async def chaos(request: Request):
    STATE["fail_rate"] = float((await request.json()).get("fail_rate", 0.0))
    return JSONResponse(STATE)


app = Starlette(
    routes=[
        Route("/api/tasks/lists", lists, methods=["GET", "POST"]),
        Route("/api/tasks/instances", instances, methods=["GET", "POST"]),
        Route("/api/tasks/instances/{instance_id}/tasks/{task_id}", update_task, methods=["PATCH"]),
        Route("/_chaos", chaos, methods=["POST"]),
    ]
)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=5000)
