"""Normalization of task API payloads.

The API is not consistent: lists sometimes carry `name` instead of `title`,
categories and statuses can be missing or invalid, and reference fields come
back either as bare ids or as populated documents. These functions repair a
raw payload before it is turned into models.
"""

from __future__ import annotations

import datetime as dt
import logging
import typing as t

from task_cache.core.models import (
    Area,
    Embedded,
    Reference,
    TaskCategory,
    TaskInstance,
    TaskList,
    TaskStatus,
    UserRef,
    normalize_ref,
)

_logger = logging.getLogger(__name__)

JSON = t.Dict[str, t.Any]

VALID_CATEGORIES = {c.value for c in TaskCategory}
VALID_STATUSES = {s.value for s in TaskStatus}
VALID_AREAS = {a.value for a in Area}

UNKNOWN_LIST_TITLE = "Unknown List"
UNKNOWN_USER_NAME = "Unknown User"
UNTITLED_TASK = "Untitled Task"


def _normalize_task(task: JSON, category: t.Optional[str] = None) -> JSON:
    task = dict(task)
    if category and not task.get("category"):
        task["category"] = category
    if task.get("category") not in VALID_CATEGORIES:
        task["category"] = category if category in VALID_CATEGORIES else None
    if task.get("status") not in VALID_STATUSES:
        task["status"] = TaskStatus.PENDING.value
    if not task.get("title"):
        task["title"] = UNTITLED_TASK
    for field_name in ("completedBy", "assignedTo"):
        user = UserRef.from_value(task.get(field_name), default_name=UNKNOWN_USER_NAME)
        task[field_name] = user.to_dict() if user else None
    return task


def normalize_task_list(data: JSON) -> TaskList:
    data = dict(data)
    category = data.get("category")
    if category not in VALID_CATEGORIES:
        _logger.warning("invalid category %r in list %s, defaulting to 'other'", category, data.get("_id"))
        category = TaskCategory.OTHER.value
    data["category"] = category
    if data.get("area") not in VALID_AREAS:
        data["area"] = None
    if not data.get("title") and data.get("name"):
        data["title"] = data["name"]
    data["tasks"] = [_normalize_task(task, category) for task in data.get("tasks") or []]
    return TaskList.from_dict(data)


def placeholder_list(list_id: str, now: t.Optional[dt.datetime] = None) -> JSON:
    stamp = (now or dt.datetime.now(dt.timezone.utc)).isoformat()
    return {
        "_id": list_id,
        "title": UNKNOWN_LIST_TITLE,
        "category": TaskCategory.OTHER.value,
        "tasks": [],
        "createdAt": stamp,
        "updatedAt": stamp,
    }


def normalize_instance(data: JSON, *, embed_task_list: bool = False) -> TaskInstance:
    """Repair one task instance.

    With `embed_task_list`, a bare task list id is replaced by a placeholder
    document so consumers can always read a title and category.
    """
    data = dict(data)
    ref = normalize_ref(data.get("taskList"))
    if isinstance(ref, Reference) and embed_task_list:
        data["taskList"] = placeholder_list(ref.id)
    elif isinstance(ref, Embedded):
        task_list = dict(ref.data)
        if not task_list.get("category"):
            task_list["category"] = TaskCategory.OTHER.value
        data["taskList"] = task_list
    data["tasks"] = [_normalize_task(task) for task in data.get("tasks") or []]
    return TaskInstance.from_dict(data)


def normalize_instances(items: t.Optional[t.Iterable[JSON]], *, embed_task_list: bool = False) -> t.List[TaskInstance]:
    return [normalize_instance(item, embed_task_list=embed_task_list) for item in items or []]


def normalize_task_lists(items: t.Optional[t.Iterable[JSON]]) -> t.List[TaskList]:
    return [normalize_task_list(item) for item in items or []]
