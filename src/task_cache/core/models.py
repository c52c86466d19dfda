from __future__ import annotations

import dataclasses
import enum
import time
import typing as t
from dataclasses import dataclass, field

JSON = t.Dict[str, t.Any]


@dataclass(frozen=True)
class CacheEntry:
    data: t.Any
    timestamp: float = field(default_factory=lambda: time.time())

    def age(self, now: t.Optional[float] = None) -> float:
        return (time.time() if now is None else now) - self.timestamp

    def is_fresh(self, ttl_seconds: float, now: t.Optional[float] = None) -> bool:
        return self.age(now) < ttl_seconds

    def to_snapshot(self, data: t.Any = None) -> JSON:
        return {"data": self.data if data is None else data, "timestamp": self.timestamp}

    @classmethod
    def from_snapshot(cls, snapshot: JSON) -> "CacheEntry":
        return cls(data=snapshot["data"], timestamp=float(snapshot["timestamp"]))


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class TaskCategory(str, enum.Enum):
    OPENING = "opening"
    TRANSITION = "transition"
    CLOSING = "closing"
    OTHER = "other"


class Area(str, enum.Enum):
    FOH = "foh"
    BOH = "boh"


# Reference fields arrive either as a bare id or as a populated document.
@dataclass(frozen=True)
class Reference:
    id: str


@dataclass(frozen=True)
class Embedded:
    id: str
    data: JSON = field(default_factory=dict)


Ref = t.Union[Reference, Embedded]


def normalize_ref(value: t.Any) -> t.Optional[Ref]:
    if value is None:
        return None
    if isinstance(value, (Reference, Embedded)):
        return value
    if isinstance(value, str):
        return Reference(value)
    if isinstance(value, dict):
        ident = value.get("_id", value.get("id", ""))
        return Embedded(id=str(ident) if ident is not None else "", data=dict(value))
    raise TypeError(f"cannot normalize reference of type {type(value).__name__}")


def ref_id(value: t.Any) -> str:
    ref = normalize_ref(value)
    return "" if ref is None else ref.id


def _ref_to_json(ref: t.Optional[Ref]) -> t.Any:
    if ref is None:
        return None
    if isinstance(ref, Reference):
        return ref.id
    return ref.data


def _pop_known(data: JSON, names: t.Iterable[str]) -> JSON:
    skip = set(names)
    return {k: v for k, v in data.items() if k not in skip}


@dataclass
class UserRef:
    id: str
    name: str = ""

    @classmethod
    def from_value(cls, value: t.Any, default_name: str = "") -> t.Optional["UserRef"]:
        ref = normalize_ref(value)
        if ref is None:
            return None
        if isinstance(ref, Reference):
            return cls(id=ref.id, name=default_name)
        return cls(id=ref.id, name=str(ref.data.get("name") or default_name))

    def to_dict(self) -> JSON:
        return {"_id": self.id, "name": self.name}


_TASK_FIELDS = ("_id", "title", "description", "status", "category", "completedAt", "completedBy", "assignedTo")


@dataclass
class Task:
    id: str
    title: str
    status: TaskStatus = TaskStatus.PENDING
    category: t.Optional[TaskCategory] = None
    description: t.Optional[str] = None
    completed_at: t.Optional[str] = None
    completed_by: t.Optional[UserRef] = None
    assigned_to: t.Optional[UserRef] = None
    extra: JSON = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: JSON) -> "Task":
        category = data.get("category")
        return cls(
            id=ref_id(data.get("_id")),
            title=data.get("title") or "",
            status=TaskStatus(data.get("status") or TaskStatus.PENDING.value),
            category=TaskCategory(category) if category else None,
            description=data.get("description"),
            completed_at=data.get("completedAt"),
            completed_by=UserRef.from_value(data.get("completedBy")),
            assigned_to=UserRef.from_value(data.get("assignedTo")),
            extra=_pop_known(data, _TASK_FIELDS),
        )

    def to_dict(self) -> JSON:
        out: JSON = dict(self.extra)
        out.update(
            {
                "_id": self.id,
                "title": self.title,
                "status": self.status.value,
                "category": self.category.value if self.category else None,
                "description": self.description,
                "completedAt": self.completed_at,
                "completedBy": self.completed_by.to_dict() if self.completed_by else None,
                "assignedTo": self.assigned_to.to_dict() if self.assigned_to else None,
            }
        )
        return out


_LIST_FIELDS = ("_id", "title", "category", "tasks", "area", "createdAt", "updatedAt")


@dataclass
class TaskList:
    id: str
    title: str
    category: TaskCategory = TaskCategory.OTHER
    tasks: t.List[Task] = field(default_factory=list)
    area: t.Optional[Area] = None
    created_at: t.Optional[str] = None
    updated_at: t.Optional[str] = None
    extra: JSON = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: JSON) -> "TaskList":
        area = data.get("area")
        return cls(
            id=ref_id(data.get("_id")),
            title=data.get("title") or "",
            category=TaskCategory(data.get("category") or TaskCategory.OTHER.value),
            tasks=[Task.from_dict(task) for task in data.get("tasks") or []],
            area=Area(area) if area else None,
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
            extra=_pop_known(data, _LIST_FIELDS),
        )

    def to_dict(self) -> JSON:
        out: JSON = dict(self.extra)
        out.update(
            {
                "_id": self.id,
                "title": self.title,
                "category": self.category.value,
                "tasks": [task.to_dict() for task in self.tasks],
                "area": self.area.value if self.area else None,
                "createdAt": self.created_at,
                "updatedAt": self.updated_at,
            }
        )
        return out


_INSTANCE_FIELDS = ("_id", "taskList", "date", "tasks", "status", "completionRate")


@dataclass
class TaskInstance:
    id: str
    task_list: t.Optional[Ref]
    date: t.Optional[str] = None
    tasks: t.List[Task] = field(default_factory=list)
    status: t.Optional[str] = None
    completion_rate: t.Optional[float] = None
    extra: JSON = field(default_factory=dict)

    @property
    def task_list_id(self) -> str:
        return self.task_list.id if self.task_list is not None else ""

    @classmethod
    def from_dict(cls, data: JSON) -> "TaskInstance":
        return cls(
            id=ref_id(data.get("_id")),
            task_list=normalize_ref(data.get("taskList")),
            date=data.get("date"),
            tasks=[Task.from_dict(task) for task in data.get("tasks") or []],
            status=data.get("status"),
            completion_rate=data.get("completionRate"),
            extra=_pop_known(data, _INSTANCE_FIELDS),
        )

    def to_dict(self) -> JSON:
        out: JSON = dict(self.extra)
        out.update(
            {
                "_id": self.id,
                "taskList": _ref_to_json(self.task_list),
                "date": self.date,
                "tasks": [task.to_dict() for task in self.tasks],
                "status": self.status,
                "completionRate": self.completion_rate,
            }
        )
        return out


@dataclass
class TaskMetrics:
    total_instances: int = 0
    completed_instances: int = 0
    average_completion_rate: t.Optional[float] = None
    tasks_by_user: t.Dict[str, JSON] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: JSON) -> "TaskMetrics":
        return cls(
            total_instances=int(data.get("totalInstances") or 0),
            completed_instances=int(data.get("completedInstances") or 0),
            average_completion_rate=data.get("averageCompletionRate"),
            tasks_by_user=dict(data.get("tasksByUser") or {}),
        )

    def to_dict(self) -> JSON:
        return {
            "totalInstances": self.total_instances,
            "completedInstances": self.completed_instances,
            "averageCompletionRate": self.average_completion_rate,
            "tasksByUser": self.tasks_by_user,
        }


def to_jsonable(value: t.Any) -> t.Any:
    """Convert models, dataclasses and enums into plain JSON-compatible values."""
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    return value
