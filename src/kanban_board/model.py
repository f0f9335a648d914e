"""Task, milestone and container models for the board engine.

Tasks are plain dataclasses that round-trip through YAML / JSON via
``to_dict()`` / ``from_dict()``.  Containers are derived values and are never
persisted; they are frozen so a snapshot can hand them out without copying.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskStatus(str, Enum):
    """Task status vocabulary.

    ``blocked`` and ``cancelled`` are legacy values still found in older
    data; they only matter for :func:`status_sort_key`.
    """

    NOT_STARTED = "not_started"
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    COMPLETE = "complete"
    CANCELLED = "cancelled"
    ARCHIVED = "archived"


class TaskPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskType(str, Enum):
    TASK = "task"
    MEETING = "meeting"
    SUPPORT = "support"
    UNAVAILABLE = "unavailable"


class ContainerKind(str, Enum):
    """What a container groups tasks by."""

    MILESTONE = "milestone"
    STATUS = "status"
    SUPPORT = "support"


# A task status is a known enum member or a custom string configured by the
# workspace (e.g. "review", "on_hold").
StatusValue = Union[TaskStatus, str]

_STATUS_ORDER = [
    TaskStatus.NOT_STARTED,
    TaskStatus.TODO,
    TaskStatus.IN_PROGRESS,
    TaskStatus.BLOCKED,
    TaskStatus.COMPLETE,
    TaskStatus.CANCELLED,
    TaskStatus.ARCHIVED,
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _generate_id() -> str:
    """Short human-friendly task ID: ``task-<8hex>``."""
    return f"task-{uuid.uuid4().hex[:8]}"


def parse_iso(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp or date into an aware datetime.

    Naive values are assumed to be UTC and a bare date means midnight UTC.
    Unparseable input yields ``None``.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def coerce_status(raw: Any) -> StatusValue:
    """Return the enum member for *raw*, or the raw string for custom statuses."""
    if isinstance(raw, TaskStatus):
        return raw
    value = str(raw).strip()
    # Older records spell it "not started".
    if value == "not started":
        return TaskStatus.NOT_STARTED
    try:
        return TaskStatus(value)
    except ValueError:
        return value


def status_value(status: StatusValue) -> str:
    return status.value if isinstance(status, TaskStatus) else str(status)


def status_sort_key(status: StatusValue) -> int:
    """Position of *status* in the workflow order; unknown statuses sort last."""
    coerced = coerce_status(status)
    if isinstance(coerced, TaskStatus):
        return _STATUS_ORDER.index(coerced)
    return len(_STATUS_ORDER)


def status_title(value: str) -> str:
    """``"on_hold"`` -> ``"On Hold"``."""
    return value.replace("_", " ").title()


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """A single work item on the board."""

    # Identity
    id: str = field(default_factory=_generate_id)
    title: str = ""
    description: str = ""

    # Classification
    status: StatusValue = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    task_type: TaskType = TaskType.TASK
    due_date: Optional[str] = None

    # Placement
    parent_id: Optional[str] = None
    project_id: Optional[str] = None
    milestone_id: Optional[str] = None
    company_id: Optional[str] = None
    assigned_contact_id: Optional[str] = None
    order_index: int = 0

    # Timestamps
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    completed_at: Optional[str] = None

    metadata: dict[str, Any] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a plain dict for YAML/JSON persistence."""
        data: dict[str, Any] = {}
        for k, v in asdict(self).items():
            data[k] = v.value if isinstance(v, Enum) else v
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Deserialize from a plain dict, coercing enums gracefully."""
        d = dict(data)

        def _enum(enum_cls: type[Enum], key: str, default: Enum) -> Any:
            raw = d.pop(key, None)
            if raw is None:
                return default
            if isinstance(raw, enum_cls):
                return raw
            try:
                return enum_cls(str(raw))
            except (ValueError, KeyError):
                return default

        priority = _enum(TaskPriority, "priority", TaskPriority.MEDIUM)
        task_type = _enum(TaskType, "task_type", TaskType.TASK)
        raw_status = d.pop("status", None)
        status = coerce_status(raw_status) if raw_status else TaskStatus.TODO

        def _opt(key: str) -> Optional[str]:
            raw = d.pop(key, None)
            return None if raw is None or raw == "" else str(raw)

        try:
            order_index = int(d.pop("order_index", 0) or 0)
        except (TypeError, ValueError):
            order_index = 0

        return cls(
            id=str(d.pop("id", None) or _generate_id()),
            title=str(d.pop("title", "") or ""),
            description=str(d.pop("description", "") or ""),
            status=status,
            priority=priority,
            task_type=task_type,
            due_date=_opt("due_date"),
            parent_id=_opt("parent_id"),
            project_id=_opt("project_id"),
            milestone_id=_opt("milestone_id"),
            company_id=_opt("company_id"),
            assigned_contact_id=_opt("assigned_contact_id"),
            order_index=order_index,
            created_at=str(d.pop("created_at", None) or now_iso()),
            updated_at=str(d.pop("updated_at", None) or now_iso()),
            completed_at=_opt("completed_at"),
            metadata=dict(d.pop("metadata", {}) or {}),
        )

    @classmethod
    def validate_dict(cls, data: dict[str, Any]) -> list[str]:
        """Lightweight validation of a task dict.

        Returns a list of error strings (empty = valid).  Custom statuses are
        allowed, so ``status`` only has to be a non-empty string.
        """
        errors: list[str] = []
        if not isinstance(data, dict):
            return ["Expected a dict"]
        if not data.get("title"):
            errors.append("'title' is required and must be non-empty")
        status = data.get("status")
        if status is not None and not str(status).strip():
            errors.append("'status' must be a non-empty string")
        priority = data.get("priority")
        if priority is not None:
            valid = {e.value for e in TaskPriority}
            if priority not in valid:
                errors.append(f"'priority' must be one of {sorted(valid)}, got '{priority}'")
        task_type = data.get("task_type")
        if task_type is not None:
            valid = {e.value for e in TaskType}
            if task_type not in valid:
                errors.append(f"'task_type' must be one of {sorted(valid)}, got '{task_type}'")
        order_index = data.get("order_index")
        if order_index is not None and (not isinstance(order_index, int) or order_index < 0):
            errors.append("'order_index' must be a non-negative integer")
        due = data.get("due_date")
        if due and parse_iso(due) is None:
            errors.append(f"'due_date' is not an ISO-8601 date: '{due}'")
        return errors

    # ------------------------------------------------------------------
    # Status helpers
    # ------------------------------------------------------------------

    @property
    def status_value(self) -> str:
        return status_value(self.status)

    @property
    def is_complete(self) -> bool:
        return self.status == TaskStatus.COMPLETE

    @property
    def is_subtask(self) -> bool:
        return bool(self.parent_id)

    def due_at(self) -> Optional[datetime]:
        return parse_iso(self.due_date)

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        """True if the task has a due date in the past and is not complete."""
        if self.is_complete:
            return False
        due = self.due_at()
        if due is None:
            return False
        return due < (now or datetime.now(timezone.utc))

    def touch(self) -> None:
        """Bump ``updated_at`` to now."""
        self.updated_at = now_iso()

    def transition(self, new_status: StatusValue) -> None:
        """Move to *new_status* with timestamp bookkeeping."""
        self.status = coerce_status(new_status)
        if self.status == TaskStatus.COMPLETE:
            self.completed_at = now_iso()
        else:
            self.completed_at = None
        self.touch()


# ---------------------------------------------------------------------------
# Milestone
# ---------------------------------------------------------------------------

@dataclass
class Milestone:
    id: str
    name: str = ""
    project_id: Optional[str] = None
    order_index: int = 0
    color: Optional[str] = None
    due_date: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Milestone":
        try:
            order_index = int(data.get("order_index", 0) or 0)
        except (TypeError, ValueError):
            order_index = 0
        project_id = data.get("project_id")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name", "") or ""),
            project_id=str(project_id) if project_id is not None else None,
            order_index=order_index,
            color=data.get("color") or None,
            due_date=data.get("due_date") or None,
        )


# ---------------------------------------------------------------------------
# Container
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Container:
    """A single derived board column."""

    id: str
    title: str
    color: str
    kind: ContainerKind
    source_id: Optional[str] = None
    milestone: Optional[Milestone] = None

    @property
    def status(self) -> Optional[str]:
        """Status value a task takes when dropped here, for status-based kinds."""
        if self.kind == ContainerKind.MILESTONE:
            return None
        return self.source_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "color": self.color,
            "kind": self.kind.value,
            "source_id": self.source_id,
            "milestone": self.milestone.to_dict() if self.milestone else None,
        }
