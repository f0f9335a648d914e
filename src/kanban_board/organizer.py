"""Order the tasks displayed inside one container.

Two policies exist.  The completed column is a recency feed: every task is
standalone, newest first, capped at :data:`COMPLETED_LIMIT`.  Every other
column is a hierarchy view: parents in urgency order, each open parent
followed by its open subtasks.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Iterable, Optional

from .containers import is_complete_container
from .model import Task, parse_iso

COMPLETED_LIMIT = 20

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)
_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


class ColumnTasks(list):
    """The displayed tasks of a column.

    Behaves as a plain ``list[Task]``; ``total`` is the number of candidate
    tasks before truncation and ``hidden`` the number of subtasks withheld by
    the hierarchy policy.
    """

    def __init__(self, tasks: Iterable[Task] = (), total: Optional[int] = None, hidden: int = 0) -> None:
        super().__init__(tasks)
        self.total = len(self) if total is None else total
        self.hidden = hidden

    @property
    def truncated(self) -> bool:
        return self.total > len(self)


def organize(
    container_id: str,
    tasks: Iterable[Task],
    *,
    now: Optional[datetime] = None,
    limit: int = COMPLETED_LIMIT,
) -> ColumnTasks:
    """Return the display order for *tasks* in *container_id*."""
    items = list(tasks)
    if is_complete_container(container_id):
        return organize_completed(items, limit=limit)
    return organize_hierarchy(items, now=now)


# ---------------------------------------------------------------------------
# Completed column
# ---------------------------------------------------------------------------

def _id_key(task_id: str) -> tuple[int, int, str]:
    # Numeric ids compare numerically and rank above textual ids.
    if task_id.isdigit():
        return (1, int(task_id), "")
    return (0, 0, task_id)


def recency_key(task: Task) -> tuple:
    return (
        parse_iso(task.updated_at) or _EPOCH,
        parse_iso(task.created_at) or _EPOCH,
        _id_key(task.id),
    )


def organize_completed(tasks: list[Task], *, limit: int = COMPLETED_LIMIT) -> ColumnTasks:
    ordered = sorted(tasks, key=recency_key, reverse=True)
    return ColumnTasks(ordered[: max(limit, 0)], total=len(ordered))


# ---------------------------------------------------------------------------
# Hierarchy columns
# ---------------------------------------------------------------------------

def parent_key(task: Task, now: datetime) -> tuple:
    """Sort key for top-level tasks.

    Incomplete before complete, overdue first among incomplete, dated before
    undated, then by due date and ``order_index``.
    """
    due = task.due_at()
    overdue = task.is_overdue(now)
    return (
        task.is_complete,
        not overdue,
        due is None,
        due or _FAR_FUTURE,
        task.order_index,
    )


def organize_hierarchy(tasks: list[Task], *, now: Optional[datetime] = None) -> ColumnTasks:
    now = now or datetime.now(timezone.utc)
    parents = [t for t in tasks if not t.parent_id]
    subtasks = [t for t in tasks if t.parent_id]

    children: dict[str, list[Task]] = {}
    for sub in subtasks:
        if sub.is_complete:
            continue
        children.setdefault(sub.parent_id, []).append(sub)

    out: list[Task] = []
    for parent in sorted(parents, key=lambda t: parent_key(t, now)):
        out.append(parent)
        if parent.is_complete:
            continue
        out.extend(sorted(children.get(parent.id, []), key=lambda t: t.order_index))

    return ColumnTasks(out, total=len(tasks), hidden=len(tasks) - len(out))
