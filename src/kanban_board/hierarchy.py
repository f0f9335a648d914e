"""Parent/subtask helpers.

The store does not enforce cycle-freedom, so every walk up the parent chain
stops on the first repeated id.
"""

from __future__ import annotations

from typing import Iterable, Optional

from .model import Task


def _index(tasks: Iterable[Task]) -> dict[str, Task]:
    return {t.id: t for t in tasks}


def _ancestors(task_id: str, by_id: dict[str, Task]) -> list[str]:
    chain: list[str] = []
    seen = {task_id}
    current = by_id.get(task_id)
    while current is not None and current.parent_id:
        parent_id = current.parent_id
        if parent_id in seen:
            break
        chain.append(parent_id)
        seen.add(parent_id)
        current = by_id.get(parent_id)
    return chain


def is_descendant_of(task_id: str, ancestor_id: str, tasks: Iterable[Task]) -> bool:
    """True if *ancestor_id* appears in the parent chain of *task_id*."""
    return ancestor_id in _ancestors(task_id, _index(tasks))


def is_circular_reference(task_id: str, potential_parent_id: str, tasks: Iterable[Task]) -> bool:
    """True if making *potential_parent_id* the parent of *task_id* creates a cycle."""
    if task_id == potential_parent_id:
        return True
    return is_descendant_of(potential_parent_id, task_id, tasks)


def can_be_parent(candidate_id: str, child_id: Optional[str], tasks: Iterable[Task]) -> bool:
    """Whether *candidate_id* may become the parent of *child_id*.

    Subtasks cannot carry subtasks of their own, so only top-level tasks are
    valid parents.
    """
    if not child_id:
        return False
    items = list(tasks)
    candidate = _index(items).get(candidate_id)
    if candidate is None or candidate.parent_id:
        return False
    return not is_circular_reference(child_id, candidate_id, items)


def subtasks_of(parent_id: str, tasks: Iterable[Task], *, include_completed: bool = False) -> list[Task]:
    """Direct subtasks of *parent_id*, by ``order_index``."""
    out = [
        t for t in tasks
        if t.parent_id == parent_id and (include_completed or not t.is_complete)
    ]
    out.sort(key=lambda t: t.order_index)
    return out
