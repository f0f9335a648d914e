"""Shared fixtures: an in-memory task store adapter that records calls."""

from __future__ import annotations

import asyncio
import sys
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from loguru import logger

from kanban_board.adapter import TaskStoreAdapter, UnknownTaskError
from kanban_board.model import Milestone, Task, TaskStatus, coerce_status
from kanban_board.modes import FilterContext
from kanban_board.store import matches_query

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def iso(days: float = 0.0) -> str:
    """ISO timestamp *days* away from the fixed test clock."""
    return (NOW + timedelta(days=days)).isoformat()


class MemoryAdapter(TaskStoreAdapter):
    """Task store double.

    ``calls`` records every adapter call in issue order.  Operations named in
    ``fail`` raise ``ConnectionError``; ``fail_ids`` limits failures to
    specific task ids.  ``list_delays`` delays successive ``list_tasks``
    results, which are captured before the delay.
    """

    def __init__(self, tasks: list[Task], milestones: Optional[list[Milestone]] = None) -> None:
        self.tasks = {t.id: t for t in tasks}
        self.milestones = {m.id: m for m in milestones or []}
        self.calls: list[tuple] = []
        self.fail: set[str] = set()
        self.fail_ids: set[str] = set()
        self.list_delays: list[float] = []

    def _check(self, operation: str, target_id: str = "") -> None:
        if operation in self.fail and (not self.fail_ids or target_id in self.fail_ids):
            raise ConnectionError(f"{operation} unavailable")

    async def list_tasks(self, query: FilterContext) -> list[Task]:
        self.calls.append(("list_tasks", query))
        self._check("list_tasks")
        result = [replace(t) for t in self.tasks.values() if matches_query(t, query)]
        if self.list_delays:
            await asyncio.sleep(self.list_delays.pop(0))
        return result

    async def list_milestones(self, project_id: str) -> list[Milestone]:
        self.calls.append(("list_milestones", project_id))
        return [replace(m) for m in self.milestones.values() if m.project_id == project_id]

    async def update_task_status(self, task_id: str, new_status) -> Task:
        self.calls.append(("update_task_status", task_id, new_status))
        await asyncio.sleep(0)
        self._check("update_task_status", task_id)
        task = self.tasks.get(task_id)
        if task is None:
            raise UnknownTaskError(task_id)
        task.status = coerce_status(new_status)
        return replace(task)

    async def update_task_milestone(self, task_id: str, milestone_id) -> Task:
        self.calls.append(("update_task_milestone", task_id, milestone_id))
        await asyncio.sleep(0)
        self._check("update_task_milestone", task_id)
        task = self.tasks[task_id]
        task.milestone_id = milestone_id
        return replace(task)

    async def update_task_order(self, task_id: str, container_id: str, new_index: int) -> None:
        self.calls.append(("update_task_order", task_id, container_id, new_index))
        await asyncio.sleep(0)
        self._check("update_task_order", task_id)
        self.tasks[task_id].order_index = new_index

    async def update_milestone_order(self, milestone_id: str, new_index: int) -> None:
        self.calls.append(("update_milestone_order", milestone_id, new_index))
        self._check("update_milestone_order", milestone_id)
        self.milestones[milestone_id].order_index = new_index

    def calls_named(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]


def make_task(task_id: str, status=TaskStatus.TODO, **kwargs) -> Task:
    kwargs.setdefault("title", f"Task {task_id}")
    kwargs.setdefault("created_at", iso(-10))
    kwargs.setdefault("updated_at", iso(-5))
    return Task(id=task_id, status=status, **kwargs)


@pytest.fixture(autouse=True)
def _restore_logger():
    # configure_logging() binds to whatever sys.stderr is during the test.
    yield
    logger.remove()
    logger.add(sys.__stderr__)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def clock():
    return lambda: NOW
