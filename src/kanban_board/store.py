"""File-based task store with cross-process locking.

Stores tasks and milestones in a single YAML file (``board.yaml``) inside the
project's ``.kanban/`` directory.  All reads and writes go through
:meth:`TaskStore.transaction`, which holds an exclusive file lock for the
duration of the transaction.  :class:`FileTaskStoreAdapter` exposes the store
through the async adapter contract used by board sessions.
"""

from __future__ import annotations

import asyncio
import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import yaml
from filelock import FileLock
from loguru import logger

from .adapter import TaskStoreAdapter, UnknownTaskError
from .model import Milestone, StatusValue, Task, coerce_status
from .modes import FilterContext

Dumper = getattr(yaml, "CSafeDumper", yaml.SafeDumper)
Loader = getattr(yaml, "CSafeLoader", yaml.SafeLoader)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

STATE_DIR_NAME = ".kanban"
STORE_FILENAME = "board.yaml"
LOCK_FILENAME = "board.lock"
LOCK_TIMEOUT = 30  # seconds


# ---------------------------------------------------------------------------
# Low-level I/O
# ---------------------------------------------------------------------------

def _load_raw(path: Path) -> dict[str, list[dict[str, Any]]]:
    """Load the raw task and milestone lists from *path*."""
    empty: dict[str, list[dict[str, Any]]] = {"tasks": [], "milestones": []}
    if not path.exists():
        return empty
    data = yaml.load(path.read_text(encoding="utf-8"), Loader=Loader)
    if not isinstance(data, dict):
        return empty
    out = {}
    for key in ("tasks", "milestones"):
        items = data.get(key)
        out[key] = [d for d in items if isinstance(d, dict)] if isinstance(items, list) else []
    return out


def _save_raw(path: Path, tasks: list[dict[str, Any]], milestones: list[dict[str, Any]]) -> None:
    """Atomically write the board to *path* (write-tmp-then-rename)."""
    payload = {"version": 1, "milestones": milestones, "tasks": tasks}
    parent = path.parent
    parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            yaml.dump(payload, fh, Dumper=Dumper, default_flow_style=False, sort_keys=False)
        shutil.move(tmp, str(path))
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def matches_query(task: Task, query: FilterContext) -> bool:
    """Return True if *task* passes every filter set on *query*."""
    if query.company_id and task.company_id != query.company_id:
        return False
    if query.project_id and task.project_id != query.project_id:
        return False
    if query.contact_id and task.assigned_contact_id != query.contact_id:
        return False
    if query.milestone_id and task.milestone_id != query.milestone_id:
        return False
    if query.task_type and task.task_type.value != query.task_type:
        return False
    if query.status_filter and task.status_value != query.status_filter:
        return False
    if not query.show_completed and task.is_complete:
        return False
    if query.search_query:
        if query.search_query.strip().lower() not in task.title.lower():
            return False
    for key, expected in query.extra:
        if hasattr(task, key):
            actual = getattr(task, key)
        else:
            actual = task.metadata.get(key)
        actual = getattr(actual, "value", actual)
        if actual is None or str(actual) != str(expected):
            return False
    return True


# ---------------------------------------------------------------------------
# TaskStore
# ---------------------------------------------------------------------------

class TaskStore:
    """Lock-guarded, file-backed store for tasks and milestones.

    Parameters
    ----------
    state_dir:
        Path to the ``.kanban/`` directory for the project.
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = state_dir
        self._store_path = state_dir / STORE_FILENAME
        self._lock = FileLock(str(state_dir / LOCK_FILENAME), timeout=LOCK_TIMEOUT)

    @classmethod
    def for_project(cls, project_dir: Path) -> "TaskStore":
        return cls(Path(project_dir) / STATE_DIR_NAME)

    @property
    def path(self) -> Path:
        return self._store_path

    @contextmanager
    def transaction(self) -> Iterator[_BoardTx]:
        """Acquire the lock, load the board, yield a transaction, save on exit.

        Usage::

            with store.transaction() as tx:
                tx.set_status("task-abc123", "in_progress")
        """
        self._state_dir.mkdir(parents=True, exist_ok=True)
        with self._lock:
            raw = _load_raw(self._store_path)
            tx = _BoardTx(
                [Task.from_dict(d) for d in raw["tasks"]],
                [Milestone.from_dict(d) for d in raw["milestones"] if d.get("id") is not None],
            )
            yield tx
            if tx.dirty:
                _save_raw(
                    self._store_path,
                    [t.to_dict() for t in tx.tasks],
                    [m.to_dict() for m in tx.milestones],
                )

    def read_snapshot(self) -> list[Task]:
        with self.transaction() as tx:
            return list(tx.tasks)


class _BoardTx:
    """In-memory transaction over the board's tasks and milestones."""

    def __init__(self, tasks: list[Task], milestones: list[Milestone]) -> None:
        self.tasks = tasks
        self.milestones = milestones
        self.dirty = False
        self._index: dict[str, int] = {t.id: i for i, t in enumerate(tasks)}

    # -- lookups ------------------------------------------------------------

    def get(self, task_id: str) -> Optional[Task]:
        idx = self._index.get(task_id)
        return self.tasks[idx] if idx is not None else None

    def require(self, task_id: str) -> Task:
        task = self.get(task_id)
        if task is None:
            raise UnknownTaskError(task_id)
        return task

    def find(self, query: FilterContext) -> list[Task]:
        return [t for t in self.tasks if matches_query(t, query)]

    def milestones_for(self, project_id: Optional[str]) -> list[Milestone]:
        out = [m for m in self.milestones if project_id is None or m.project_id == project_id]
        out.sort(key=lambda m: m.order_index)
        return out

    # -- mutations ----------------------------------------------------------

    def add(self, task: Task) -> Task:
        if task.id in self._index:
            raise ValueError(f"Task {task.id} already exists")
        self._index[task.id] = len(self.tasks)
        self.tasks.append(task)
        self.dirty = True
        return task

    def add_milestone(self, milestone: Milestone) -> Milestone:
        if any(m.id == milestone.id for m in self.milestones):
            raise ValueError(f"Milestone {milestone.id} already exists")
        self.milestones.append(milestone)
        self.dirty = True
        return milestone

    def set_status(self, task_id: str, new_status: StatusValue) -> Task:
        task = self.require(task_id)
        task.transition(coerce_status(new_status))
        self.dirty = True
        return task

    def set_milestone(self, task_id: str, milestone_id: Optional[str]) -> Task:
        task = self.require(task_id)
        if milestone_id is not None and not any(m.id == milestone_id for m in self.milestones):
            raise UnknownTaskError(milestone_id, kind="Milestone")
        task.milestone_id = milestone_id
        task.touch()
        self.dirty = True
        return task

    def set_order(self, task_id: str, new_index: int) -> Task:
        if new_index < 0:
            raise ValueError(f"order index must be >= 0, got {new_index}")
        task = self.require(task_id)
        task.order_index = new_index
        task.touch()
        self.dirty = True
        return task

    def set_milestone_order(self, milestone_id: str, new_index: int) -> Milestone:
        for milestone in self.milestones:
            if milestone.id == milestone_id:
                milestone.order_index = new_index
                self.dirty = True
                return milestone
        raise UnknownTaskError(milestone_id, kind="Milestone")


# ---------------------------------------------------------------------------
# Async adapter
# ---------------------------------------------------------------------------

class FileTaskStoreAdapter(TaskStoreAdapter):
    """Expose a :class:`TaskStore` through the async adapter contract.

    Blocking file I/O runs in a worker thread so the event loop stays free.
    """

    def __init__(self, store: TaskStore) -> None:
        self.store = store

    @classmethod
    def for_project(cls, project_dir: Path) -> "FileTaskStoreAdapter":
        return cls(TaskStore.for_project(project_dir))

    def _list_tasks(self, query: FilterContext) -> list[Task]:
        with self.store.transaction() as tx:
            return tx.find(query)

    def _list_milestones(self, project_id: Optional[str]) -> list[Milestone]:
        with self.store.transaction() as tx:
            return tx.milestones_for(project_id)

    def _update_status(self, task_id: str, new_status: StatusValue) -> Task:
        with self.store.transaction() as tx:
            task = tx.set_status(task_id, new_status)
        logger.debug("Stored status {} for {}", task.status_value, task_id)
        return task

    def _update_milestone(self, task_id: str, milestone_id: Optional[str]) -> Task:
        with self.store.transaction() as tx:
            return tx.set_milestone(task_id, milestone_id)

    def _update_order(self, task_id: str, new_index: int) -> None:
        with self.store.transaction() as tx:
            tx.set_order(task_id, new_index)

    def _update_milestone_order(self, milestone_id: str, new_index: int) -> None:
        with self.store.transaction() as tx:
            tx.set_milestone_order(milestone_id, new_index)

    async def list_tasks(self, query: FilterContext) -> list[Task]:
        return await asyncio.to_thread(self._list_tasks, query)

    async def list_milestones(self, project_id: str) -> list[Milestone]:
        return await asyncio.to_thread(self._list_milestones, project_id)

    async def update_task_status(self, task_id: str, new_status: StatusValue) -> Task:
        return await asyncio.to_thread(self._update_status, task_id, new_status)

    async def update_task_milestone(self, task_id: str, milestone_id: Optional[str]) -> Task:
        return await asyncio.to_thread(self._update_milestone, task_id, milestone_id)

    async def update_task_order(self, task_id: str, container_id: str, new_index: int) -> None:
        await asyncio.to_thread(self._update_order, task_id, new_index)

    async def update_milestone_order(self, milestone_id: str, new_index: int) -> None:
        await asyncio.to_thread(self._update_milestone_order, milestone_id, new_index)


__all__ = [
    "FileTaskStoreAdapter",
    "STATE_DIR_NAME",
    "TaskStore",
    "matches_query",
]
