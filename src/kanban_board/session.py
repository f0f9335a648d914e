"""Stateful board session: snapshot ownership, optimistic moves, reconciliation.

A :class:`BoardSession` is the only writer of its snapshot (``containers`` and
``tasks_by_container``).  Mutations run in two phases:

1. a synchronous local apply, so the snapshot and stats reflect the move
   before any I/O happens;
2. an asynchronous reconciliation that calls the task store adapter and
   records every call as a :class:`~kanban_board.adapter.PersistResult`.

Persistence coroutines are scheduled in call order on the running event loop,
so outbound calls are issued in the order the mutations were requested.
Callers may ignore the returned :class:`asyncio.Task` or await it.

Failure policy:

- load failure: ``error`` is set, the previous snapshot stays.
- cross-container move failure: logged, then a silent full reload.
- reorder / cascade / column-order failure: logged only.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Callable, Coroutine, Iterable, Optional, Union

from loguru import logger

from .adapter import PersistResult, TaskStoreAdapter, attempt
from .config import BoardConfig
from .containers import (
    COMPLETE_CONTAINER_ID,
    BoardContext,
    FieldChange,
    bucket_tasks,
    container_for_task,
    derive_containers,
    is_complete_container,
    resolve_move_change,
)
from .hierarchy import subtasks_of
from .model import Container, ContainerKind, Milestone, StatusValue, Task, coerce_status, status_value
from .modes import FilterContext, MilestoneMode, Mode
from .organizer import ColumnTasks, organize
from .stats import BoardStats, compute_stats


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MovePlan:
    """What phase one applied locally and phase two must persist."""

    task_id: str
    from_container_id: str
    to_container_id: str
    to_index: int
    changes: tuple[FieldChange, ...]
    cascade: tuple[tuple[str, tuple[FieldChange, ...]], ...] = ()


@dataclass
class MoveOutcome:
    plan: MovePlan
    results: list[PersistResult] = field(default_factory=list)
    cascade_results: list[PersistResult] = field(default_factory=list)
    reloaded: bool = False

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def cascade_failures(self) -> list[PersistResult]:
        return [r for r in self.cascade_results if not r.ok]


@dataclass
class ReorderOutcome:
    container_id: str
    results: list[PersistResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)


@dataclass(frozen=True)
class BoardSnapshot:
    containers: list[Container]
    tasks_by_container: dict[str, list[Task]]
    totals: dict[str, int]
    stats: BoardStats

    def to_dict(self) -> dict[str, Any]:
        return {
            "containers": [c.to_dict() for c in self.containers],
            "tasks_by_container": {
                cid: [t.to_dict() for t in tasks] for cid, tasks in self.tasks_by_container.items()
            },
            "totals": dict(self.totals),
            "stats": self.stats.to_dict(),
        }


def _grouped(tasks: list[Task]) -> list[Task]:
    """Keep the order of top-level tasks, each followed by its listed subtasks."""
    shown = {t.id for t in tasks}
    children: dict[str, list[Task]] = {}
    tops: list[Task] = []
    for task in tasks:
        if task.parent_id in shown:
            children.setdefault(task.parent_id, []).append(task)
        else:
            tops.append(task)
    out: list[Task] = []
    for task in tops:
        out.append(task)
        out.extend(children.get(task.id, []))
    return out


def _group_boundary(items: list[Task], pos: int) -> int:
    # Never split a parent from the subtasks displayed below it.
    above = {t.id for t in items[:pos]}
    while pos < len(items) and items[pos].parent_id in above:
        pos += 1
    return pos


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class BoardSession:
    """Own one board snapshot and mediate between derivation and the store.

    Parameters
    ----------
    adapter:
        The async task store.
    config:
        Board configuration; defaults are used when omitted.
    clock:
        Callable returning the current aware datetime, used for overdue
        checks.  Defaults to UTC now.
    """

    def __init__(
        self,
        adapter: TaskStoreAdapter,
        config: Optional[BoardConfig] = None,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.adapter = adapter
        self.config = config or BoardConfig()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.mode: Optional[Mode] = None
        self.filters = FilterContext(show_completed=self.config.show_completed)
        self.loading = False
        self.error: Optional[str] = None
        self.containers: list[Container] = []
        self.tasks_by_container: dict[str, ColumnTasks] = {}
        self.milestones: list[Milestone] = []

        self._tasks: dict[str, Task] = {}
        self._stats = BoardStats()
        self._generation = 0
        self._pending: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self, mode: Mode, filters: Optional[FilterContext] = None) -> bool:
        """Switch to *mode* / *filters* and build a fresh snapshot."""
        self.mode = mode
        if filters is not None:
            self.filters = filters
        return await self.load_data()

    async def load_data(self) -> bool:
        """Reload the board with the current mode and filters.

        Returns True when this call's result was applied.  Only the most
        recently issued load applies its result; older in-flight loads are
        discarded when they finish.
        """
        if self.mode is None:
            raise ValueError("No board mode selected; call load() first")
        self._generation += 1
        generation = self._generation
        mode = self.mode
        query = self.filters.for_mode(mode)
        self.loading = True
        try:
            tasks = list(await self.adapter.list_tasks(query))
            milestones: list[Milestone] = []
            if isinstance(mode, MilestoneMode):
                milestones = list(await self.adapter.list_milestones(mode.project_id))
        except Exception as exc:
            logger.error("Failed to load board ({}): {}", mode.name, exc)
            if generation == self._generation:
                self.error = f"Failed to load tasks: {exc}"
                self.loading = False
            return False

        if generation != self._generation:
            logger.debug("Discarding stale board load {} (latest is {})", generation, self._generation)
            return False

        self._apply_snapshot(mode, query, tasks, milestones)
        self.error = None
        self.loading = False
        logger.debug(
            "Loaded {} board: {} containers, {} tasks",
            mode.name, len(self.containers), len(self._tasks),
        )
        return True

    def _apply_snapshot(
        self,
        mode: Mode,
        query: FilterContext,
        tasks: list[Task],
        milestones: list[Milestone],
    ) -> None:
        context = BoardContext(
            filters=query,
            milestones=milestones,
            tasks=tasks,
            statuses=self.config.statuses,
            support_statuses=self.config.support_statuses,
        )
        containers = derive_containers(mode, context)
        buckets = bucket_tasks(tasks, mode, containers)
        now = self._clock()
        self.milestones = sorted(milestones, key=lambda m: m.order_index)
        self.containers = containers
        self._tasks = {t.id: t for t in tasks}
        self.tasks_by_container = {
            cid: organize(cid, items, now=now, limit=self.config.completed_limit)
            for cid, items in buckets.items()
        }
        self._refresh_stats()

    def clear_error(self) -> None:
        self.error = None

    # ------------------------------------------------------------------
    # Cross-container moves
    # ------------------------------------------------------------------

    def move_task(
        self,
        task_id: str,
        from_container_id: str,
        to_container_id: str,
        to_index: int,
    ) -> asyncio.Task:
        """Move a task to another container, optimistically.

        The snapshot is updated before this returns.  The returned task
        resolves to a :class:`MoveOutcome` once the store has been updated
        (or the board reloaded after a failure).  Must be called from inside
        a running event loop; otherwise ``RuntimeError`` is raised before the
        snapshot is touched.
        """
        asyncio.get_running_loop()
        plan = self._apply_move(task_id, from_container_id, to_container_id, to_index)
        return self._schedule(self._persist_move(plan))

    def _apply_move(
        self,
        task_id: str,
        from_container_id: str,
        to_container_id: str,
        to_index: int,
    ) -> MovePlan:
        task = self._tasks.get(task_id)
        if task is None:
            raise ValueError(f"Task {task_id} is not on this board")
        target = self.get_container(to_container_id)
        if target is None:
            raise ValueError(f"Unknown container {to_container_id}")
        if to_index < 0:
            raise ValueError(f"to_index must be >= 0, got {to_index}")
        changes = tuple(resolve_move_change(self.mode, task, target))
        previous = container_for_task(task, self.mode, self.containers)
        moved = self._apply_changes(task, changes)
        position = self._place(moved, target.id, to_index, previous)

        cascade: list[tuple[str, tuple[FieldChange, ...]]] = []
        if target.kind != ContainerKind.MILESTONE and not task.parent_id:
            # Open subtasks follow the parent; those already at the target
            # status are only revealed under it.
            for offset, sub in enumerate(subtasks_of(task.id, self._tasks.values()), start=1):
                sub_changes: tuple[FieldChange, ...] = ()
                if status_value(sub.status) != target.status:
                    sub_changes = tuple(resolve_move_change(self.mode, sub, target))
                sub_previous = container_for_task(sub, self.mode, self.containers)
                self._place(self._apply_changes(sub, sub_changes), target.id, position + offset, sub_previous)
                if sub_changes:
                    cascade.append((sub.id, sub_changes))
        elif not task.parent_id:
            self._regroup_subtasks(moved, target.id, position)

        self._refresh_stats()
        logger.info(
            "Moved {} from {} to {} at {} ({} subtasks follow)",
            task_id, from_container_id, target.id, to_index, len(cascade),
        )
        return MovePlan(
            task_id=task_id,
            from_container_id=from_container_id,
            to_container_id=target.id,
            to_index=to_index,
            changes=changes,
            cascade=tuple(cascade),
        )

    def _apply_changes(self, task: Task, changes: Iterable[FieldChange]) -> Task:
        updated = replace(task, metadata=dict(task.metadata))
        for change in changes:
            if change.name == "status":
                updated.transition(coerce_status(change.value))
            else:
                setattr(updated, change.name, change.value)
                updated.touch()
        self._tasks[updated.id] = updated
        return updated

    async def _persist_change(self, task_id: str, change: FieldChange) -> PersistResult:
        if change.name == "status":
            return await attempt(
                "update_task_status", task_id, self.adapter.update_task_status(task_id, change.value)
            )
        return await attempt(
            "update_task_milestone", task_id, self.adapter.update_task_milestone(task_id, change.value)
        )

    async def _persist_move(self, plan: MovePlan) -> MoveOutcome:
        outcome = MoveOutcome(plan=plan)
        for change in plan.changes:
            result = await self._persist_change(plan.task_id, change)
            outcome.results.append(result)
            if not result.ok:
                logger.warning(
                    "Failed to persist move of {} to {}: {}; reloading board",
                    plan.task_id, plan.to_container_id, result.error,
                )
                outcome.reloaded = True
                await self.load_data()
                return outcome

        for sub_id, changes in plan.cascade:
            for change in changes:
                result = await self._persist_change(sub_id, change)
                outcome.cascade_results.append(result)
                if not result.ok:
                    logger.warning("Failed to move subtask {} with parent {}: {}", sub_id, plan.task_id, result.error)
                    break
        return outcome

    # ------------------------------------------------------------------
    # Reordering
    # ------------------------------------------------------------------

    def reorder_tasks(
        self,
        container_id: str,
        new_ordered_tasks: Iterable[Union[Task, str]],
    ) -> asyncio.Task:
        """Replace the order of *container_id* and persist ``order_index`` values.

        *new_ordered_tasks* must list exactly the tasks the column displays.
        Outside the completed column a parent keeps its displayed subtasks
        directly below it, and ``order_index`` is numbered among siblings:
        top-level tasks share one sequence, each parent's subtasks another.

        Failures are logged only; the local order is kept.
        """
        asyncio.get_running_loop()
        container = self.get_container(container_id)
        if container is None:
            raise ValueError(f"Unknown container {container_id}")
        old = self.tasks_by_container.get(container.id, ColumnTasks())
        ids = [item.id if isinstance(item, Task) else str(item) for item in new_ordered_tasks]
        if len(ids) != len(set(ids)) or set(ids) != {t.id for t in old}:
            raise ValueError(f"Reorder of {container.id} must list each of its displayed tasks exactly once")

        requested = [self._tasks[task_id] for task_id in ids]
        grouped = not is_complete_container(container.id)
        if grouped:
            requested = _grouped(requested)
        ordered: list[Task] = []
        pending: list[tuple[str, int]] = []
        shown = {t.id for t in requested}
        counters: dict[Optional[str], int] = {}
        for task in requested:
            scope = task.parent_id if grouped and task.parent_id in shown else None
            index = counters.get(scope, 0)
            counters[scope] = index + 1
            if task.order_index != index:
                task = replace(task, order_index=index, metadata=dict(task.metadata))
                self._tasks[task.id] = task
                pending.append((task.id, index))
            ordered.append(task)

        self.tasks_by_container[container.id] = ColumnTasks(ordered, total=old.total, hidden=old.hidden)
        logger.debug("Reordered {} ({} order changes)", container.id, len(pending))
        return self._schedule(self._persist_order(container.id, pending))

    async def _persist_order(self, container_id: str, pending: list[tuple[str, int]]) -> ReorderOutcome:
        outcome = ReorderOutcome(container_id=container_id)
        for task_id, index in pending:
            result = await attempt(
                "update_task_order",
                task_id,
                self.adapter.update_task_order(task_id, container_id, index),
            )
            outcome.results.append(result)
            if not result.ok:
                logger.warning("Failed to persist order of {} in {}: {}", task_id, container_id, result.error)
        return outcome

    def reorder_containers(self, container_ids: list[str]) -> asyncio.Task:
        """Reorder milestone columns; status columns keep their positions."""
        asyncio.get_running_loop()
        if not isinstance(self.mode, MilestoneMode):
            raise ValueError("Only milestone columns can be reordered")
        by_id = {c.id: c for c in self.containers if c.kind == ContainerKind.MILESTONE and c.milestone}
        unknown = [cid for cid in container_ids if cid not in by_id]
        if unknown:
            raise ValueError(f"Not reorderable milestone columns: {unknown}")
        requested = [by_id[cid] for cid in container_ids]
        rest = [c for c in by_id.values() if c.id not in set(container_ids)]
        ordered = requested + rest

        slots = iter(ordered)
        self.containers = [
            next(slots) if c.id in by_id else c
            for c in self.containers
        ]
        pending: list[tuple[str, int]] = []
        order = {c.source_id: index for index, c in enumerate(ordered)}
        for milestone in self.milestones:
            index = order.get(milestone.id)
            if index is not None and milestone.order_index != index:
                milestone.order_index = index
                pending.append((milestone.id, index))
        self.milestones.sort(key=lambda m: m.order_index)
        return self._schedule(self._persist_milestone_order(pending))

    async def _persist_milestone_order(self, pending: list[tuple[str, int]]) -> ReorderOutcome:
        outcome = ReorderOutcome(container_id="milestones")
        for milestone_id, index in pending:
            result = await attempt(
                "update_milestone_order",
                milestone_id,
                self.adapter.update_milestone_order(milestone_id, index),
            )
            outcome.results.append(result)
            if not result.ok:
                logger.warning("Failed to persist order of milestone {}: {}", milestone_id, result.error)
        return outcome

    # ------------------------------------------------------------------
    # Snapshot helpers
    # ------------------------------------------------------------------

    def _place(self, task: Task, container_id: str, index: int, previous: Optional[str] = None) -> int:
        """Put *task* into *container_id* at *index*; return its final position.

        *previous* is the container the task belonged to before the move.  It
        is only consulted when the task was not displayed anywhere, i.e. it
        was hidden or truncated there.
        """
        found = False
        left_completed = is_complete_container(previous)
        for cid, bucket in list(self.tasks_by_container.items()):
            if any(t.id == task.id for t in bucket):
                found = True
                left_completed = left_completed or is_complete_container(cid)
                self.tasks_by_container[cid] = ColumnTasks(
                    [t for t in bucket if t.id != task.id],
                    total=bucket.total - 1,
                    hidden=bucket.hidden,
                )
        if not found and previous in self.tasks_by_container and not is_complete_container(previous):
            bucket = self.tasks_by_container[previous]
            self.tasks_by_container[previous] = ColumnTasks(
                bucket, total=max(bucket.total - 1, 0), hidden=max(bucket.hidden - 1, 0),
            )

        if is_complete_container(container_id) or left_completed:
            column = self._rebuild_completed()
            if is_complete_container(container_id):
                for pos, item in enumerate(column):
                    if item.id == task.id:
                        return pos
                return len(column)

        bucket = self.tasks_by_container.get(container_id, ColumnTasks())
        items = list(bucket)
        pos = min(index, len(items))
        if not task.is_subtask:
            pos = _group_boundary(items, pos)
        items.insert(pos, task)
        self.tasks_by_container[container_id] = ColumnTasks(items, total=bucket.total + 1, hidden=bucket.hidden)
        return pos

    def _regroup_subtasks(self, parent: Task, container_id: str, position: int) -> None:
        """Show *parent*'s open subtasks under it where they share its column.

        Subtasks left behind in another column lose their parent there and
        are hidden, as a reload would hide them.
        """
        offset = 0
        for sub in subtasks_of(parent.id, self._tasks.values()):
            home = container_for_task(sub, self.mode, self.containers)
            if home == container_id:
                offset += 1
                self._place(sub, container_id, position + offset, home)
            else:
                self._hide(sub.id)

    def _hide(self, task_id: str) -> None:
        for cid, bucket in list(self.tasks_by_container.items()):
            if is_complete_container(cid) or not any(t.id == task_id for t in bucket):
                continue
            self.tasks_by_container[cid] = ColumnTasks(
                [t for t in bucket if t.id != task_id],
                total=bucket.total,
                hidden=bucket.hidden + 1,
            )
            logger.debug("Hid subtask {} in {}; its parent is no longer there", task_id, cid)

    def _rebuild_completed(self) -> ColumnTasks:
        # The completed column is ordered by recency only, so it is recomputed
        # from the working set instead of edited in place.
        done = [t for t in self._tasks.values() if t.is_complete]
        column = organize(COMPLETE_CONTAINER_ID, done, limit=self.config.completed_limit)
        self.tasks_by_container[COMPLETE_CONTAINER_ID] = column
        return column

    def _refresh_stats(self) -> None:
        self._stats = compute_stats(self._tasks.values(), now=self._clock())

    def _schedule(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait until every scheduled persistence call has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def snapshot(self) -> BoardSnapshot:
        return BoardSnapshot(
            containers=list(self.containers),
            tasks_by_container={cid: list(tasks) for cid, tasks in self.tasks_by_container.items()},
            totals={cid: tasks.total for cid, tasks in self.tasks_by_container.items()},
            stats=self._stats,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def tasks(self) -> list[Task]:
        """The full working task set, including tasks truncated from view."""
        return list(self._tasks.values())

    @property
    def stats(self) -> BoardStats:
        return self._stats

    def get_total_task_count(self) -> int:
        return self._stats.total

    def get_completed_task_count(self) -> int:
        return self._stats.completed

    def get_pending_task_count(self) -> int:
        return self._stats.pending

    def get_overdue_task_count(self) -> int:
        return self._stats.overdue

    def get_container(self, container_id: str) -> Optional[Container]:
        if container_id == "complete":
            container_id = "status-complete"
        for container in self.containers:
            if container.id == container_id:
                return container
        return None

    def find_task(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def find_task_container(self, task_id: str) -> Optional[str]:
        """Id of the container currently displaying (or owning) *task_id*."""
        for cid, bucket in self.tasks_by_container.items():
            if any(t.id == task_id for t in bucket):
                return cid
        task = self._tasks.get(task_id)
        if task is None or self.mode is None:
            return None
        return container_for_task(task, self.mode, self.containers)

    def get_tasks_for_container(self, container_id: str) -> list[Task]:
        container = self.get_container(container_id)
        if container is None:
            return []
        return list(self.tasks_by_container.get(container.id, []))

    def get_tasks_by_status(self, status: StatusValue) -> list[Task]:
        wanted = status_value(coerce_status(status))
        return [t for t in self._tasks.values() if t.status_value == wanted]

    def get_tasks_by_priority(self, priority: str) -> list[Task]:
        wanted = getattr(priority, "value", priority)
        return [t for t in self._tasks.values() if t.priority.value == wanted]
