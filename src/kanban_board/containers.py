"""Derive the ordered container (column) set for a board.

Everything here is pure: no I/O, no logging, and no exceptions for malformed
input.  The completed column is always part of the result so completed work is
never dropped from view.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from .model import Container, ContainerKind, Milestone, Task, TaskStatus, status_sort_key, status_title
from .modes import (
    DEFAULT_ACCENT,
    DEFAULT_STATUSES,
    DEFAULT_SUPPORT_STATUSES,
    FilterContext,
    MilestoneMode,
    Mode,
    StatusOption,
    SupportMode,
    UniversalMode,
    milestone_color,
)

COMPLETE_CONTAINER_ID = "status-complete"
UNASSIGNED_CONTAINER_ID = "milestone-unassigned"
COMPLETE_COLOR = "#10B981"
UNASSIGNED_COLOR = "#9CA3AF"


def status_container_id(status: str) -> str:
    return f"status-{status}"


def milestone_container_id(milestone_id: str) -> str:
    return f"milestone-{milestone_id}"


def is_complete_container(container_id: Optional[str]) -> bool:
    return container_id in ("complete", COMPLETE_CONTAINER_ID)


@dataclass
class BoardContext:
    """Inputs the deriver needs besides the mode."""

    filters: FilterContext = field(default_factory=FilterContext)
    milestones: Sequence[Milestone] = ()
    tasks: Sequence[Task] = ()
    statuses: Sequence[StatusOption] = DEFAULT_STATUSES
    support_statuses: Sequence[StatusOption] = DEFAULT_SUPPORT_STATUSES


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------

def derive_containers(mode: Mode, context: Optional[BoardContext] = None) -> list[Container]:
    """Return the ordered containers for *mode*.

    Parameters
    ----------
    mode:
        The board mode variant.
    context:
        Milestones, tasks and status vocabularies.  ``None`` behaves like an
        empty context.
    """
    ctx = context or BoardContext()
    if isinstance(mode, MilestoneMode):
        return _milestone_containers(mode, ctx)
    if isinstance(mode, SupportMode):
        return _status_containers(ctx.support_statuses, ctx.tasks, ContainerKind.SUPPORT)
    if isinstance(mode, UniversalMode):
        return _status_containers(ctx.statuses, ctx.tasks, ContainerKind.STATUS)
    return [_complete_container(ContainerKind.STATUS)]


# ---------------------------------------------------------------------------
# Per-mode derivation
# ---------------------------------------------------------------------------

def _complete_container(kind: ContainerKind, option: Optional[StatusOption] = None) -> Container:
    return Container(
        id=COMPLETE_CONTAINER_ID,
        title=option.title if option else "Complete",
        color=(option.color if option and option.color else COMPLETE_COLOR),
        kind=kind,
        source_id=TaskStatus.COMPLETE.value,
    )


def _milestone_containers(mode: MilestoneMode, ctx: BoardContext) -> list[Container]:
    milestones = [
        m for m in _safe(ctx.milestones)
        if isinstance(m, Milestone) and (m.project_id is None or m.project_id == mode.project_id)
    ]
    milestones.sort(key=lambda m: m.order_index)

    containers: list[Container] = []
    seen: set[str] = set()
    for index, milestone in enumerate(milestones):
        cid = milestone_container_id(milestone.id)
        if cid in seen:
            continue
        seen.add(cid)
        containers.append(Container(
            id=cid,
            title=milestone.name or f"Milestone {index + 1}",
            color=milestone.color or milestone_color(index),
            kind=ContainerKind.MILESTONE,
            source_id=milestone.id,
            milestone=milestone,
        ))

    known = {m.id for m in milestones}
    # Open tasks without a milestone, or pointing at one that no longer
    # exists, collect in the Unassigned column.
    if any(
        isinstance(t, Task) and not t.is_complete and t.milestone_id not in known
        for t in _safe(ctx.tasks)
    ):
        containers.append(Container(
            id=UNASSIGNED_CONTAINER_ID,
            title="Unassigned",
            color=UNASSIGNED_COLOR,
            kind=ContainerKind.MILESTONE,
            source_id=None,
        ))

    containers.append(_complete_container(ContainerKind.STATUS))
    return containers


def _status_containers(
    options: Iterable[StatusOption],
    tasks: Iterable[Task],
    kind: ContainerKind,
) -> list[Container]:
    containers: list[Container] = []
    seen: set[str] = {TaskStatus.COMPLETE.value}
    complete_option: Optional[StatusOption] = None

    for option in _safe(options):
        if not isinstance(option, StatusOption) or not option.value:
            continue
        if option.value == TaskStatus.COMPLETE.value:
            complete_option = complete_option or option
            continue
        if option.value in seen:
            continue
        seen.add(option.value)
        containers.append(Container(
            id=status_container_id(option.value),
            title=option.title,
            color=option.color or DEFAULT_ACCENT,
            kind=kind,
            source_id=option.value,
        ))

    # Statuses present on tasks but missing from the vocabulary still get a
    # column, in workflow order; custom statuses keep first-seen order.
    extra: list[str] = []
    for task in _safe(tasks):
        if not isinstance(task, Task):
            continue
        value = task.status_value
        if not value or value in seen:
            continue
        seen.add(value)
        extra.append(value)
    for value in sorted(extra, key=status_sort_key):
        containers.append(Container(
            id=status_container_id(value),
            title=status_title(value),
            color=DEFAULT_ACCENT,
            kind=kind,
            source_id=value,
        ))

    containers.append(_complete_container(kind, complete_option))
    return containers


def _safe(items: Optional[Iterable]) -> list:
    if items is None:
        return []
    try:
        return list(items)
    except TypeError:
        return []


# ---------------------------------------------------------------------------
# Task placement
# ---------------------------------------------------------------------------

def container_for_task(task: Task, mode: Mode, containers: Sequence[Container]) -> Optional[str]:
    """Return the id of the container *task* belongs to, or ``None``.

    Completed tasks always land in the completed column.  In milestone mode a
    task whose milestone is not on the board falls back to Unassigned.
    """
    ids = {c.id for c in containers}
    if task.is_complete:
        return COMPLETE_CONTAINER_ID if COMPLETE_CONTAINER_ID in ids else None
    if isinstance(mode, MilestoneMode):
        cid = milestone_container_id(task.milestone_id) if task.milestone_id else UNASSIGNED_CONTAINER_ID
        if cid not in ids:
            cid = UNASSIGNED_CONTAINER_ID
    else:
        cid = status_container_id(task.status_value)
    return cid if cid in ids else None


def bucket_tasks(
    tasks: Iterable[Task],
    mode: Mode,
    containers: Sequence[Container],
) -> dict[str, list[Task]]:
    """Group *tasks* by container id, keeping input order within each bucket."""
    buckets: dict[str, list[Task]] = {c.id: [] for c in containers}
    for task in tasks:
        cid = container_for_task(task, mode, containers)
        if cid is not None:
            buckets[cid].append(task)
    return buckets


# ---------------------------------------------------------------------------
# Move resolution
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldChange:
    """One task field a cross-container move rewrites."""

    name: str
    value: Optional[str]


def resolve_move_change(mode: Mode, task: Task, target: Container) -> list[FieldChange]:
    """Return the field updates implied by dropping *task* on *target*.

    Milestone columns reassign ``milestone_id``; a completed task leaving the
    completed column is reopened as ``todo`` first.  Every other column sets
    ``status`` to the column's status.
    """
    if target.kind == ContainerKind.MILESTONE:
        if not isinstance(mode, MilestoneMode):
            raise ValueError(f"Container {target.id} is a milestone column outside milestone mode")
        changes: list[FieldChange] = []
        if task.is_complete:
            changes.append(FieldChange("status", TaskStatus.TODO.value))
        if task.milestone_id != target.source_id or not changes:
            changes.append(FieldChange("milestone_id", target.source_id))
        return changes
    if not target.status:
        raise ValueError(f"Container {target.id} has no status to assign")
    return [FieldChange("status", target.status)]
