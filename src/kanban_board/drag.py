"""Drag gesture state machine.

The presentation layer forwards raw gesture events; the controller turns each
gesture into one intent and asks the :class:`~kanban_board.session.BoardSession`
to apply it.  The controller never writes board state itself.

States per gesture::

    idle -> dragging -> committing -> idle
                     -> cancelled  -> idle
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional, Union

from loguru import logger

if TYPE_CHECKING:
    from .session import BoardSession


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class DragState(str, Enum):
    IDLE = "idle"
    DRAGGING = "dragging"
    COMMITTING = "committing"
    CANCELLED = "cancelled"


class IntentKind(str, Enum):
    REORDER_WITHIN_CONTAINER = "reorder_within_container"
    MOVE_ACROSS_CONTAINERS = "move_across_containers"
    NOOP = "noop"


class NoopReason(str, Enum):
    """Why a drop resolved to no change."""

    NO_TARGET = "no_target"          # released outside any container or task
    UNKNOWN_TARGET = "unknown_target"
    SELF = "self"
    SAME_CONTAINER = "same_container"
    SUBTASK = "subtask"
    REJECTED = "rejected"            # the session refused the mutation


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PointerDown:
    task_id: str
    x: float = 0.0
    y: float = 0.0


@dataclass(frozen=True)
class PointerMove:
    x: float
    y: float


@dataclass(frozen=True)
class DragOver:
    over_id: Optional[str]


@dataclass(frozen=True)
class Drop:
    over_id: Optional[str]


@dataclass(frozen=True)
class DragCancel:
    pass


DragEvent = Union[PointerDown, PointerMove, DragOver, Drop, DragCancel]


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DragIntent:
    kind: IntentKind
    task_id: str
    from_container_id: Optional[str]
    to_container_id: Optional[str] = None
    to_index: Optional[int] = None
    reason: Optional[NoopReason] = None

    @classmethod
    def noop(cls, task_id: str, from_container_id: Optional[str], reason: NoopReason) -> "DragIntent":
        return cls(IntentKind.NOOP, task_id, from_container_id, reason=reason)


@dataclass(frozen=True)
class DropPrediction:
    """Advisory placement shown while hovering."""

    container_id: str
    index: int


@dataclass
class DragOutcome:
    """Result of a finished gesture.

    ``intent`` is ``None`` only for a user cancel.  ``persistence`` is the
    session's scheduled store update, when one was issued.
    """

    intent: Optional[DragIntent]
    cancelled: bool = False
    persistence: Optional[asyncio.Task] = None

    @property
    def applied(self) -> bool:
        return self.intent is not None and self.intent.kind != IntentKind.NOOP


# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------

class DragController:
    """Turn pointer events into board mutations.

    Args:
        session: The board session to read from and issue mutations to.
        activation_distance: Pointer travel (px) before a press becomes a
            drag; shorter gestures are clicks.
        block_subtasks: Reject subtasks as drag sources.
    """

    def __init__(
        self,
        session: "BoardSession",
        activation_distance: Optional[float] = None,
        block_subtasks: bool = True,
    ) -> None:
        self.session = session
        if activation_distance is None:
            activation_distance = session.config.activation_distance
        self.activation_distance = max(float(activation_distance), 0.0)
        self.block_subtasks = block_subtasks

        self.state = DragState.IDLE
        self.history: list[DragState] = [DragState.IDLE]
        self.active_task_id: Optional[str] = None
        self.origin_container_id: Optional[str] = None
        self.prediction: Optional[DropPrediction] = None
        self.last_outcome: Optional[DragOutcome] = None
        self._press: Optional[tuple[str, float, float]] = None

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def handle(self, event: DragEvent) -> Union[DragOutcome, DropPrediction, None]:
        if isinstance(event, PointerDown):
            self._on_pointer_down(event)
            return None
        if isinstance(event, PointerMove):
            self._on_pointer_move(event)
            return None
        if isinstance(event, DragOver):
            return self._on_drag_over(event)
        if isinstance(event, Drop):
            return self._on_drop(event)
        if isinstance(event, DragCancel):
            return self._on_cancel()
        raise TypeError(f"Unsupported drag event: {event!r}")

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _on_pointer_down(self, event: PointerDown) -> None:
        if self.state != DragState.IDLE:
            return
        self.history = [DragState.IDLE]
        self._press = (event.task_id, event.x, event.y)
        if self.activation_distance == 0:
            self._activate()

    def _on_pointer_move(self, event: PointerMove) -> None:
        if self.state != DragState.IDLE or self._press is None:
            return
        _, x0, y0 = self._press
        if math.hypot(event.x - x0, event.y - y0) >= self.activation_distance:
            self._activate()

    def _activate(self) -> None:
        if self._press is None:
            return
        task_id = self._press[0]
        self._press = None
        if self.session.find_task(task_id) is None:
            logger.debug("Ignoring drag of unknown task {}", task_id)
            return
        self.active_task_id = task_id
        self.origin_container_id = self.session.find_task_container(task_id)
        self.prediction = None
        self._set_state(DragState.DRAGGING)

    def _on_drag_over(self, event: DragOver) -> Optional[DropPrediction]:
        if self.state != DragState.DRAGGING:
            return None
        self.prediction = self.predict(event.over_id)
        return self.prediction

    def _on_drop(self, event: Drop) -> Optional[DragOutcome]:
        if self.state != DragState.DRAGGING:
            # Released before the activation distance: a click, not a drag.
            self._press = None
            return None
        self._set_state(DragState.COMMITTING)
        try:
            intent = self.resolve(event.over_id)
            outcome = self._commit(intent)
        finally:
            self._reset()
        self.last_outcome = outcome
        return outcome

    def _on_cancel(self) -> Optional[DragOutcome]:
        self._press = None
        if self.state != DragState.DRAGGING:
            return None
        self._set_state(DragState.CANCELLED)
        self._reset()
        outcome = DragOutcome(intent=None, cancelled=True)
        self.last_outcome = outcome
        return outcome

    # ------------------------------------------------------------------
    # Intent resolution
    # ------------------------------------------------------------------

    def _locate(self, over_id: Optional[str]) -> Optional[tuple[str, Optional[int]]]:
        """Map a drop target id to ``(container_id, task_index_or_None)``.

        A subtask shown under its parent stands for that parent, so a drop
        never lands inside another task's subtask group.
        """
        if not over_id:
            return None
        container = self.session.get_container(over_id)
        if container is not None:
            return container.id, None
        over = self.session.find_task(over_id)
        if over is None:
            return None
        container_id = self.session.find_task_container(over_id)
        if container_id is None:
            return None
        positions = {t.id: i for i, t in enumerate(self.session.get_tasks_for_container(container_id))}
        if over.is_subtask and over.parent_id in positions:
            return container_id, positions[over.parent_id]
        if over_id in positions:
            return container_id, positions[over_id]
        return None

    def resolve(self, over_id: Optional[str]) -> DragIntent:
        """Classify a drop on *over_id* for the active task."""
        task_id = self.active_task_id or ""
        origin = self.origin_container_id
        task = self.session.find_task(task_id)

        if task is None:
            return DragIntent.noop(task_id, origin, NoopReason.UNKNOWN_TARGET)
        if self.block_subtasks and task.is_subtask:
            return DragIntent.noop(task_id, origin, NoopReason.SUBTASK)
        if not over_id:
            return DragIntent.noop(task_id, origin, NoopReason.NO_TARGET)
        if over_id == task_id:
            return DragIntent.noop(task_id, origin, NoopReason.SELF)

        located = self._locate(over_id)
        if located is None:
            return DragIntent.noop(task_id, origin, NoopReason.UNKNOWN_TARGET)
        container_id, over_index = located

        if container_id != origin:
            if over_index is None:
                over_index = len(self.session.get_tasks_for_container(container_id))
            return DragIntent(
                IntentKind.MOVE_ACROSS_CONTAINERS, task_id, origin,
                to_container_id=container_id, to_index=over_index,
            )

        if over_index is None:
            return DragIntent.noop(task_id, origin, NoopReason.SAME_CONTAINER)
        return DragIntent(
            IntentKind.REORDER_WITHIN_CONTAINER, task_id, origin,
            to_container_id=container_id, to_index=over_index,
        )

    def predict(self, over_id: Optional[str]) -> Optional[DropPrediction]:
        """Where the active task would land if dropped on *over_id*."""
        intent = self.resolve(over_id)
        if intent.kind == IntentKind.NOOP or intent.to_container_id is None or intent.to_index is None:
            return None
        return DropPrediction(intent.to_container_id, intent.to_index)

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def _commit(self, intent: DragIntent) -> DragOutcome:
        if intent.kind == IntentKind.NOOP:
            logger.debug("Drag of {} resolved to noop ({})", intent.task_id, intent.reason.value if intent.reason else "-")
            return DragOutcome(intent=intent)

        try:
            if intent.to_container_id is None or intent.to_index is None:
                raise ValueError(f"{intent.kind.value} intent for {intent.task_id} has no destination")
            if intent.kind == IntentKind.MOVE_ACROSS_CONTAINERS:
                persistence = self.session.move_task(
                    intent.task_id,
                    intent.from_container_id or "",
                    intent.to_container_id,
                    intent.to_index,
                )
            else:
                ordered = [t for t in self.session.get_tasks_for_container(intent.to_container_id)]
                moving = next(t for t in ordered if t.id == intent.task_id)
                ordered.remove(moving)
                ordered.insert(intent.to_index, moving)
                persistence = self.session.reorder_tasks(intent.to_container_id, ordered)
        except ValueError as exc:
            logger.warning("Board rejected drag of {}: {}", intent.task_id, exc)
            rejected = DragIntent.noop(intent.task_id, intent.from_container_id, NoopReason.REJECTED)
            return DragOutcome(intent=rejected)
        return DragOutcome(intent=intent, persistence=persistence)

    # ------------------------------------------------------------------
    # State bookkeeping
    # ------------------------------------------------------------------

    def _set_state(self, state: DragState) -> None:
        self.state = state
        self.history.append(state)

    def _reset(self) -> None:
        self.active_task_id = None
        self.origin_container_id = None
        self.prediction = None
        self._set_state(DragState.IDLE)
