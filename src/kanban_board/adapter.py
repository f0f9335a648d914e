"""Task store adapter contract and persistence outcomes.

The board engine treats the task store as an opaque async service.  Every
call made on behalf of a board mutation is wrapped by :func:`attempt`, which
turns exceptions into a :class:`PersistResult` so callers can continue a
cascade without relying on exception fallthrough.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Optional

from loguru import logger

from .model import Milestone, StatusValue, Task
from .modes import FilterContext


class BoardError(Exception):
    """Base class for board engine errors."""


class UnknownTaskError(BoardError, KeyError):
    """Raised by stores when a task or milestone id does not exist."""

    def __init__(self, item_id: str, kind: str = "Task") -> None:
        super().__init__(item_id)
        self.item_id = item_id
        self.kind = kind

    def __str__(self) -> str:
        return f"{self.kind} {self.item_id} not found"


class PersistError(BoardError):
    """A failed adapter call, carried inside a :class:`PersistResult`."""

    def __init__(self, operation: str, target_id: str, cause: BaseException) -> None:
        super().__init__(f"{operation}({target_id}) failed: {cause}")
        self.operation = operation
        self.target_id = target_id
        self.cause = cause


@dataclass(frozen=True)
class PersistResult:
    """Outcome of one adapter call: either ``task`` or ``error`` is meaningful."""

    operation: str
    target_id: str
    task: Optional[Task] = None
    error: Optional[PersistError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def attempt(operation: str, target_id: str, call: Awaitable[Any]) -> PersistResult:
    """Await *call* and capture its outcome instead of raising."""
    try:
        value = await call
    except Exception as exc:
        logger.debug("Adapter call {}({}) raised {!r}", operation, target_id, exc)
        return PersistResult(operation, target_id, error=PersistError(operation, target_id, exc))
    return PersistResult(operation, target_id, task=value if isinstance(value, Task) else None)


class TaskStoreAdapter(ABC):
    """Async task store consumed by :class:`~kanban_board.session.BoardSession`.

    Implementations must be idempotent per task id: two rapid updates of the
    same task may complete in either order.
    """

    @abstractmethod
    async def list_tasks(self, query: FilterContext) -> list[Task]:
        raise NotImplementedError

    @abstractmethod
    async def update_task_status(self, task_id: str, new_status: StatusValue) -> Task:
        raise NotImplementedError

    @abstractmethod
    async def update_task_milestone(self, task_id: str, milestone_id: Optional[str]) -> Task:
        raise NotImplementedError

    @abstractmethod
    async def update_task_order(self, task_id: str, container_id: str, new_index: int) -> None:
        raise NotImplementedError

    async def list_milestones(self, project_id: str) -> list[Milestone]:
        return []

    async def update_milestone_order(self, milestone_id: str, new_index: int) -> None:
        raise NotImplementedError("This store does not support milestone ordering")
