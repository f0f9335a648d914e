"""Aggregate counts over a board's full task set."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

from .model import Task


@dataclass(frozen=True)
class BoardStats:
    total: int = 0
    completed: int = 0
    pending: int = 0
    overdue: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def compute_stats(tasks: Iterable[Task], now: Optional[datetime] = None) -> BoardStats:
    """Count total, completed, pending and overdue tasks.

    ``completed + pending == total`` always holds; overdue tasks are a subset
    of pending ones.
    """
    now = now or datetime.now(timezone.utc)
    total = completed = overdue = 0
    for task in tasks:
        total += 1
        if task.is_complete:
            completed += 1
        elif task.is_overdue(now):
            overdue += 1
    return BoardStats(total=total, completed=completed, pending=total - completed, overdue=overdue)
