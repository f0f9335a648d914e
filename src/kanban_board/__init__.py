"""Provide the public `kanban_board` package exports."""

from __future__ import annotations

from .adapter import PersistError, PersistResult, TaskStoreAdapter
from .config import BoardConfig, load_board_config
from .containers import BoardContext, derive_containers
from .drag import DragController, DragIntent, DragState, IntentKind, NoopReason
from .model import Container, ContainerKind, Milestone, Task, TaskStatus
from .modes import FilterContext, MilestoneMode, Mode, SupportMode, UniversalMode, parse_mode
from .organizer import ColumnTasks, organize
from .session import BoardSession
from .stats import BoardStats, compute_stats

__all__ = [
    "BoardConfig",
    "BoardContext",
    "BoardSession",
    "BoardStats",
    "ColumnTasks",
    "Container",
    "ContainerKind",
    "DragController",
    "DragIntent",
    "DragState",
    "FilterContext",
    "IntentKind",
    "Milestone",
    "MilestoneMode",
    "Mode",
    "NoopReason",
    "PersistError",
    "PersistResult",
    "SupportMode",
    "Task",
    "TaskStatus",
    "TaskStoreAdapter",
    "UniversalMode",
    "compute_stats",
    "derive_containers",
    "load_board_config",
    "organize",
    "parse_mode",
]
