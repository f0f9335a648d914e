"""Board modes, filter context and status vocabularies.

A board is organized by exactly one :data:`Mode`.  The mode is a small tagged
variant so that the container deriver and the move resolver both dispatch on
the same type instead of comparing mode strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Optional, Union

from .model import TaskStatus, TaskType


# ---------------------------------------------------------------------------
# Mode variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MilestoneMode:
    """One column per milestone of ``project_id`` plus the completed column."""

    project_id: str
    name: str = field(default="milestone", init=False)


@dataclass(frozen=True)
class UniversalMode:
    """One column per configured task status."""

    name: str = field(default="universal", init=False)


@dataclass(frozen=True)
class SupportMode:
    """One column per support status, support-type tasks only."""

    project_id: Optional[str] = None
    name: str = field(default="support", init=False)


Mode = Union[MilestoneMode, UniversalMode, SupportMode]

MODE_NAMES = ("milestone", "universal", "support")


def parse_mode(name: str, project_id: Optional[str] = None) -> Mode:
    """Build a mode from its name (as used by the CLI and HTTP layer)."""
    key = (name or "").strip().lower()
    if key in ("universal", "status"):
        return UniversalMode()
    if key == "support":
        return SupportMode(project_id=project_id)
    if key == "milestone":
        if not project_id:
            raise ValueError("Milestone mode requires a project_id")
        return MilestoneMode(project_id=project_id)
    raise ValueError(f"Unknown board mode '{name}'; expected one of {list(MODE_NAMES)}")


# ---------------------------------------------------------------------------
# Status vocabularies
# ---------------------------------------------------------------------------

DEFAULT_ACCENT = "#6366F1"

MILESTONE_PALETTE = (
    "#3B82F6",
    "#10B981",
    "#F59E0B",
    "#8B5CF6",
    "#EF4444",
    "#06B6D4",
    "#84CC16",
    "#F97316",
    "#6366F1",
    "#EC4899",
    "#14B8A6",
    "#A855F7",
)


def milestone_color(index: int) -> str:
    return MILESTONE_PALETTE[index % len(MILESTONE_PALETTE)]


@dataclass(frozen=True)
class StatusOption:
    value: str
    label: str = ""
    color: Optional[str] = None

    @property
    def title(self) -> str:
        return self.label or self.value.replace("_", " ").title()

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["StatusOption"]:
        """Accept ``"todo"`` or ``{"value": "todo", "label": ..., "color": ...}``."""
        if isinstance(raw, str) and raw.strip():
            return cls(value=raw.strip())
        if isinstance(raw, dict) and raw.get("value"):
            return cls(
                value=str(raw["value"]).strip(),
                label=str(raw.get("label") or ""),
                color=raw.get("color") or None,
            )
        return None


DEFAULT_STATUSES: tuple[StatusOption, ...] = (
    StatusOption(TaskStatus.NOT_STARTED.value, "Not Started", "#9CA3AF"),
    StatusOption(TaskStatus.TODO.value, "To Do", "#6B7280"),
    StatusOption(TaskStatus.IN_PROGRESS.value, "In Progress", "#3B82F6"),
    StatusOption(TaskStatus.COMPLETE.value, "Complete", "#10B981"),
)

DEFAULT_SUPPORT_STATUSES: tuple[StatusOption, ...] = (
    StatusOption(TaskStatus.NOT_STARTED.value, "Not Started"),
    StatusOption(TaskStatus.TODO.value, "To Do"),
    StatusOption(TaskStatus.IN_PROGRESS.value, "In Progress"),
    StatusOption(TaskStatus.COMPLETE.value, "Complete"),
)


# ---------------------------------------------------------------------------
# Filter context
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FilterContext:
    """Filters applied when querying the task store.

    ``extra`` holds free-form ``key=value`` equality filters on task fields.
    """

    company_id: Optional[str] = None
    project_id: Optional[str] = None
    contact_id: Optional[str] = None
    milestone_id: Optional[str] = None
    show_completed: bool = True
    search_query: Optional[str] = None
    status_filter: Optional[str] = None
    task_type: Optional[str] = None
    extra: tuple[tuple[str, str], ...] = ()

    def for_mode(self, mode: Mode) -> "FilterContext":
        """Narrow the filters to what *mode* implies."""
        if isinstance(mode, MilestoneMode):
            return replace(self, project_id=mode.project_id)
        if isinstance(mode, SupportMode):
            project_id = mode.project_id or self.project_id
            return replace(self, project_id=project_id, task_type=TaskType.SUPPORT.value)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "company_id": self.company_id,
            "project_id": self.project_id,
            "contact_id": self.contact_id,
            "milestone_id": self.milestone_id,
            "show_completed": self.show_completed,
            "search_query": self.search_query,
            "status_filter": self.status_filter,
            "task_type": self.task_type,
            "extra": dict(self.extra),
        }
