"""Load optional board configuration from `.kanban/config.yaml`."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .modes import DEFAULT_STATUSES, DEFAULT_SUPPORT_STATUSES, MODE_NAMES, StatusOption
from .organizer import COMPLETED_LIMIT
from .store import STATE_DIR_NAME

CONFIG_FILE = "config.yaml"
LOG_LEVEL_ENV = "KANBAN_LOG_LEVEL"
DEFAULT_ACTIVATION_DISTANCE = 8.0


@dataclass
class BoardConfig:
    statuses: list[StatusOption] = field(default_factory=lambda: list(DEFAULT_STATUSES))
    support_statuses: list[StatusOption] = field(default_factory=lambda: list(DEFAULT_SUPPORT_STATUSES))
    completed_limit: int = COMPLETED_LIMIT
    activation_distance: float = DEFAULT_ACTIVATION_DISTANCE
    default_mode: str = "universal"
    show_completed: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BoardConfig":
        """Build a config from a parsed mapping, ignoring invalid values."""
        cfg = cls()
        statuses = _status_options(_get_nested(data, "statuses"))
        if statuses:
            cfg.statuses = statuses
        support = _status_options(_get_nested(data, "support_statuses"))
        if support:
            cfg.support_statuses = support
        limit = _get_nested(data, "completed_limit")
        if isinstance(limit, int) and limit > 0:
            cfg.completed_limit = limit
        distance = _get_nested(data, "drag", "activation_distance")
        if distance is None:
            distance = _get_nested(data, "activation_distance")
        if isinstance(distance, (int, float)) and distance >= 0:
            cfg.activation_distance = float(distance)
        mode = _get_nested(data, "default_mode")
        if isinstance(mode, str) and mode in MODE_NAMES:
            cfg.default_mode = mode
        show_completed = _get_nested(data, "show_completed")
        if isinstance(show_completed, bool):
            cfg.show_completed = show_completed
        level = _get_nested(data, "log_level")
        if isinstance(level, str) and level.strip():
            cfg.log_level = level.strip().upper()
        return cfg


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _status_options(raw: Any) -> list[StatusOption]:
    if not isinstance(raw, list):
        return []
    options = [StatusOption.from_raw(item) for item in raw]
    return [o for o in options if o is not None]


def load_board_config(project_dir: Path) -> tuple[BoardConfig, str | None]:
    """Load the optional board config file.

    Args:
        project_dir: Project root directory.

    Returns:
        A tuple of `(config, error_message)`. A missing file yields the
        defaults and no error; an unreadable file yields the defaults and the
        parse error.
    """
    path = Path(project_dir).resolve() / STATE_DIR_NAME / CONFIG_FILE
    cfg = BoardConfig()
    error: str | None = None
    if path.exists():
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            data = None
            error = f"Failed to read {path}: {exc}"
        if isinstance(data, dict):
            cfg = BoardConfig.from_dict(data)
        elif data is not None and error is None:
            error = f"Expected a mapping in {path}"
    env_level = os.environ.get(LOG_LEVEL_ENV)
    if env_level:
        cfg.log_level = env_level.strip().upper()
    return cfg, error
