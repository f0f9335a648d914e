"""Tests for board configuration loading and logging setup."""

from __future__ import annotations

from pathlib import Path

from loguru import logger

from kanban_board.config import LOG_LEVEL_ENV, BoardConfig, load_board_config
from kanban_board.logging_utils import configure_logging


def _write_config(project_dir: Path, text: str) -> None:
    state_dir = project_dir / ".kanban"
    state_dir.mkdir(parents=True, exist_ok=True)
    (state_dir / "config.yaml").write_text(text, encoding="utf-8")


class TestLoadBoardConfig:
    def test_missing_file_gives_defaults(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)
        cfg, err = load_board_config(tmp_path)
        assert err is None
        assert cfg == BoardConfig()
        assert cfg.completed_limit == 20
        assert cfg.activation_distance == 8.0
        assert cfg.show_completed is True

    def test_reads_values(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)
        _write_config(tmp_path, """
statuses:
  - todo
  - value: review
    label: In Review
    color: "#FF0000"
  - complete
completed_limit: 5
drag:
  activation_distance: 0
default_mode: support
show_completed: false
log_level: debug
""")
        cfg, err = load_board_config(tmp_path)
        assert err is None
        assert [s.value for s in cfg.statuses] == ["todo", "review", "complete"]
        assert cfg.statuses[1].title == "In Review"
        assert cfg.completed_limit == 5
        assert cfg.activation_distance == 0.0
        assert cfg.default_mode == "support"
        assert cfg.show_completed is False
        assert cfg.log_level == "DEBUG"

    def test_invalid_values_ignored(self, tmp_path: Path) -> None:
        cfg = BoardConfig.from_dict({
            "statuses": "todo",
            "completed_limit": -1,
            "activation_distance": "far",
            "default_mode": "calendar",
        })
        assert cfg == BoardConfig()

    def test_bad_yaml_reports_error(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.delenv(LOG_LEVEL_ENV, raising=False)
        _write_config(tmp_path, "statuses: [todo\n")
        cfg, err = load_board_config(tmp_path)
        assert err is not None
        assert cfg == BoardConfig()

    def test_non_mapping_reports_error(self, tmp_path: Path) -> None:
        _write_config(tmp_path, "- a\n- b\n")
        _, err = load_board_config(tmp_path)
        assert err is not None and "Expected a mapping" in err

    def test_env_overrides_log_level(self, tmp_path: Path, monkeypatch) -> None:
        _write_config(tmp_path, "log_level: info\n")
        monkeypatch.setenv(LOG_LEVEL_ENV, "warning")
        cfg, _ = load_board_config(tmp_path)
        assert cfg.log_level == "WARNING"


class TestConfigureLogging:
    def test_level_filters_messages(self, capsys) -> None:
        configure_logging("warning")
        logger.info("quiet")
        logger.warning("loud {}", 1)
        err = capsys.readouterr().err
        assert "loud 1" in err
        assert "quiet" not in err
