"""Tests for environment-driven configuration and logging setup."""

import json
import logging
from pathlib import Path

import pytest

from activity_monitor.__main__ import build_config
from activity_monitor.bus import DEFAULT_TOPIC, EventBus
from activity_monitor.errors import ConfigError
from activity_monitor.logging_manager import LoggingManager
from activity_monitor.models import MonitorState


@pytest.fixture
def clean_env(monkeypatch):
    for name in (
        "ACTIVITY_SESSIONS_DIR",
        "ACTIVITY_CONFIG",
        "ACTIVITY_STATE_DIR",
        "ACTIVITY_MONITOR_PROCESSES",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestBuildConfig:
    """Tests for build_config()."""

    def test_defaults(self, clean_env) -> None:
        bus = EventBus()

        config = build_config(bus)

        assert config.sessions_dir == str(Path.home() / ".openclaw" / "sessions")
        assert config.pubsub == (bus, DEFAULT_TOPIC)
        assert config.monitor_processes is False
        assert config.save_state is None

    def test_environment_overrides(self, clean_env, tmp_path: Path) -> None:
        clean_env.setenv("ACTIVITY_SESSIONS_DIR", str(tmp_path))
        clean_env.setenv("ACTIVITY_MONITOR_PROCESSES", "TRUE")
        clean_env.setenv("ACTIVITY_STATE_DIR", str(tmp_path / "state"))

        config = build_config(EventBus())

        assert config.sessions_dir == str(tmp_path)
        assert config.monitor_processes is True
        config.save_state(config.persistence_file, MonitorState(last_poll=1))
        assert config.load_state(config.persistence_file, MonitorState()).last_poll == 1

    def test_yaml_file(self, clean_env, tmp_path: Path) -> None:
        config_file = tmp_path / "monitor.yaml"
        config_file.write_text(
            f"sessions_dir: {tmp_path}\npoll_interval_seconds: 2\nmax_files_per_poll: 8\n"
        )
        clean_env.setenv("ACTIVITY_CONFIG", str(config_file))

        config = build_config(EventBus())

        assert config.sessions_dir == str(tmp_path)
        assert config.poll_interval_seconds == 2
        assert config.max_files_per_poll == 8

    def test_environment_beats_yaml(self, clean_env, tmp_path: Path) -> None:
        config_file = tmp_path / "monitor.yaml"
        config_file.write_text("sessions_dir: /from/yaml\n")
        clean_env.setenv("ACTIVITY_CONFIG", str(config_file))
        clean_env.setenv("ACTIVITY_SESSIONS_DIR", "/from/env")

        assert build_config(EventBus()).sessions_dir == "/from/env"

    def test_invalid_yaml_values(self, clean_env, tmp_path: Path) -> None:
        config_file = tmp_path / "monitor.yaml"
        config_file.write_text(f"sessions_dir: {tmp_path}\npoll_interval_seconds: 0\n")
        clean_env.setenv("ACTIVITY_CONFIG", str(config_file))

        with pytest.raises(ConfigError, match="poll_interval_seconds"):
            build_config(EventBus())


class TestLoggingManager:
    """Tests for LoggingManager."""

    def test_writes_json_lines_with_extras(self, tmp_path: Path) -> None:
        manager = LoggingManager(log_dir=tmp_path, log_level="DEBUG", logger_name="am_test")
        try:
            logging.getLogger("am_test.monitor").info(
                "Poll complete", extra={"agents": 2, "path": tmp_path}
            )
        finally:
            manager.close()

        lines = (tmp_path / "activity_monitor.log").read_text().splitlines()
        entry = json.loads(lines[-1])
        assert entry["message"] == "Poll complete"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "am_test.monitor"
        assert entry["agents"] == 2
        assert entry["path"] == str(tmp_path)

    def test_console_level(self, tmp_path: Path) -> None:
        manager = LoggingManager(log_dir=tmp_path, log_level="warning", logger_name="am_test2")
        try:
            console = manager.logger.handlers[0]
            assert console.level == logging.WARNING
            assert manager.logger.propagate is False
        finally:
            manager.close()

        assert manager.logger.handlers == []
