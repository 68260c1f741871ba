"""Shared fixtures for activity monitor tests."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from helpers import assistant_record, jsonl, model_record, session_record, tool_call

from activity_monitor.config import MonitorConfig

SessionWriter = Callable[..., Path]


@pytest.fixture
def sessions_dir(tmp_path: Path) -> Path:
    """Create temporary sessions directory."""
    directory = tmp_path / "sessions"
    directory.mkdir()
    return directory


@pytest.fixture
def write_session(sessions_dir: Path) -> SessionWriter:
    """Write (or append) JSONL records to a transcript in sessions_dir."""

    def _write(
        name: str, records: list[Any], append: bool = False, trailing_newline: bool = True
    ) -> Path:
        path = sessions_dir / name
        with path.open("a" if append else "w") as f:
            f.write(jsonl(records, trailing_newline))
        return path

    return _write


@pytest.fixture
def sample_records() -> list[dict]:
    """Session s1 on claude-opus reading /repo/a.py."""
    return [
        session_record("s1", "/repo"),
        model_record("claude-opus"),
        assistant_record(tool_call("Read", path="/repo/a.py")),
    ]


@pytest.fixture
def monitor_config(sessions_dir: Path) -> MonitorConfig:
    """Config with timers long enough that only explicit polls run."""
    return MonitorConfig.new(
        sessions_dir,
        poll_interval_seconds=60,
        cache_cleanup_interval_seconds=60,
        gc_interval_seconds=60,
        file_retry_delay_seconds=0,
    )
