"""Configuration for the agent activity monitor.

This module defines the immutable configuration object that controls the
monitor's behavior: where transcripts live, polling and housekeeping
intervals, cache limits and the optional capability hooks.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Executor
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from .errors import ConfigError

if TYPE_CHECKING:
    from .bus import EventBus
    from .hooks import MonitorHooks
    from .models import AgentActivity, MonitorState

logger = logging.getLogger(__name__)

SaveStateCallback = Callable[[str, "MonitorState"], Any]
LoadStateCallback = Callable[[str, "MonitorState"], Any]
GcCallback = Callable[[str], Any]
ProcessFinderCallback = Callable[[int], "dict[str, AgentActivity]"]

# Fields that can be set from a YAML file; callables and live objects can't.
_SCALAR_FIELDS = {
    "sessions_dir",
    "persistence_file",
    "poll_interval_seconds",
    "cache_cleanup_interval_seconds",
    "gc_interval_seconds",
    "process_timeout_seconds",
    "max_cache_entries",
    "max_recent_actions",
    "file_retry_attempts",
    "file_retry_delay_seconds",
    "file_extension",
    "activity_window_seconds",
    "max_files_per_poll",
    "monitor_processes",
    "name",
}

_POSITIVE_FIELDS = (
    "poll_interval_seconds",
    "cache_cleanup_interval_seconds",
    "gc_interval_seconds",
    "process_timeout_seconds",
    "max_cache_entries",
    "max_recent_actions",
    "file_retry_attempts",
    "activity_window_seconds",
    "max_files_per_poll",
)


@dataclass(frozen=True)
class MonitorConfig:
    """Configuration for the activity monitor.

    All fields except sessions_dir have defaults that work standalone. The
    callback fields are optional capabilities; leaving them unset behaves
    as a no-op (see hooks()).

    Attributes:
        sessions_dir: Directory containing session transcript files (required).
        persistence_file: File name handed to save_state/load_state.
        poll_interval_seconds: Seconds between poll cycles (default: 5).
        cache_cleanup_interval_seconds: Seconds between cache cleanups (default: 300).
        gc_interval_seconds: Seconds between memory reclamation triggers (default: 300).
        process_timeout_seconds: Timeout handed to the process finder (default: 10).
        max_cache_entries: Cache size enforced by cleanup (default: 1000).
        max_recent_actions: Recent actions retained per agent (default: 10).
        file_retry_attempts: Read attempts per file per cycle (default: 3).
        file_retry_delay_seconds: Delay between read attempts (default: 0.1).
        file_extension: Recognized transcript extension (default: ".jsonl").
        activity_window_seconds: Files older than this are ignored (default: 1800).
        max_files_per_poll: Candidate files examined per cycle (default: 5).
        save_state: Optional callback(persistence_file, state).
        load_state: Optional callback(persistence_file, defaults) -> state.
        gc_trigger: Optional callback(name) run on the gc interval.
        find_processes: Optional callback(timeout_ms) -> {id: AgentActivity}.
        pubsub: Optional (EventBus, topic) pair used to broadcast snapshots.
        task_runner: Optional executor for poll and persistence work.
        monitor_processes: Whether to merge process-table rows (default: False).
        name: Optional logical name for the monitor.
    """

    sessions_dir: str | None = None
    persistence_file: str = "agent_activity_state.json"

    poll_interval_seconds: float = 5.0
    cache_cleanup_interval_seconds: float = 300.0
    gc_interval_seconds: float = 300.0
    process_timeout_seconds: float = 10.0

    max_cache_entries: int = 1000
    max_recent_actions: int = 10
    file_retry_attempts: int = 3
    file_retry_delay_seconds: float = 0.1

    file_extension: str = ".jsonl"
    activity_window_seconds: float = 30 * 60
    max_files_per_poll: int = 5

    save_state: SaveStateCallback | None = None
    load_state: LoadStateCallback | None = None
    gc_trigger: GcCallback | None = None
    find_processes: ProcessFinderCallback | None = None

    pubsub: tuple[EventBus, str] | None = None
    task_runner: Executor | None = None
    monitor_processes: bool = False
    name: str | None = None

    @classmethod
    def minimal(cls, sessions_dir: str | Path) -> MonitorConfig:
        """Create a capability-free config for the given sessions directory."""
        return cls(sessions_dir=str(sessions_dir))

    @classmethod
    def new(cls, sessions_dir: str | Path, **overrides: Any) -> MonitorConfig:
        """Create a config with overrides merged onto minimal defaults.

        Args:
            sessions_dir: Directory containing session transcripts.
            **overrides: Field values replacing the defaults.

        Returns:
            New MonitorConfig.

        Raises:
            ConfigError: If an override names an unknown field.
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ConfigError(f"Unknown config option(s): {', '.join(unknown)}")
        return replace(cls.minimal(sessions_dir), **overrides)

    @classmethod
    def from_yaml(cls, path: str | Path, **overrides: Any) -> MonitorConfig:
        """Load scalar settings from a YAML mapping.

        Callback fields can't be expressed in YAML and must be passed as
        overrides.

        Args:
            path: YAML file to read.
            **overrides: Field values applied after the file contents.

        Returns:
            New MonitorConfig (not yet validated).

        Raises:
            ConfigError: If the file is missing, unparsable or not a mapping.
        """
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigError(f"Monitor configuration file not found: {config_path}")

        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse monitor configuration YAML: {e}") from e

        if not isinstance(data, dict):
            raise ConfigError(f"Monitor configuration must be a mapping: {config_path}")

        ignored = sorted(set(data) - _SCALAR_FIELDS)
        if ignored:
            logger.warning(f"Ignoring unsupported config keys in {config_path}: {ignored}")

        values = {k: v for k, v in data.items() if k in _SCALAR_FIELDS}
        values.update(overrides)
        sessions_dir = values.pop("sessions_dir", None)
        logger.debug(f"Loaded monitor configuration from {config_path}")
        return replace(cls(sessions_dir=sessions_dir), **values)

    def validate(self) -> MonitorConfig:
        """Validate this config. See validate()."""
        return validate(self)

    def hooks(self) -> MonitorHooks:
        """Return the capability strategy built from the callback fields."""
        from .hooks import CallbackHooks

        return CallbackHooks(
            save_state=self.save_state,
            load_state=self.load_state,
            gc_trigger=self.gc_trigger,
            find_processes=self.find_processes,
        )


def validate(config: Any) -> MonitorConfig:
    """Validate a config before the monitor starts.

    Args:
        config: Object to validate.

    Returns:
        The same config when valid.

    Raises:
        ConfigError: If config is not a MonitorConfig, sessions_dir is unset,
            or an interval/limit is not positive.
    """
    if not isinstance(config, MonitorConfig):
        raise ConfigError("config must be a MonitorConfig")

    if config.sessions_dir is None:
        raise ConfigError("sessions_dir is required")

    for name in _POSITIVE_FIELDS:
        value = getattr(config, name)
        if isinstance(value, bool) or not isinstance(value, int | float):
            raise ConfigError(f"{name} must be a number, got {value!r}")
        if value <= 0:
            raise ConfigError(f"{name} must be positive, got {value!r}")

    delay = config.file_retry_delay_seconds
    if isinstance(delay, bool) or not isinstance(delay, int | float):
        raise ConfigError(f"file_retry_delay_seconds must be a number, got {delay!r}")
    if delay < 0:
        raise ConfigError("file_retry_delay_seconds must not be negative")

    return config
