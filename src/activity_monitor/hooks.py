"""Capability hooks injected into the monitor.

MonitorHooks is the strategy the monitor calls for persistence, memory
reclamation and process lookup. The base class does nothing (or runs the
interpreter's collector for gc); CallbackHooks adapts the optional
callables carried by MonitorConfig.
"""

from __future__ import annotations

import gc
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from .models import AgentActivity, MonitorState

if TYPE_CHECKING:
    from .config import GcCallback, LoadStateCallback, ProcessFinderCallback, SaveStateCallback

logger = logging.getLogger(__name__)


class MonitorHooks:
    """Default hooks: nothing is persisted and no processes are found."""

    @property
    def has_process_finder(self) -> bool:
        return False

    def save_state(self, persistence_file: str, state: MonitorState) -> None:
        return None

    def load_state(self, persistence_file: str, defaults: MonitorState) -> MonitorState:
        return defaults

    def trigger_gc(self, name: str) -> None:
        collected = gc.collect()
        logger.debug(f"{name}: gc.collect() reclaimed {collected} objects")

    def find_processes(self, timeout_ms: int) -> dict[str, AgentActivity]:
        return {}


class CallbackHooks(MonitorHooks):
    """Hooks backed by optional plain callables.

    Any callable left as None falls back to the MonitorHooks default.
    """

    def __init__(
        self,
        save_state: SaveStateCallback | None = None,
        load_state: LoadStateCallback | None = None,
        gc_trigger: GcCallback | None = None,
        find_processes: ProcessFinderCallback | None = None,
    ):
        self._save_state = save_state
        self._load_state = load_state
        self._gc_trigger = gc_trigger
        self._find_processes = find_processes

    @property
    def has_process_finder(self) -> bool:
        return self._find_processes is not None

    def save_state(self, persistence_file: str, state: MonitorState) -> None:
        if self._save_state is not None:
            self._save_state(persistence_file, state)

    def load_state(self, persistence_file: str, defaults: MonitorState) -> MonitorState:
        """Load state through the callback, accepting a MonitorState or a mapping.

        Raises:
            TypeError: If the callback returns something else.
        """
        if self._load_state is None:
            return defaults

        loaded: Any = self._load_state(persistence_file, defaults)
        if loaded is None:
            return defaults
        if isinstance(loaded, MonitorState):
            # Round-trip so timestamps and enums are normalized.
            return MonitorState.from_dict(loaded.to_dict())
        if isinstance(loaded, Mapping):
            return MonitorState.from_dict(dict(loaded))
        raise TypeError(f"load_state returned {type(loaded).__name__}, expected MonitorState")

    def trigger_gc(self, name: str) -> None:
        if self._gc_trigger is not None:
            self._gc_trigger(name)
        else:
            super().trigger_gc(name)

    def find_processes(self, timeout_ms: int) -> dict[str, AgentActivity]:
        if self._find_processes is None:
            return {}
        return dict(self._find_processes(timeout_ms) or {})
