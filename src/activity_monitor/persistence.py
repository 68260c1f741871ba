"""JSON checkpoint storage for monitor state.

JsonStateStore implements the save_state/load_state callback signatures so
it can be plugged straight into MonitorConfig:

    store = JsonStateStore("/var/lib/activity")
    config = MonitorConfig.new(sessions_dir, save_state=store.save, load_state=store.load)
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

from .models import MonitorState

logger = logging.getLogger(__name__)


class JsonStateStore:
    """Stores MonitorState checkpoints as JSON files in a directory.

    Writes go to a temporary file that is atomically renamed over the old
    checkpoint, so a crash mid-write never leaves a corrupt file behind.

    Attributes:
        state_dir: Directory holding checkpoint files.
    """

    def __init__(self, state_dir: str | Path):
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def path_for(self, persistence_file: str) -> Path:
        path = Path(persistence_file)
        return path if path.is_absolute() else self.state_dir / path

    def save(self, persistence_file: str, state: MonitorState) -> None:
        """Write a checkpoint.

        Raises:
            OSError: If the file can't be written.
        """
        target = self.path_for(persistence_file)
        temp_file = target.with_suffix(target.suffix + ".tmp")
        data = state.to_dict()

        with self._lock:
            with temp_file.open("w") as f:
                json.dump(data, f, indent=2)
                f.flush()
            temp_file.replace(target)

        logger.debug(f"Saved {len(state.agents)} agents to {target}")

    def load(self, persistence_file: str, defaults: MonitorState) -> MonitorState:
        """Read a checkpoint, returning defaults when none exists.

        Raises:
            json.JSONDecodeError: If the checkpoint is corrupt.
            OSError: If the file exists but can't be read.
        """
        target = self.path_for(persistence_file)
        if not target.exists():
            logger.info(f"No checkpoint at {target}, starting fresh")
            return defaults

        with target.open("r") as f:
            data = json.load(f)

        state = MonitorState.from_dict(data)
        logger.info(f"Loaded {len(state.agents)} agents from {target}")
        return state
