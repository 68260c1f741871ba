"""Launcher for the Agent Activity Monitor server.

Configuration comes from the environment:
    ACTIVITY_SESSIONS_DIR      Transcript directory (default: ~/.openclaw/sessions)
    ACTIVITY_CONFIG            Optional YAML file with monitor settings
    ACTIVITY_STATE_DIR         Enables checkpoints in this directory when set
    ACTIVITY_MONITOR_PROCESSES "true" to merge running CLI processes
    ACTIVITY_HOST / ACTIVITY_PORT  Bind address (default: localhost:8090)
    ACTIVITY_LOG_DIR / LOG_LEVEL   Logging (default: /tmp/activity_monitor_logs, INFO)
"""

import asyncio
import os
import sys
from pathlib import Path

from .bus import DEFAULT_TOPIC, EventBus
from .config import MonitorConfig
from .logging_manager import LoggingManager
from .monitor import ActivityMonitor
from .persistence import JsonStateStore
from .server import ActivityMonitorServer


def build_config(bus: EventBus) -> MonitorConfig:
    """Build the monitor config from environment variables."""
    sessions_dir = os.getenv(
        "ACTIVITY_SESSIONS_DIR", str(Path.home() / ".openclaw" / "sessions")
    )
    overrides = {
        "sessions_dir": sessions_dir,
        "pubsub": (bus, DEFAULT_TOPIC),
        "monitor_processes": os.getenv("ACTIVITY_MONITOR_PROCESSES", "false").lower() == "true",
    }

    state_dir = os.getenv("ACTIVITY_STATE_DIR")
    if state_dir:
        store = JsonStateStore(state_dir)
        overrides["save_state"] = store.save
        overrides["load_state"] = store.load

    config_file = os.getenv("ACTIVITY_CONFIG")
    if config_file:
        if "ACTIVITY_SESSIONS_DIR" not in os.environ:
            overrides.pop("sessions_dir")
        return MonitorConfig.from_yaml(config_file, **overrides).validate()

    sessions_dir = overrides.pop("sessions_dir")
    return MonitorConfig.new(sessions_dir, **overrides).validate()


async def start_server() -> None:
    bus = EventBus()
    config = build_config(bus)
    monitor = ActivityMonitor(config)
    server = ActivityMonitorServer(
        monitor,
        host=os.getenv("ACTIVITY_HOST", "localhost"),
        port=int(os.getenv("ACTIVITY_PORT", "8090")),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )

    print(f"Starting Agent Activity Monitor on {server.host}:{server.port}")
    print(f"Sessions: {config.sessions_dir}")
    await server.start_server()


def main():
    """Main entry point."""
    LoggingManager(
        log_dir=os.getenv("ACTIVITY_LOG_DIR", "/tmp/activity_monitor_logs"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )
    try:
        asyncio.run(start_server())
    except KeyboardInterrupt:
        pass
    except Exception as e:
        print(f"Error starting server: {e}", file=sys.stderr)
        import traceback

        traceback.print_exc(file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
