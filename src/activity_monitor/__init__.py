"""Agent activity monitor.

Tails coding-agent session transcripts, parses them incrementally and
publishes activity snapshots.
"""

__version__ = "0.1.0"

from .bus import Event, EventBus
from .config import MonitorConfig, validate
from .errors import ActivityMonitorError, ConfigError, PubSubNotConfiguredError
from .hooks import CallbackHooks, MonitorHooks
from .models import Action, AgentActivity, AgentStatus, AgentType, CacheEntry, MonitorState
from .monitor import ActivityMonitor
from .persistence import JsonStateStore

__all__ = [
    "Action",
    "ActivityMonitor",
    "ActivityMonitorError",
    "AgentActivity",
    "AgentStatus",
    "AgentType",
    "CacheEntry",
    "CallbackHooks",
    "ConfigError",
    "Event",
    "EventBus",
    "JsonStateStore",
    "MonitorConfig",
    "MonitorHooks",
    "MonitorState",
    "PubSubNotConfiguredError",
    "__version__",
    "validate",
]
