"""Exception types raised by the activity monitor."""

from __future__ import annotations


class ActivityMonitorError(Exception):
    """Base class for activity monitor errors."""


class ConfigError(ActivityMonitorError, ValueError):
    """Raised when a MonitorConfig fails validation."""


class PubSubNotConfiguredError(ActivityMonitorError, RuntimeError):
    """Raised when subscribing to a monitor that has no pub/sub target."""
