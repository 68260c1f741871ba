"""Logging setup for the activity monitor.

Configures the `activity_monitor` logger with a human-readable console
handler and a rotating JSON Lines file handler that keeps `extra=` fields.
"""

import json
import logging
import logging.handlers
from datetime import datetime
from pathlib import Path

# Attributes every LogRecord has; anything else came in through extra=.
_RESERVED_ATTRS = frozenset(
    [
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "message",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "thread",
        "threadName",
        "exc_info",
        "exc_text",
        "stack_info",
        "asctime",
        "taskName",
        "extras",
    ]
)


def record_extras(record: logging.LogRecord) -> dict:
    """Collect extra= fields from a record, stringifying non-JSON values."""
    extras = {}
    for key, value in record.__dict__.items():
        if key in _RESERVED_ATTRS:
            continue
        try:
            json.dumps(value)
            extras[key] = value
        except (TypeError, ValueError):
            extras[key] = str(value)
    return extras


class JsonExtraFilter(logging.Filter):
    """Attaches extra= fields to the record as `record.extras`."""

    def filter(self, record):
        record.extras = record_extras(record)
        return True


class JsonLineFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record):
        log_obj = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        log_obj.update(getattr(record, "extras", None) or record_extras(record))
        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_obj)


class LoggingManager:
    """Manages logging for the monitor and its server."""

    def __init__(
        self,
        log_dir: str | Path = "/tmp/activity_monitor_logs",
        log_level: str = "INFO",
        logger_name: str = "activity_monitor",
    ):
        """Initialize logging manager.

        Args:
            log_dir: Directory for the rotating log file
            log_level: Console log level name (e.g. "INFO")
            logger_name: Root of the logger namespace to configure
        """
        self.log_dir = Path(log_dir)
        self.log_level = getattr(logging, log_level.upper(), logging.INFO)
        self.logger_name = logger_name
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = self.log_dir / "activity_monitor.log"

        self.logger = self._setup_logger()

        # Modules that called getLogger(__name__) before setup inherit from the root.
        for name in list(logging.Logger.manager.loggerDict.keys()):
            if name.startswith(f"{logger_name}."):
                child_logger = logging.getLogger(name)
                if isinstance(child_logger, logging.Logger):
                    child_logger.setLevel(logging.NOTSET)
                    child_logger.propagate = True
                    child_logger.handlers.clear()

    def _setup_logger(self) -> logging.Logger:
        logger = logging.getLogger(self.logger_name)
        logger.setLevel(logging.DEBUG)
        logger.propagate = False
        logger.handlers.clear()

        # Console handler - human readable
        console_handler = logging.StreamHandler()
        console_handler.setLevel(self.log_level)
        console_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(console_handler)

        # File handler - structured JSON
        file_handler = logging.handlers.RotatingFileHandler(
            self.log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.addFilter(JsonExtraFilter())
        file_handler.setFormatter(JsonLineFormatter())
        logger.addHandler(file_handler)

        return logger

    def close(self) -> None:
        """Flush and detach all handlers."""
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)
