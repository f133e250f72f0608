"""Logging configuration with structured JSON formatter.

This module provides a custom JSON formatter and a dictConfig used by the CLI
and by test sessions. Fixture lifecycle code logs through module loggers and
passes structured context (fixture name, instance id, elapsed time) via the
``extra`` parameter; the JSON formatter flattens that context into the record.
"""

import copy
import json
import logging
import logging.config
from typing import Any

TEXT_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

# Standard LogRecord attributes to exclude from the extra payload
_STANDARD_ATTRS = frozenset(
    {
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
    }
)


class CustomJSONFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging.

    This formatter converts log records to JSON format, including:
    - Standard log fields (time, level, message, etc.)
    - Exception information when the record carries ``exc_info``
    - All extra attributes passed via the extra parameter
    """

    def __init__(self, fmt: str) -> None:
        """Initialize the formatter.

        Args:
            fmt: Format string (used for asctime, but output is JSON).
        """
        logging.Formatter.__init__(self, fmt)

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON.

        Args:
            record: The log record to format.

        Returns:
            JSON string representation of the log record.
        """
        logging.Formatter.format(self, record)
        return json.dumps(self.get_log(record), indent=None, default=str)

    def get_log(self, record: logging.LogRecord) -> dict[str, Any]:
        """Extract log data from record into a dictionary.

        Args:
            record: The log record to extract data from.

        Returns:
            Dictionary containing log data.
        """
        d: dict[str, Any] = {
            "time": record.asctime,
            "thread_name": record.threadName,
            "level": record.levelname,
            "logger_name": record.name,
            "line": record.lineno,
            "message": record.message,
        }

        if record.exc_info:
            d["trace"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS:
                d[key] = value

        return d


LOGGING_CONFIG: dict[str, Any] = {
    "version": 1,
    "disable_existing_loggers": False,  # Keep existing loggers, just configure them
    "formatters": {
        "json": {"()": lambda: CustomJSONFormatter(fmt="%(asctime)s")},
        "text": {"format": TEXT_FORMAT},
    },
    "handlers": {
        "default": {
            "formatter": "text",
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stderr",
        },
    },
    "loggers": {
        "fixturekit": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        # Reduce noise from third-party libraries
        "docker": {"level": "WARNING"},
        "urllib3": {"level": "WARNING"},
        "testcontainers": {"level": "WARNING"},
    },
    "root": {
        "handlers": ["default"],
        "level": "WARNING",
    },
}


def configure_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Apply the logging configuration for fixturekit processes.

    Args:
        level: Level for the ``fixturekit`` logger hierarchy.
        json_format: Emit JSON lines instead of the pipe-separated text format.
    """
    config = copy.deepcopy(LOGGING_CONFIG)
    config["handlers"]["default"]["formatter"] = "json" if json_format else "text"
    config["loggers"]["fixturekit"]["level"] = level.upper()
    logging.config.dictConfig(config)
