"""Logging helpers for edlhost."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from logging.config import dictConfig
from typing import Any

import msgspec

from .settings import RuntimeConfig

_RESERVED_LOG_KEYS = {
    "args",
    "asctime",
    "created",
    "exc_info",
    "exc_text",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "msg",
    "name",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "taskName",
    "thread",
    "threadName",
}

TEXT_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
TEXT_DATEFMT = "%H:%M:%S"


def _serialise_value(value: Any) -> Any:
    """Serialise values for JSON logs with strict type handling."""
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, bytes):
        # Binary traffic is rendered as uppercase hex: [DE AD BE EF]
        return f"[{' '.join(f'{b:02X}' for b in value)}]"
    return str(value)


class StructuredLogFormatter(logging.Formatter):
    """Emit JSON per log line while trimming the shared prefix."""

    PREFIX = "edlhost."

    def format(self, record: logging.LogRecord) -> str:
        logger_name = record.name
        if logger_name.startswith(self.PREFIX):
            logger_name = logger_name[len(self.PREFIX) :]

        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": logger_name,
            "message": record.getMessage(),
        }

        extras = {
            key: _serialise_value(value)
            for key, value in record.__dict__.items()
            if key not in _RESERVED_LOG_KEYS and not key.startswith("_")
        }
        if extras:
            payload["extra"] = extras

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return msgspec.json.encode(payload).decode("utf-8")


def configure_logging(config: RuntimeConfig) -> None:
    """Configure root logging based on runtime settings."""

    level_name = "DEBUG" if config.debug_logging else "INFO"
    formatter = "structured" if config.log_format == "json" else "text"

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structured": {
                    "()": "edlhost.config.logging.StructuredLogFormatter",
                },
                "text": {
                    "format": TEXT_FORMAT,
                    "datefmt": TEXT_DATEFMT,
                },
            },
            "handlers": {
                "edlhost": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stderr",
                    "level": level_name,
                    "formatter": formatter,
                }
            },
            "root": {
                "level": level_name,
                "handlers": ["edlhost"],
            },
            # The engine logs its own state changes.
            "loggers": {"transitions": {"level": "WARNING"}},
        }
    )

    logging.getLogger("edlhost").debug("Logging configured at level %s", level_name)
