"""Process-wide logging setup.

Two formats are supported:

* one-line console output, and
* JSON lines for log ingestion.

Custom fields passed through ``extra=...`` are appended as ``key=value``
pairs (console) or merged into the JSON object.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from queryportal.settings import Settings

_STANDARD_ATTRS: set[str] = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "message",
    "asctime",
    "taskName",
}

_CONFIGURED_FLAG = "_queryportal_configured"


def _record_extras(record: logging.LogRecord) -> dict[str, Any]:
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _STANDARD_ATTRS and not key.startswith("_")
    }


def _format_extra_value(value: Any) -> str:
    if isinstance(value, str):
        return value if value and " " not in value else json.dumps(value)
    return json.dumps(value, default=str)


def _timestamp(record: logging.LogRecord) -> str:
    dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
    return f"{dt.strftime('%Y-%m-%dT%H:%M:%S')}.{int(record.msecs):03d}Z"


class ConsoleLogFormatter(logging.Formatter):
    """Render records as ``<ts> LEVEL logger message key=value ...``."""

    def format(self, record: logging.LogRecord) -> str:
        line = f"{_timestamp(record)} {record.levelname:<5} {record.name} {record.getMessage()}"
        extras = [
            f"{key}={_format_extra_value(value)}"
            for key, value in sorted(_record_extras(record).items())
        ]
        if extras:
            line = f"{line} " + " ".join(extras)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class JsonLogFormatter(logging.Formatter):
    """Render records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": _timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_record_extras(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, separators=(",", ":"))


def configure_logging(settings: Settings) -> None:
    """Install a single stream handler on the ``queryportal`` logger.

    Calling this more than once only updates the level and formatter.
    """

    logger = logging.getLogger("queryportal")
    logger.setLevel(settings.log_level)
    formatter: logging.Formatter = (
        JsonLogFormatter() if settings.log_format == "json" else ConsoleLogFormatter()
    )

    for handler in logger.handlers:
        if getattr(handler, _CONFIGURED_FLAG, False):
            handler.setFormatter(formatter)
            return

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    setattr(handler, _CONFIGURED_FLAG, True)
    logger.addHandler(handler)
    logger.propagate = False
