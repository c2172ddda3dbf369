"""
Logging for the LoL stats refresh service.

Refresh code logs with `extra={...}` (slug, kind, offset, attempt, wait_time, ...).
JSON output puts those keys at the top level of each line for log shipping; text
output appends them as `key=value` pairs so a local run stays readable.
"""

import json
import logging
import os
import sys
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

# LogRecord attributes that are never treated as extras
_RESERVED_ATTRS = frozenset([
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs", "message",
    "pathname", "process", "processName", "relativeCreated", "thread",
    "threadName", "taskName", "exc_info", "exc_text", "stack_info", "extra",
    "asctime",
])

# Third-party loggers that log every request at INFO
_NOISY_LOGGERS = ("httpx", "httpcore", "hpack")


def record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    """Keys passed through `extra=` on a logging call."""
    return {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line; extras sit beside the message."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        log_data.update(record_extras(record))
        return json.dumps(log_data, default=str, ensure_ascii=False)

    def formatException(self, exc_info):
        return traceback.format_exception(*exc_info)


class TextFormatter(logging.Formatter):
    """Human-readable lines for development: `... - message [slug=lpl kind=http]`."""

    def __init__(self):
        super().__init__("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = record_extras(record)
        if not extras:
            return line
        pairs = " ".join(f"{key}={value}" for key, value in extras.items())
        head, sep, tail = line.partition("\n")
        return f"{head} [{pairs}]{sep}{tail}"


def setup_logging(config=None, log_file=None):
    """
    Configure the root logger for the worker, the API or a one-off script.

    Args:
        config: Optional Config; falls back to LOG_LEVEL / LOG_FORMAT.
        log_file: Optional path to also append log lines to.
    """
    log_level = os.getenv("LOG_LEVEL", "INFO")
    log_format = os.getenv("LOG_FORMAT", "json")
    if config:
        log_level = config.log_level
        log_format = config.log_format

    level = getattr(logging, log_level.upper(), logging.INFO)
    formatter = JSONFormatter() if log_format == "json" else TextFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
