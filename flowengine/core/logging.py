# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Structured logging for FlowEngine.

Every engine component logs named events (node_started, node_retry_scheduled,
workflow_finished, ...) with structured fields through log_event. Component
loggers are children of the "flowengine" logger, which owns the handlers, so
level and format are configured once from EngineConfig.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

ROOT_LOGGER = "flowengine"

# Attributes every LogRecord carries; anything else came in through `extra`
_RESERVED_ATTRS = frozenset([
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "message", "asctime", "pathname", "process", "processName",
    "relativeCreated", "thread", "threadName", "exc_info",
    "exc_text", "stack_info", "taskName",
])

SENSITIVE_HEADERS = frozenset([
    "authorization", "proxy-authorization", "cookie", "set-cookie",
    "x-api-key", "api-key", "x-auth-token", "x-access-token",
])


def _event_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return {key: value for key, value in record.__dict__.items() if key not in _RESERVED_ATTRS}


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


class JSONFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, then event fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in _event_fields(record).items():
            log_data[key] = _plain(value)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """Human-readable lines with event fields appended as key=value."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = {key: value for key, value in _event_fields(record).items() if key != "event"}
        if fields:
            line += " " + " ".join(f"{key}={_plain(value)}" for key, value in fields.items())
        return line


def get_logger(
    name: str,
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[Path] = None
) -> logging.Logger:
    """
    Get a logger with its own stdout handler (and optional file handler).

    Existing handlers are replaced, so calling this twice for the same name
    reconfigures rather than duplicates output.
    """
    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    logger.handlers = []

    formatter = JSONFormatter() if log_format == "json" else TextFormatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def log_event(
    logger: logging.Logger,
    event: str,
    level: str = "INFO",
    **kwargs: Any
) -> None:
    """
    Log a named event with structured fields.

    Fields whose names clash with LogRecord attributes are prefixed with
    "field_" instead of making logging raise.
    """
    fields = {"event": event}
    for key, value in kwargs.items():
        fields[f"field_{key}" if key in _RESERVED_ATTRS else key] = value
    getattr(logger, level.lower())(event, extra=fields)


def redact_headers(headers: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Copy of request headers safe to log (credentials replaced)."""
    if not headers:
        return {}
    return {
        key: ("[REDACTED]" if key.lower() in SENSITIVE_HEADERS else value)
        for key, value in headers.items()
    }


def get_engine_logger(component: str) -> logging.Logger:
    """
    Logger for an engine component (executor, processors.http, ...).

    The shared "flowengine" logger is configured from EngineConfig on first
    use; component loggers propagate to it.
    """
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        from flowengine.core.config import get_config
        config = get_config()
        get_logger(ROOT_LOGGER, log_level=config.log_level, log_format=config.log_format)
        root.propagate = False
    return logging.getLogger(f"{ROOT_LOGGER}.{component}")
