"""Centralized logging utilities for the permission manager.

This module provides:
- Logging configuration from EngineConfig
- Safe preview of caller-supplied input (memberships, subjects)
- Structured logging with engine and subject context
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from .config import EngineConfig, LogLevel

# Record attributes that belong to logging itself and are never treated as extras.
_RESERVED_ATTRS = frozenset(
    {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "message", "pathname", "process", "processName", "relativeCreated",
        "thread", "threadName", "exc_info", "exc_text", "stack_info",
        "taskName", "engine", "subject",
    }
)


def safe_preview(value: Any, limit: int = 240) -> str:
    """Create a length-bounded, single-line preview of a value for logging.

    Raw memberships and subjects are caller data of arbitrary size; they are
    never logged whole.

    Args:
        value: The value to preview (any type)
        limit: Maximum length of the preview (default: 240)

    Returns:
        A truncated string representation
    """
    if value is None:
        return ""

    if isinstance(value, str):
        s = value
    elif isinstance(value, (dict, list, tuple)):
        try:
            s = json.dumps(value, default=str, ensure_ascii=False)
        except (TypeError, ValueError):
            s = str(value)
    else:
        s = str(value)

    s = " ".join(s.split())

    if len(s) > limit:
        return s[: limit - 1] + "…"

    return s


class PermissionLogFormatter(logging.Formatter):
    """Formatter that includes engine/subject context, as JSON or plain text."""

    def __init__(self, json_format: bool = True, *args: Any, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.json_format = json_format

    def format(self, record: logging.LogRecord) -> str:
        engine = getattr(record, "engine", None)
        subject = getattr(record, "subject", None)

        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if engine:
            log_data["engine"] = engine
        if subject:
            log_data["subject"] = subject

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = safe_preview(value)

        if self.json_format:
            return json.dumps(log_data, default=str, ensure_ascii=False)

        parts = [
            f"[{log_data['timestamp']}]",
            log_data["level"],
            log_data["logger"],
        ]
        if engine:
            parts.append(f"engine={engine}")
        if subject:
            parts.append(f"subject={subject}")
        parts.append(f": {log_data['message']}")
        return " ".join(parts)


class EngineLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds the engine name (and optionally a subject) to records.

    Usage:
        logger = get_engine_logger(__name__, engine="cella")
        logger.info("Compiled policies", subject="course")
    """

    def __init__(self, logger: logging.Logger, engine: Optional[str] = None):
        super().__init__(logger, {})
        self.engine = engine

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        engine = kwargs.pop("engine", self.engine)
        subject = kwargs.pop("subject", None)

        extra = kwargs.get("extra", {})
        if engine:
            extra["engine"] = engine
        if subject:
            extra["subject"] = subject
        kwargs["extra"] = extra

        return msg, kwargs


def setup_logging(config: Optional[EngineConfig] = None, json_format: Optional[bool] = None) -> None:
    """Configure root logging for an application embedding the permission manager.

    Args:
        config: EngineConfig instance (if None, loads from environment)
        json_format: Override ``config.log_json``
    """
    if config is None:
        from .config import load_engine_config_from_env

        config = load_engine_config_from_env()

    level_map = {
        LogLevel.DEBUG: logging.DEBUG,
        LogLevel.INFO: logging.INFO,
        LogLevel.WARNING: logging.WARNING,
        LogLevel.ERROR: logging.ERROR,
        LogLevel.CRITICAL: logging.CRITICAL,
    }
    log_level = level_map.get(config.log_level, logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(
        PermissionLogFormatter(json_format=config.log_json if json_format is None else json_format)
    )
    root_logger.addHandler(console_handler)


def get_engine_logger(name: str, engine: Optional[str] = None) -> EngineLoggerAdapter:
    """Get a logger adapter bound to an engine name.

    Args:
        name: Logger name (typically __name__)
        engine: Engine name to include in all records

    Returns:
        EngineLoggerAdapter instance
    """
    return EngineLoggerAdapter(logging.getLogger(name), engine=engine)


__all__ = [
    "safe_preview",
    "PermissionLogFormatter",
    "EngineLoggerAdapter",
    "setup_logging",
    "get_engine_logger",
]
