"""Structured logging helpers with correlation ID support."""

from __future__ import annotations

import json
import logging
import logging.handlers
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from ..config.settings import Config

_LOGGER_CACHE: Dict[str, logging.Logger] = {}
_CORRELATION_ID: ContextVar[str] = ContextVar("correlation_id", default="-")
_LOGGING_CONFIGURED = False

_STANDARD_ATTRS = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys())

_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "crit": logging.CRITICAL,
    "critical": logging.CRITICAL,
}


class _CorrelationFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - simple accessor
        record.correlation_id = _CORRELATION_ID.get("-")
        return True


class StructuredFormatter(logging.Formatter):
    """Formatter that emits structured JSON logs."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", "-"),
        }
        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _STANDARD_ATTRS and key != "correlation_id" and not key.startswith("_")
        }
        if extras:
            payload["extra"] = extras
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def parse_level(name: str) -> int:
    return _LEVELS.get(name.strip().lower(), logging.INFO)


def log_file_path(config: Config) -> Path:
    """Active log file: ``log_file`` if set, else the rotation filename."""

    return config.log_dir() / (config.base.log_file or config.log.filename)


def _file_handler(config: Config) -> logging.Handler:
    path = log_file_path(config)
    path.parent.mkdir(parents=True, exist_ok=True)
    rotation = config.log
    handler: logging.Handler
    if rotation.rotate and rotation.daily:
        handler = logging.handlers.TimedRotatingFileHandler(
            path,
            when="midnight",
            backupCount=max(rotation.max_days, 0),
            encoding="utf-8",
        )
    else:
        handler = logging.FileHandler(path, encoding="utf-8")
    try:
        os.chmod(path, int(rotation.perm, 8))
    except ValueError:
        logging.getLogger(__name__).warning("Ignoring invalid log file permission %r", rotation.perm)
    return handler


def configure_logging(config: Optional[Config] = None, *, log_to_file: bool = False) -> None:
    """Install the JSON handler on the root logger.

    Called without a config it only installs defaults once; an explicit config
    always reconfigures.
    """

    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED and config is None:
        return
    level_name = config.base.log_level if config is not None else "info"
    formatter = StructuredFormatter()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
        existing.close()
    handler.addFilter(_CorrelationFilter())
    root.addHandler(handler)
    if config is not None and log_to_file:
        file_handler = _file_handler(config)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(_CorrelationFilter())
        root.addHandler(file_handler)
    root.setLevel(parse_level(level_name))
    logging.captureWarnings(True)
    _LOGGING_CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    if not _LOGGING_CONFIGURED:
        configure_logging()
    if name not in _LOGGER_CACHE:
        _LOGGER_CACHE[name] = logging.getLogger(name)
    return _LOGGER_CACHE[name]


@contextmanager
def correlation_scope(correlation_id: Optional[str]):
    token = _CORRELATION_ID.set(correlation_id or "-")
    try:
        yield
    finally:
        _CORRELATION_ID.reset(token)


__all__ = [
    "StructuredFormatter",
    "configure_logging",
    "correlation_scope",
    "get_logger",
    "log_file_path",
    "parse_level",
]
