"""Logging setup for the daemon."""

from .logger import configure_logging, correlation_scope, get_logger

__all__ = ["configure_logging", "correlation_scope", "get_logger"]
