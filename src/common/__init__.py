"""Shared utilities used by the core engine and the store client."""

from .pylogger import configure_logging, get_python_logger

__all__ = ["configure_logging", "get_python_logger"]
