"""Shared structlog configuration for the telemetry query engine.

Every module obtains its logger through ``get_python_logger`` so that log
records share one processor chain (level, ISO timestamp, logger name) and
one renderer (console for interactive use, JSON for piping to a collector).
"""

import logging
import sys
from typing import Optional

import structlog

_configured = False


def configure_logging(level: str = "INFO", json_format: bool = False) -> None:
    """
    Configure stdlib logging and structlog once per process.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)
        json_format: Render records as JSON lines instead of console text
    """
    global _configured

    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(stream=sys.stderr, level=log_level, format="%(message)s")

    renderer = structlog.processors.JSONRenderer() if json_format else structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _configured = True


def get_python_logger(name: Optional[str] = None):
    """
    Return a structlog logger, configuring defaults on first use.

    Pass ``__name__``; without a name the stdlib factory guesses the calling
    module rather than falling back to the root logger.
    """
    if not _configured:
        configure_logging()
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()
