"""Structured logging setup.

Every module obtains its logger with ``structlog.get_logger()``; this module
installs the processor chain once at process start.
"""

import logging
from typing import List

import structlog


def configure_logging(level: str = "INFO", fmt: str = "console") -> None:
    """Configure structlog for JSON or human-readable console output.

    Args:
        level: Minimum log level name (debug, info, warning, error).
        fmt: ``"json"`` for machine-readable lines, anything else for console.
    """
    effective_level = logging.getLevelNamesMapping().get(level.upper(), logging.INFO)

    processors: List[structlog.typing.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if fmt == "json":
        processors.append(structlog.processors.dict_tracebacks)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(effective_level),
        context_class=dict,
        cache_logger_on_first_use=False,
    )
