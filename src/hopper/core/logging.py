# src/hopper/core/logging.py
"""Structured logging configuration for hopper.

Architecture:
    structlog and stdlib logging share one processor chain: structlog events
    are handed to a stdlib handler whose ProcessorFormatter renders them, and
    stdlib records (SQLAlchemy, Dynaconf) go through the same chain as a
    foreign pre-chain. Every line carries the emitting thread, so the step
    thread and its worker pool can be told apart.

    Logs go to stderr; stdout is reserved for command output such as
    ``hopper executions --format json``.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

# Loggers that are chatty at DEBUG (every SQL statement, every settings key)
_NOISY_LOGGERS: tuple[str, ...] = (
    "sqlalchemy",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "dynaconf",
)

_SHARED_PROCESSORS: list[Any] = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.StackInfoRenderer(),
]


def _add_thread_name(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    event_dict["thread"] = event_dict["_record"].threadName
    return event_dict


def _drop_formatter_bookkeeping(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """ProcessorFormatter always adds _record and _from_structlog; keep them out of the output."""
    del event_dict["_record"]
    del event_dict["_from_structlog"]
    return event_dict


def _render_chain(json_output: bool) -> list[Any]:
    chain: list[Any] = [_add_thread_name, _drop_formatter_bookkeeping]
    if json_output:
        return [*chain, structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [*chain, structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
) -> None:
    """Configure structlog and stdlib logging for hopper.

    Replaces the root handlers, so calling it again (each CLI invocation
    does) reconfigures rather than duplicates output.

    Args:
        json_output: One JSON object per line instead of console rendering
        level: Root log level (DEBUG, INFO, WARNING, ERROR)
    """
    log_level = getattr(logging, level.upper())

    structlog.configure(
        processors=[*_SHARED_PROCESSORS, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Tests reconfigure logging; cached loggers would keep the old chain
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ProcessorFormatter(processors=_render_chain(json_output), foreign_pre_chain=_SHARED_PROCESSORS))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    # Never make noisy loggers less restrictive than the root level
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(max(log_level, logging.WARNING))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Bound structlog logger for a module (typically ``__name__``)."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
