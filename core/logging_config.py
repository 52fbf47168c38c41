"""Centralized structlog configuration.

Routes structlog events and plain ``logging`` records through the same
``ProcessorFormatter`` so uvicorn's own lines and service events look alike.

Usage::

    from core.logging_config import setup_logging

    setup_logging()
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from core.config import settings


_configured = False


def _clean_logger_name(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Strip the __main__ logger name, it is noise in startup logs."""
    if event_dict.get("logger") == "__main__":
        del event_dict["logger"]
    return event_dict


def _prefix_logger_name(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Move logger name before event text: [module.name] event text."""
    logger_name = event_dict.pop("logger", None)
    if logger_name:
        event_dict["event"] = f'[{logger_name}] {event_dict.get("event", "")}'
    return event_dict


def setup_logging(level: str | None = None) -> logging.Formatter:
    """Configure structlog and the root handler; safe to call more than once.

    Returns the console formatter so callers can attach it to extra handlers.
    """
    global _configured

    level_name = (level or settings.LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _clean_logger_name,
        structlog.stdlib.ExtraAdder(),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="%Y-%m-%d %H:%M:%S", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    console_formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _prefix_logger_name,
            structlog.dev.ConsoleRenderer(
                colors=settings.LOG_COLORS,
                pad_event_to=0,
                pad_level=False,
                exception_formatter=structlog.dev.plain_traceback,
            ),
        ],
    )

    root = logging.getLogger()
    if not _configured:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(console_formatter)
        root.addHandler(handler)
        _configured = True
    root.setLevel(log_level)

    _configure_noisy_loggers()

    return console_formatter


def _configure_noisy_loggers() -> None:
    """Suppress noisy third-party loggers."""
    for name, level in {
        "uvicorn.access": logging.ERROR,
        "uvicorn.error": logging.WARNING,
        "httpx": logging.WARNING,
    }.items():
        logging.getLogger(name).setLevel(level)
