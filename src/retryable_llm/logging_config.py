"""Structured logging setup for the retryable_llm loggers.

Library modules only call structlog.get_logger(__name__) and leave output
to the host application. configure_logging() is an opt-in for hosts (and
scripts) without their own setup: it attaches one handler to the
"retryable_llm" logger and leaves the root logger alone.
"""

import logging
import sys
from typing import Optional

import structlog
from structlog.types import EventDict, WrappedLogger

from retryable_llm.config import settings

PACKAGE_LOGGER = "retryable_llm"


def add_app_context(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add application context to all log events."""
    event_dict["app"] = settings.APP_NAME
    return event_dict


def stringify_errors(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Render exception values (e.g. error=exc) as 'Type: message'.

    Attempt logs carry the raw provider exception; the JSON renderer
    cannot serialise it otherwise.
    """
    for key, value in event_dict.items():
        if isinstance(value, BaseException):
            event_dict[key] = f"{type(value).__name__}: {value}"
    return event_dict


def configure_logging(
    log_level: Optional[str] = None, json_output: Optional[bool] = None
) -> logging.Handler:
    """Send retryable_llm log events to stdout.

    structlog itself is configured only if the host has not done so.
    Calling this again replaces the previous handler.

    Args:
        log_level: Level for the package logger (defaults to settings.LOG_LEVEL)
        json_output: JSON lines instead of console output (defaults to
            settings.ENVIRONMENT == "production")

    Returns:
        The installed handler
    """
    log_level = log_level or settings.LOG_LEVEL
    if json_output is None:
        json_output = settings.ENVIRONMENT.lower() == "production"

    shared_processors: list[structlog.types.Processor] = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_app_context,
        stringify_errors,
        structlog.processors.format_exc_info,
    ]

    if not structlog.is_configured():
        structlog.configure(
            processors=[structlog.contextvars.merge_contextvars]
            + shared_processors
            + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    ))

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for existing in list(package_logger.handlers):
        if isinstance(existing.formatter, structlog.stdlib.ProcessorFormatter):
            package_logger.removeHandler(existing)
    package_logger.addHandler(handler)
    package_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    # Host handlers on the root logger would print every event twice
    package_logger.propagate = False

    structlog.get_logger(__name__).debug(
        "Logging configured",
        log_level=log_level,
        renderer="json" if json_output else "console",
    )
    return handler
