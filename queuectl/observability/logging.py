"""
Structured logging setup using structlog.
"""

import logging
import sys
from typing import Any

import structlog
from opentelemetry import trace

from queuectl.config import get_settings


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Add OpenTelemetry trace context to log records.

    Args:
        logger: The logger instance.
        method_name: The method name being called.
        event_dict: The event dictionary.

    Returns:
        The event dictionary with trace context added.
    """
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def setup_logging(log_level: str | None = None, log_format: str | None = None) -> None:
    """
    Configure structured logging for the application.

    Sets up structlog with JSON or console output and routes standard
    library loggers through the same processors. Logs go to stderr so that
    CLI output on stdout stays clean.

    Args:
        log_level: Overrides the configured level.
        log_format: Overrides the configured format ("json" or "console").
    """
    settings = get_settings()
    level_name = (log_level or settings.log_level).upper()
    fmt = log_format or settings.log_format

    level = getattr(logging, level_name, logging.INFO)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_trace_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    if fmt == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(level)

    # Reduce noise from third-party libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)


def bind_context(**kwargs: Any) -> None:
    """
    Bind context variables to all subsequent log messages.

    Args:
        **kwargs: Key-value pairs to add to log context.
    """
    structlog.contextvars.bind_contextvars(**kwargs)
