"""Structured logging with structlog."""

from __future__ import annotations

import logging
import sys
from functools import lru_cache
from typing import IO, TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from envelope_api.api.settings import Settings

# Section breaks are only written for human-readable console output.
_BREAK_STREAM: IO[str] | None = None


def configure_logging(
    settings: Settings | None = None,
    *,
    level: str | None = None,
    log_format: str | None = None,
    stream: IO[str] | None = None,
) -> None:
    """Configure stdlib logging and structlog for the server.

    Explicit keyword arguments win over values taken from *settings*.
    """
    global _BREAK_STREAM

    if settings is None:
        from envelope_api.api.settings import get_settings

        settings = get_settings()

    level = (level or settings.log_level).upper()
    log_format = log_format or settings.log_format
    stream = stream or sys.stdout

    logging.basicConfig(
        format="%(message)s",
        stream=stream,
        level=getattr(logging, level, logging.INFO),
        force=True,
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    if log_format == "json":
        formatter = structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
        )
        _BREAK_STREAM = None
    else:
        formatter = structlog.stdlib.ProcessorFormatter(
            processor=structlog.dev.ConsoleRenderer(colors=stream.isatty()),
        )
        _BREAK_STREAM = stream

    for handler in logging.root.handlers:
        handler.setFormatter(formatter)


@lru_cache(maxsize=100)
def get_logger(name: str) -> Any:
    """Get a logger instance."""
    return structlog.get_logger(name)


def log_break() -> None:
    """Write a blank separator line between requests in console mode."""
    if _BREAK_STREAM is not None:
        _BREAK_STREAM.write("\n")
        _BREAK_STREAM.flush()


def bind_context(**kwargs: Any) -> None:
    """Bind context variables for structured logging."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear context variables."""
    structlog.contextvars.clear_contextvars()
