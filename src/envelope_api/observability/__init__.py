"""Observability: structured logging."""

from envelope_api.observability.logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    log_break,
)

__all__ = [
    "bind_context",
    "clear_context",
    "configure_logging",
    "get_logger",
    "log_break",
]
