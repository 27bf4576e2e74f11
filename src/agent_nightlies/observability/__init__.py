"""Observability helpers: structured logging and correlation context."""

from agent_nightlies.observability.logging import (
    JsonLineFormatter,
    LoggingHandle,
    configure_structlog,
    correlation_scope,
    default_log_redactor,
    get_correlation_context,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    "JsonLineFormatter",
    "LoggingHandle",
    "configure_structlog",
    "correlation_scope",
    "default_log_redactor",
    "get_correlation_context",
    "setup_logging",
    "shutdown_logging",
]
