"""Logging and observability configuration using Pydantic Logfire.

This module provides standardized logging utilities and configuration.
All modules should use Python's standard logging library (logging.getLogger(__name__)),
and Logfire will automatically capture and enrich these logs.

Standard usage:
    import logging
    logger = logging.getLogger(__name__)
    logger.info("Message", extra={"key": "value"})

Structured logging utilities:
    log_with_context(logger, "info", "Message", task_id="123", on_date="2025-11-03")
"""

import logging

import logfire

from src.core.config import settings


def configure_logfire() -> None:
    """Configure Pydantic Logfire with token from environment.

    Standard logging records are routed through Logfire's handler so that
    every ``logger.info(..., extra=...)`` call lands in the same trace as the
    surrounding span.
    """
    logfire.configure(
        token=settings.logfire_token,
        service_name="lifeops",
        service_version="0.1.0",
        environment=settings.environment,
        send_to_logfire="if-token-present",
    )
    logging.basicConfig(level=logging.INFO, handlers=[logfire.LogfireLoggingHandler()])

    logger = logging.getLogger(__name__)
    logger.info("Logfire configured successfully")


def span(name: str, **attributes: object) -> logfire.LogfireSpan:
    """Create a custom span for service layer functions.

    Usage:
        with span("completion.toggle_complete", task_id=task_id):
            # Your service logic here
            pass
    """
    return logfire.span(name, **attributes)


def log_with_context(
    logger: logging.Logger,
    level: str,
    message: str,
    **context: object,
) -> None:
    """Log a message with structured context fields.

    Args:
        logger: Logger instance to use
        level: Log level ("debug", "info", "warning", "error", "critical")
        message: Log message
        **context: Additional context fields (task_id, on_date, operation_type, etc.)

    Usage:
        log_with_context(logger, "info", "Task completed", task_id="123", operation_type="complete")
    """
    log_method = getattr(logger, level.lower())
    log_method(message, extra=context)


def log_with_task_context(
    logger: logging.Logger,
    level: str,
    message: str,
    task_id: str | None = None,
    **extra: object,
) -> None:
    """Log a message with task context.

    Args:
        logger: Logger instance to use
        level: Log level ("debug", "info", "warning", "error", "critical")
        message: Log message
        task_id: Task ID to include in context
        **extra: Additional context fields

    Usage:
        log_with_task_context(logger, "warning", "Parent missing", task_id="123", parent_id="456")
    """
    context = {"task_id": task_id, **extra} if task_id else extra
    log_with_context(logger, level, message, **context)
