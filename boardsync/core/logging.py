"""Logfire setup and structured logging helpers for the sync core.

Modules log through ``logging.getLogger(__name__)`` with snake_case event names
and context passed in ``extra``. Once ``configure_logfire`` runs, those records
reach Logfire through its logging handler.

    logger.info("reload_fetched", extra={"project_gid": gid, "tasks": 42})
    log_with_task_context(logger, "info", "mutation_committed", task_gid="123", sequence=4)
"""

import logging

import logfire

from boardsync.core.config import settings


def configure_logfire(environment: str = "production") -> None:
    """Configure Pydantic Logfire with token from environment.

    Standard logging records are forwarded to Logfire through its logging handler,
    so nothing in the sync core has to know whether Logfire is active.
    """
    logfire.configure(
        token=settings.logfire_token,
        service_name="boardsync",
        service_version="0.1.0",
        environment=environment,
        send_to_logfire="if-token-present",
        console=False,
    )
    logging.getLogger("boardsync").addHandler(logfire.LogfireLoggingHandler())

    logger = logging.getLogger(__name__)
    logger.info("Logfire configured successfully")


def span(name: str, **attributes: object) -> logfire.LogfireSpan:
    """Open a Logfire span around an Asana call or reconciler step."""
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
        **context: Additional context fields (task_gid, field_key, sequence, etc.)

    Usage:
        log_with_context(logger, "info", "mutation_committed", task_gid="123", sequence=4)
    """
    log_method = getattr(logger, level.lower())
    log_method(message, extra=context)


def log_with_task_context(
    logger: logging.Logger,
    level: str,
    message: str,
    task_gid: str | None = None,
    **extra: object,
) -> None:
    """Log a message with task context.

    Args:
        logger: Logger instance to use
        level: Log level ("debug", "info", "warning", "error", "critical")
        message: Log message
        task_gid: Task GID to include in context
        **extra: Additional context fields
    """
    context = {"task_gid": task_gid, **extra} if task_gid else extra
    log_with_context(logger, level, message, **context)
