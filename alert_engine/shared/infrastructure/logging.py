"""Structured logging utilities with context management."""

import contextvars
import sys
from typing import Any

from loguru import logger

from alert_engine.config import LoggingConfig


# Context variables for maintaining tenant/incident/request context
alert_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "alert_context", default={}
)

_CONTEXT_KEYS = ("tenant_id", "incident_id", "request_id")


class LoggingContext:
    """
    Context manager for structured logging with automatic context injection.

    Example:
        with LoggingContext(tenant_id="t-1", incident_id="inc-9"):
            logger.info("Escalating")  # Will include tenant_id and incident_id
    """

    def __init__(self, **context_data):
        """
        Initialize logging context.

        Args:
            **context_data: Key-value pairs to add to logging context
        """
        self.context_data = context_data
        self.token = None

    def __enter__(self):
        """Enter context and set context variables."""
        current = alert_context.get().copy()
        current.update(self.context_data)

        self.token = alert_context.set(current)

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit context and restore previous context."""
        if self.token:
            alert_context.reset(self.token)


def get_logging_context() -> dict[str, Any]:
    """
    Get current logging context.

    Returns:
        Dictionary of current context variables
    """
    return alert_context.get().copy()


def _context_filter(record) -> bool:
    """Add context variables to log record."""
    for key in _CONTEXT_KEYS:
        record["extra"].setdefault(key, "-")

    for key, value in alert_context.get().items():
        record["extra"][key] = value

    return True


def configure_structured_logging(config: LoggingConfig | None = None) -> None:
    """
    Configure loguru to include context variables in all log messages.

    This should be called once at process startup.
    """
    config = config or LoggingConfig()

    logger.remove()

    logger.add(
        sink=sys.stderr,
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{extra[tenant_id]}</cyan>:<cyan>{extra[incident_id]}</cyan> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        ),
        filter=_context_filter,
        level=config.level,
        colorize=config.colorize,
    )

    if config.file_path:
        logger.add(
            sink=config.file_path,
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level} | {extra} | {name}:{function}:{line} | {message}",
            filter=_context_filter,
            level=config.file_level,
            rotation=config.rotation,
            retention=config.retention,
            compression="zip",
            serialize=config.serialize,
        )


def log_with_context(level: str, message: str, **extra_context) -> None:
    """
    Log a message with additional context.

    Args:
        level: Log level (debug, info, warning, error, critical)
        message: Log message
        **extra_context: Additional context to include in this log only
    """
    context = get_logging_context()
    context.update(extra_context)

    logger.bind(**context).log(level.upper(), message)
