"""Structured logging configuration using structlog.

Provides consistent, structured logging across the package with:
- JSON output for production environments
- Pretty console output for development
- Operation/session context binding for each tool call
- Censoring of credentials that may appear in launch options or URLs

Logs are written to stderr: stdout belongs to the tool-calling client.
"""

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from .config import Environment, get_settings

# Page text can end up in error details; keep log lines bounded.
MAX_VALUE_CHARS = 500


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add application context to log entries.

    Args:
        logger: The logger instance
        method_name: The name of the method being called
        event_dict: The event dictionary to modify

    Returns:
        Modified event dictionary with app context
    """
    from browserguard import __version__

    settings = get_settings()
    event_dict["app"] = settings.APP_NAME
    event_dict["version"] = __version__
    event_dict["environment"] = settings.ENVIRONMENT.value
    return event_dict


def clip_long_values(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Shorten string values longer than MAX_VALUE_CHARS.

    The event name and rendered tracebacks are left alone.
    """
    for key, value in event_dict.items():
        if key in ("event", "exception", "stack"):
            continue
        if isinstance(value, str) and len(value) > MAX_VALUE_CHARS:
            event_dict[key] = f"{value[:MAX_VALUE_CHARS]}... [{len(value)} chars]"
    return event_dict


def censor_sensitive_data(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Censor sensitive data from logs.

    Masks values whose key looks like a credential (proxy passwords, CDP
    tokens, API keys passed through launch options).

    Args:
        logger: The logger instance
        method_name: The name of the method being called
        event_dict: The event dictionary to modify

    Returns:
        Modified event dictionary with censored data
    """
    sensitive_keys = {
        "password",
        "api_key",
        "apikey",
        "secret",
        "authorization",
        "cookie",
        "bearer",
    }
    # "token" alone would also hit estimated_tokens / token_budget
    sensitive_exact = {"token", "auth", "access_token", "auth_token", "continuation_token"}

    def _is_sensitive(key: str) -> bool:
        key_lower = key.lower()
        if key_lower in sensitive_exact:
            return True
        return any(sensitive in key_lower for sensitive in sensitive_keys)

    def _censor_dict(data: dict[str, Any]) -> dict[str, Any]:
        """Recursively censor sensitive keys in dictionary."""
        censored: dict[str, Any] = {}
        for key, value in data.items():
            if _is_sensitive(key):
                censored[key] = "***CENSORED***"
            elif isinstance(value, dict):
                censored[key] = _censor_dict(value)
            elif isinstance(value, list):
                censored[key] = [
                    _censor_dict(item) if isinstance(item, dict) else item for item in value
                ]
            else:
                censored[key] = value
        return censored

    return _censor_dict(dict(event_dict))


def get_log_processors(environment: Environment) -> list[Processor]:
    """Get log processors based on environment.

    Args:
        environment: The application environment

    Returns:
        List of structlog processors
    """
    common_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_app_context,
        censor_sensitive_data,
        clip_long_values,
    ]

    if environment == Environment.PRODUCTION:
        return [
            *common_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    return [
        *common_processors,
        structlog.processors.format_exc_info,
        structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
    ]


def setup_logging() -> None:
    """Configure structured logging for the application.

    Sets up structlog with appropriate processors and formatters based on
    the application environment. Call this once at startup.
    """
    settings = get_settings()

    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=log_level,
    )

    structlog.configure(
        processors=get_log_processors(settings.ENVIRONMENT),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Suppress noisy loggers
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("playwright").setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> Any:
    """Get a logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Configured structlog logger (BoundLogger or BoundLoggerLazyProxy)
    """
    return structlog.get_logger(name)


class LogContext:
    """Context manager for adding context to logs within a scope.

    Only the keys bound by this context are removed on exit, so nested
    contexts (a tool call inside a CLI run) keep the outer bindings.

    Example:
        with LogContext(operation="navigate", session_id="abc123"):
            logger.info("dispatching_tool")
            # Logs will include operation and session_id
    """

    def __init__(self, **kwargs: Any) -> None:
        """Initialize log context.

        Args:
            **kwargs: Key-value pairs to add to log context
        """
        self.context = {key: value for key, value in kwargs.items() if value is not None}

    def __enter__(self) -> None:
        """Enter the context and bind variables."""
        structlog.contextvars.bind_contextvars(**self.context)

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit the context and unbind variables."""
        structlog.contextvars.unbind_contextvars(*self.context)
