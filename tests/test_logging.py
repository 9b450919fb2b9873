"""Tests for logging configuration."""

import structlog

from browserguard import __version__
from browserguard.core.logging import (
    LogContext,
    MAX_VALUE_CHARS,
    add_app_context,
    censor_sensitive_data,
    clip_long_values,
    get_logger,
    setup_logging,
)


def test_setup_logging() -> None:
    """Test that logging setup runs without errors."""
    setup_logging()

    assert structlog.is_configured()


def test_get_logger() -> None:
    """Test getting a logger instance."""
    setup_logging()

    logger = get_logger(__name__)
    assert logger is not None
    assert hasattr(logger, "info")
    assert hasattr(logger, "warning")
    assert hasattr(logger, "error")


def test_log_context_binds_and_unbinds() -> None:
    """Only the keys bound by the context are removed on exit."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(run="outer")

    with LogContext(operation="navigate", session_id="abc123", skipped=None):
        bound = structlog.contextvars.get_contextvars()
        assert bound["operation"] == "navigate"
        assert bound["session_id"] == "abc123"
        assert "skipped" not in bound

    assert structlog.contextvars.get_contextvars() == {"run": "outer"}
    structlog.contextvars.clear_contextvars()


def test_add_app_context() -> None:
    event = add_app_context(None, "info", {"event": "session_ready"})

    assert event["app"] == "browserguard"
    assert event["environment"] == "development"
    assert event["version"] == __version__


def test_censor_sensitive_data() -> None:
    """Credentials are masked; token counts are not."""
    event = censor_sensitive_data(
        None,
        "info",
        {
            "event": "browser_launch",
            "proxy": {"server": "http://proxy:8080", "password": "hunter2"},
            "api_key": "sk-123",
            "continuation_token": "eyJ2IjoxfQ",
            "estimated_tokens": 1200,
            "headers": [{"Authorization": "Bearer abc"}],
        },
    )

    assert event["proxy"]["password"] == "***CENSORED***"
    assert event["proxy"]["server"] == "http://proxy:8080"
    assert event["api_key"] == "***CENSORED***"
    assert event["continuation_token"] == "***CENSORED***"
    assert event["estimated_tokens"] == 1200
    assert event["headers"][0]["Authorization"] == "***CENSORED***"


def test_clip_long_values() -> None:
    """Long strings such as page text are shortened, the event name is not."""
    long_event = "x" * (MAX_VALUE_CHARS + 10)
    event = clip_long_values(
        None,
        "warning",
        {"event": long_event, "detail": "y" * 2_000, "url": "https://example.com/"},
    )

    assert event["event"] == long_event
    assert event["detail"] == "y" * MAX_VALUE_CHARS + "... [2000 chars]"
    assert event["url"] == "https://example.com/"
