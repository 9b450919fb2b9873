"""Error taxonomy and failure classification.

Every error that reaches a caller is a BrowserGuardError. Each subclass has
a machine-readable ``kind`` and a ``retryable`` flag, and serializes to an
ErrorPayload so a calling agent can decide whether to retry, wait or give up.

Raw exceptions from the browser library are classified by message into a
FailureCategory. The category decides whether a failure counts toward a
circuit breaker and whether the session has to be considered crashed.
"""

import asyncio
from enum import Enum
from typing import Any

from browserguard.models.errors import ErrorPayload


class FailureCategory(str, Enum):
    """Categories of browser-level failures."""

    FRAME_DETACHED = "frame_detached"
    SESSION_CLOSED = "session_closed"
    TARGET_CLOSED = "target_closed"
    PROTOCOL_ERROR = "protocol_error"
    NAVIGATION_TIMEOUT = "navigation_timeout"
    ELEMENT_NOT_FOUND = "element_not_found"
    UNKNOWN = "unknown"


class BrowserGuardError(Exception):
    """Base class for all errors surfaced to callers."""

    kind: str = "unknown_error"
    retryable: bool = False
    category: FailureCategory | None = None

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        suggested_action: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.suggested_action = suggested_action

    def to_payload(self) -> ErrorPayload:
        """Serialize for the caller."""
        return ErrorPayload(
            kind=self.kind,
            message=self.message,
            retryable=self.retryable,
            suggested_action=self.suggested_action,
            context=self.context,
        )


class ValidationError(BrowserGuardError):
    """An operation was requested out of order. Never retried."""

    kind = "validation_error"


class InvalidArgumentsError(ValidationError):
    """Tool arguments failed validation."""

    kind = "invalid_arguments"


class StaleContinuationError(ValidationError):
    """A continuation token no longer matches the page content."""

    kind = "stale_continuation"


class CircuitOpenError(BrowserGuardError):
    """A circuit breaker is open; the call was rejected without touching the browser."""

    kind = "circuit_open"
    retryable = True

    def __init__(self, operation_class: str, retry_after: float, *, reason: str | None = None) -> None:
        self.operation_class = operation_class
        self.retry_after = max(0.0, retry_after)
        detail = reason or f"retry in {self.retry_after:.1f}s"
        super().__init__(
            f"Circuit breaker for '{operation_class}' is open ({detail})",
            context={"operation_class": operation_class, "retry_after": round(self.retry_after, 3)},
            suggested_action="Wait for the cooldown to pass before retrying.",
        )


class BrowserLaunchError(BrowserGuardError):
    """The browser could not be launched after all attempts."""

    kind = "browser_launch_failed"
    retryable = True


class BrowserNotFoundError(BrowserGuardError):
    """No browser executable could be located."""

    kind = "browser_not_found"


class NoPortAvailableError(BrowserGuardError):
    """Every port in the scanned range is taken."""

    kind = "no_port_available"
    retryable = True


class NavigationTimeoutError(BrowserGuardError):
    """A navigation or page operation did not finish in time."""

    kind = "navigation_timeout"
    retryable = True
    category = FailureCategory.NAVIGATION_TIMEOUT


class ElementNotFoundError(BrowserGuardError):
    """A selector did not resolve, even after self-healing."""

    kind = "element_not_found"
    retryable = True
    category = FailureCategory.ELEMENT_NOT_FOUND

    def __init__(self, selector: str, message: str | None = None, **kwargs: Any) -> None:
        self.selector = selector
        kwargs.setdefault(
            "suggested_action",
            "Use get_content to inspect the page, then find_selector to locate the element by text.",
        )
        context = {"selector": selector, **(kwargs.pop("context", None) or {})}
        super().__init__(message or f"Element not found: {selector}", context=context, **kwargs)


class SessionCrashedError(BrowserGuardError):
    """The browser process or page is gone; an explicit browser_init is required."""

    kind = "session_crashed"
    category = FailureCategory.SESSION_CLOSED

    def __init__(self, message: str = "Browser session crashed", **kwargs: Any) -> None:
        kwargs.setdefault("suggested_action", "Call browser_init to start a new session.")
        super().__init__(message, **kwargs)


class SessionReplacedError(BrowserGuardError):
    """The session an operation started on was closed or replaced while it ran."""

    kind = "session_replaced"
    retryable = True

    def __init__(self, message: str = "Browser session was replaced during the operation", **kwargs: Any) -> None:
        kwargs.setdefault("suggested_action", "Retry the operation on the current session.")
        super().__init__(message, **kwargs)


class SessionBusyError(BrowserGuardError):
    """Another operation held the session longer than the busy wait."""

    kind = "session_busy"
    retryable = True


class TokenBudgetExceededError(BrowserGuardError):
    """Content exceeds the requested budget; handled by chunking."""

    kind = "token_budget_exceeded"
    retryable = True

    def __init__(self, estimated_tokens: int, budget: int, **kwargs: Any) -> None:
        self.estimated_tokens = estimated_tokens
        self.budget = budget
        context = {
            "estimated_tokens": estimated_tokens,
            "budget": budget,
            **(kwargs.pop("context", None) or {}),
        }
        super().__init__(
            f"Content needs ~{estimated_tokens} tokens, budget is {budget}",
            context=context,
            **kwargs,
        )


class ContentTooLargeError(TokenBudgetExceededError):
    """Content cannot be delivered even in chunks."""

    kind = "content_too_large"
    retryable = False


class CaptchaError(BrowserGuardError):
    """The external captcha solver failed or is not configured."""

    kind = "captcha_failed"
    retryable = True


# Ordered: the first matching pattern wins.
_CATEGORY_PATTERNS: list[tuple[FailureCategory, tuple[str, ...]]] = [
    (FailureCategory.FRAME_DETACHED, ("frame was detached", "frame detached", "frame got detached")),
    (
        FailureCategory.SESSION_CLOSED,
        (
            "session closed",
            "browser has been closed",
            "browser has disconnected",
            "connection closed",
            "websocket is not open",
        ),
    ),
    (
        FailureCategory.TARGET_CLOSED,
        ("target closed", "target page, context or browser has been closed", "page has been closed"),
    ),
    (FailureCategory.PROTOCOL_ERROR, ("protocol error",)),
    (FailureCategory.NAVIGATION_TIMEOUT, ("navigation timeout", "timeout", "timed out")),
    (FailureCategory.ELEMENT_NOT_FOUND, ("element not found", "no node found", "failed to find element")),
]

_UNCOUNTED_CATEGORIES = {FailureCategory.ELEMENT_NOT_FOUND}
_UNRECOVERABLE_CATEGORIES = {FailureCategory.SESSION_CLOSED, FailureCategory.TARGET_CLOSED}


def classify_failure(exc: BaseException) -> FailureCategory:
    """Map an exception to a FailureCategory.

    Typed errors carry their own category; everything else is matched
    case-insensitively against the message.
    """
    if isinstance(exc, BrowserGuardError) and exc.category is not None:
        return exc.category
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return FailureCategory.NAVIGATION_TIMEOUT

    message = str(exc).lower()
    for category, patterns in _CATEGORY_PATTERNS:
        if any(pattern in message for pattern in patterns):
            return category
    return FailureCategory.UNKNOWN


def counts_toward_breaker(exc: BaseException) -> bool:
    """Whether a failure says something about the health of the browser.

    Caller mistakes (validation, bad arguments), budget decisions and
    rejections by the breaker itself are not counted; neither is a selector
    that simply does not match.
    """
    if isinstance(
        exc,
        (
            ValidationError,
            CircuitOpenError,
            SessionBusyError,
            SessionReplacedError,
            TokenBudgetExceededError,
            BrowserNotFoundError,
            NoPortAvailableError,
        ),
    ):
        return False
    return classify_failure(exc) not in _UNCOUNTED_CATEGORIES


def is_unrecoverable(exc: BaseException) -> bool:
    """Whether the failure means the browser session is gone."""
    if isinstance(exc, SessionCrashedError):
        return True
    if isinstance(exc, BrowserGuardError) and exc.category is None:
        return False
    return classify_failure(exc) in _UNRECOVERABLE_CATEGORIES


def wrap_exception(exc: BaseException, *, operation: str | None = None) -> BrowserGuardError:
    """Convert any exception into a BrowserGuardError of the matching kind."""
    if isinstance(exc, BrowserGuardError):
        return exc

    category = classify_failure(exc)
    context: dict[str, Any] = {"category": category.value, "error_type": type(exc).__name__}
    if operation:
        context["operation"] = operation
    message = str(exc) or type(exc).__name__

    if category == FailureCategory.NAVIGATION_TIMEOUT:
        return NavigationTimeoutError(message, context=context)
    if category == FailureCategory.ELEMENT_NOT_FOUND:
        return ElementNotFoundError(context.get("selector", ""), message, context=context)
    if category in _UNRECOVERABLE_CATEGORIES:
        return SessionCrashedError(message, context=context)

    error = BrowserGuardError(message, context=context)
    if category == FailureCategory.FRAME_DETACHED:
        error.kind = "frame_detached"
        error.retryable = True
        error.suggested_action = "The page frame was detached. Navigate again or refresh."
    elif category == FailureCategory.PROTOCOL_ERROR:
        error.kind = "protocol_error"
        error.retryable = True
        error.suggested_action = "Try the operation again or reinitialize the browser."
    return error
