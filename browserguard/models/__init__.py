"""Pydantic models for browserguard."""

from .content import (
    ChunkInfo,
    ContentMode,
    ContentRequest,
    ContentResult,
    ContentType,
    PagePreflight,
)
from .errors import ErrorPayload
from .selector import (
    SelectorIntent,
    SelectorResolutionResult,
    SelectorStrategy,
)
from .tools import (
    TOOL_ARGUMENT_MODELS,
    BrowserCloseArgs,
    BrowserInitArgs,
    ClickArgs,
    FindSelectorArgs,
    GetContentArgs,
    NavigateArgs,
    SessionStatusArgs,
    SolveCaptchaArgs,
    ToolArguments,
    ToolResponse,
    TypeArgs,
    WaitArgs,
)

__all__ = [
    # Content models
    "ContentMode",
    "ContentType",
    "ContentRequest",
    "ContentResult",
    "ChunkInfo",
    "PagePreflight",
    # Error models
    "ErrorPayload",
    # Selector models
    "SelectorIntent",
    "SelectorStrategy",
    "SelectorResolutionResult",
    # Tool models
    "ToolArguments",
    "ToolResponse",
    "TOOL_ARGUMENT_MODELS",
    "BrowserInitArgs",
    "BrowserCloseArgs",
    "NavigateArgs",
    "GetContentArgs",
    "FindSelectorArgs",
    "ClickArgs",
    "TypeArgs",
    "WaitArgs",
    "SolveCaptchaArgs",
    "SessionStatusArgs",
]
