"""Pydantic models for tool arguments and responses.

Each tool has its own argument model tagged by operation name, so the
dispatcher works with a narrow typed object instead of a free-form dict.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .content import ContentMode, ContentRequest, ContentType
from .errors import ErrorPayload
from .selector import SelectorIntent

WaitUntil = Literal["load", "domcontentloaded", "networkidle", "commit"]


class ToolArguments(BaseModel):
    """Base class for tool arguments."""

    model_config = ConfigDict(extra="forbid")

    operation: str


class BrowserInitArgs(ToolArguments):
    """Arguments for browser_init."""

    operation: Literal["browser_init"] = "browser_init"
    headless: bool | None = Field(default=None, description="Override BROWSER_HEADLESS")
    force: bool = Field(default=False, description="Close a live session before launching")
    executable_path: str | None = Field(default=None, description="Explicit browser executable")
    cdp_endpoint: str | None = Field(default=None, description="Connect to a running browser")
    args: list[str] = Field(default_factory=list, description="Extra browser switches")


class BrowserCloseArgs(ToolArguments):
    """Arguments for browser_close."""

    operation: Literal["browser_close"] = "browser_close"


class NavigateArgs(ToolArguments):
    """Arguments for navigate."""

    operation: Literal["navigate"] = "navigate"
    url: str = Field(..., min_length=1, description="Target URL")
    wait_until: WaitUntil = Field(default="domcontentloaded")
    timeout_ms: int | None = Field(default=None, gt=0, description="Navigation timeout")

    @model_validator(mode="after")
    def check_scheme(self) -> "NavigateArgs":
        """Only web and local-file URLs can be opened."""
        allowed = ("http://", "https://", "file://", "about:", "data:")
        if not self.url.lower().startswith(allowed):
            raise ValueError(f"unsupported URL scheme: {self.url}")
        return self


class GetContentArgs(ToolArguments):
    """Arguments for get_content."""

    operation: Literal["get_content"] = "get_content"
    mode: ContentMode = "main"
    selector: str | None = None
    token_budget: int | None = Field(default=None, gt=0)
    content_type: ContentType = "text"
    continuation_token: str | None = None

    @model_validator(mode="after")
    def check_selector(self) -> "GetContentArgs":
        """A selector is required for selector mode and meaningless otherwise."""
        if self.continuation_token:
            return self
        if self.mode == "selector" and not (self.selector and self.selector.strip()):
            raise ValueError("selector is required when mode is 'selector'")
        if self.mode != "selector" and self.selector is not None:
            raise ValueError("selector is only allowed when mode is 'selector'")
        return self

    def to_request(self) -> ContentRequest:
        """Narrow to the content engine's request model."""
        if self.continuation_token:
            # The token carries mode, selector, type and budget.
            return ContentRequest(continuation_token=self.continuation_token)
        return ContentRequest(
            mode=self.mode,
            selector=self.selector,
            token_budget=self.token_budget,
            content_type=self.content_type,
            continuation_token=self.continuation_token,
        )


class FindSelectorArgs(ToolArguments):
    """Arguments for find_selector."""

    operation: Literal["find_selector"] = "find_selector"
    selector: str | None = Field(default=None, description="Selector to heal")
    text_hint: str | None = Field(default=None, description="Visible text of the element")
    intent: SelectorIntent = "click"

    @model_validator(mode="after")
    def check_hint(self) -> "FindSelectorArgs":
        """Either a selector or a text hint is needed."""
        if not self.selector and not self.text_hint:
            raise ValueError("either selector or text_hint is required")
        return self


class ClickArgs(ToolArguments):
    """Arguments for click."""

    operation: Literal["click"] = "click"
    selector: str = Field(..., min_length=1)
    text_hint: str | None = None
    timeout_ms: int | None = Field(default=None, gt=0)


class TypeArgs(ToolArguments):
    """Arguments for type."""

    operation: Literal["type"] = "type"
    selector: str = Field(..., min_length=1)
    text: str
    text_hint: str | None = None
    clear: bool = Field(default=True, description="Clear the field before typing")
    delay_ms: int | None = Field(default=None, ge=0, description="Fixed per-key delay")
    timeout_ms: int | None = Field(default=None, gt=0)


class WaitArgs(ToolArguments):
    """Arguments for wait."""

    operation: Literal["wait"] = "wait"
    kind: Literal["selector", "timeout", "load_state", "url"] = "selector"
    value: str | None = Field(default=None, description="Selector, load state or URL pattern")
    state: Literal["attached", "detached", "visible", "hidden"] = "visible"
    timeout_ms: int = Field(default=30_000, gt=0)

    @model_validator(mode="after")
    def check_value(self) -> "WaitArgs":
        """Every kind except a plain timeout needs a value."""
        if self.kind != "timeout" and not self.value:
            raise ValueError(f"value is required for wait kind '{self.kind}'")
        return self


class SolveCaptchaArgs(ToolArguments):
    """Arguments for solve_captcha."""

    operation: Literal["solve_captcha"] = "solve_captcha"
    captcha_type: Literal["recaptcha", "hcaptcha", "turnstile"] = "recaptcha"
    site_key: str | None = None
    timeout_ms: int | None = Field(default=None, gt=0)


class SessionStatusArgs(ToolArguments):
    """Arguments for session_status."""

    operation: Literal["session_status"] = "session_status"


TOOL_ARGUMENT_MODELS: dict[str, type[ToolArguments]] = {
    "browser_init": BrowserInitArgs,
    "browser_close": BrowserCloseArgs,
    "navigate": NavigateArgs,
    "get_content": GetContentArgs,
    "find_selector": FindSelectorArgs,
    "click": ClickArgs,
    "type": TypeArgs,
    "wait": WaitArgs,
    "solve_captcha": SolveCaptchaArgs,
    "session_status": SessionStatusArgs,
}


class ToolResponse(BaseModel):
    """Result of a dispatched tool call."""

    ok: bool = Field(..., description="Whether the call succeeded")
    operation: str = Field(..., description="Dispatched operation name")
    data: dict[str, Any] | None = Field(default=None, description="Success payload")
    error: ErrorPayload | None = Field(default=None, description="Failure details")

    @classmethod
    def success(cls, operation: str, data: dict[str, Any] | None = None) -> "ToolResponse":
        """Build a successful response."""
        return cls(ok=True, operation=operation, data=data or {})

    @classmethod
    def failure(cls, operation: str, error: ErrorPayload) -> "ToolResponse":
        """Build a failed response."""
        return cls(ok=False, operation=operation, error=error)
