"""Tests for request and response models."""

import pytest
from pydantic import ValidationError

from browserguard.models import ContentRequest, ErrorPayload, PagePreflight, SelectorResolutionResult
from browserguard.models.tools import (
    TOOL_ARGUMENT_MODELS,
    GetContentArgs,
    NavigateArgs,
    ToolResponse,
    WaitArgs,
)


def test_content_request_selector_rules():
    assert ContentRequest(mode="selector", selector="#main").selector == "#main"
    with pytest.raises(ValidationError):
        ContentRequest(mode="selector")
    with pytest.raises(ValidationError):
        ContentRequest(mode="main", selector="#main")
    with pytest.raises(ValidationError):
        ContentRequest(token_budget=0)


def test_get_content_args_with_token_ignores_mode():
    args = GetContentArgs(mode="selector", continuation_token="abc")
    request = args.to_request()

    assert request.continuation_token == "abc"
    assert request.selector is None


def test_preflight_heaviness():
    assert PagePreflight(html_bytes=2_000_000).is_heavy(1_000_000, 5_000) is True
    assert PagePreflight(node_count=6_000).is_heavy(1_000_000, 5_000) is True
    assert PagePreflight(html_bytes=10, node_count=10).is_heavy(1_000_000, 5_000) is False


def test_resolution_consistency():
    """A resolved selector needs a positive confidence and vice versa."""
    with pytest.raises(ValidationError):
        SelectorResolutionResult(original_selector="#a", resolved_selector="#b", confidence=0.0)
    with pytest.raises(ValidationError):
        SelectorResolutionResult(original_selector="#a", confidence=0.5)

    failed = SelectorResolutionResult.failed("#a", "click", ["exact"])
    assert failed.resolved is False
    assert failed.healed is False


def test_navigate_args():
    assert NavigateArgs(url="https://example.com").wait_until == "domcontentloaded"
    assert NavigateArgs(url="file:///tmp/page.html").url.startswith("file:")
    with pytest.raises(ValidationError):
        NavigateArgs(url="javascript:alert(1)")


def test_wait_args_need_value():
    assert WaitArgs(kind="timeout").value is None
    with pytest.raises(ValidationError):
        WaitArgs(kind="selector")


def test_every_operation_has_a_model():
    assert set(TOOL_ARGUMENT_MODELS) == {
        "browser_init",
        "browser_close",
        "navigate",
        "get_content",
        "find_selector",
        "click",
        "type",
        "wait",
        "solve_captcha",
        "session_status",
    }


def test_tool_response():
    ok = ToolResponse.success("navigate", {"status": 200})
    failed = ToolResponse.failure("navigate", ErrorPayload(kind="navigation_timeout", message="slow", retryable=True))

    assert ok.ok is True and ok.error is None
    assert failed.ok is False and failed.data is None
    assert failed.model_dump()["error"]["retryable"] is True
