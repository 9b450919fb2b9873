"""Tests for ToolDispatcher: full tool-call flows against a fake browser."""

import pytest

from browserguard.browser.session import SessionState
from browserguard.tools import ToolDispatcher, create_context
from browserguard.workflow.ledger import Outcome


class FakeSolver:
    """Captcha solver that always succeeds."""

    def __init__(self):
        self.calls = []

    async def solve(self, page, captcha_type, site_key):
        self.calls.append((captcha_type, site_key))
        return {"solved": True, "token": "03AGdBq2"}


@pytest.fixture
def solver():
    return FakeSolver()


@pytest.fixture
def context(settings, launcher, clock, solver):
    return create_context(settings=settings, launcher=launcher, clock=clock, captcha_solver=solver)


@pytest.fixture
def dispatcher(context):
    return ToolDispatcher(context)


async def _ready(dispatcher, url="https://example.com/"):
    assert (await dispatcher.dispatch("browser_init")).ok
    response = await dispatcher.dispatch("navigate", {"url": url})
    assert response.ok, response.error


class TestHappyPath:
    """init -> navigate -> get_content."""

    @pytest.mark.asyncio
    async def test_full_flow(self, dispatcher, launcher, context):
        init = await dispatcher.dispatch("browser_init", {"headless": True})
        assert init.ok
        assert init.data["state"] == "ready"
        assert init.data["reused"] is False

        navigate = await dispatcher.dispatch("navigate", {"url": "https://example.com/"})
        assert navigate.ok
        assert navigate.data["status"] == 200
        assert navigate.data["title"] == "Example Domain"

        content = await dispatcher.dispatch("get_content", {"mode": "main"})
        assert content.ok
        assert content.data["content"] == launcher.page.main_text
        assert content.data["truncated"] is False

        assert [entry.outcome for entry in context.ledger.entries] == [Outcome.SUCCESS] * 3

    @pytest.mark.asyncio
    async def test_second_init_reuses_session(self, dispatcher, launcher):
        await dispatcher.dispatch("browser_init")
        response = await dispatcher.dispatch("browser_init")

        assert response.data["reused"] is True
        assert len(launcher.configs) == 1

    @pytest.mark.asyncio
    async def test_interactions(self, dispatcher, launcher):
        await _ready(dispatcher)
        page = launcher.page
        page.elements.update({"#q": "", "button.search": "Search"})
        page.text_matches["Search"] = "button.search"

        typed = await dispatcher.dispatch("type", {"selector": "#q", "text": "playwright", "delay_ms": 0})
        clicked = await dispatcher.dispatch("click", {"selector": "#search-btn", "text_hint": "Search"})
        waited = await dispatcher.dispatch("wait", {"kind": "timeout", "timeout_ms": 10})

        assert typed.ok and clicked.ok and waited.ok
        assert clicked.data["healed"] is True
        assert ("click", "button.search") in page.calls

    @pytest.mark.asyncio
    async def test_find_selector(self, dispatcher, launcher):
        await _ready(dispatcher)
        launcher.page.text_matches["Add to cart"] = "#add-to-cart"

        found = await dispatcher.dispatch("find_selector", {"text_hint": "Add to cart"})
        missing = await dispatcher.dispatch("find_selector", {"selector": "#nothing-here"})

        assert found.ok
        assert found.data["resolved_selector"] == "#add-to-cart"
        assert found.data["confidence"] == 0.7
        assert missing.ok is False
        assert missing.error.kind == "element_not_found"

    @pytest.mark.asyncio
    async def test_chunked_content_with_continuation(self, dispatcher, launcher):
        await _ready(dispatcher)
        launcher.page.main_text = "token " * 500

        first = await dispatcher.dispatch("get_content", {"token_budget": 200})
        assert first.data["chunk_info"]["index"] == 0
        assert first.data["recommendation"] is None

        token = first.data["chunk_info"]["continuation_token"]
        second = await dispatcher.dispatch("get_content", {"continuation_token": token})

        assert second.ok
        assert second.data["chunk_info"]["index"] == 1

    @pytest.mark.asyncio
    async def test_solve_captcha(self, dispatcher, solver):
        await _ready(dispatcher)

        response = await dispatcher.dispatch("solve_captcha", {"captcha_type": "hcaptcha", "site_key": "abc"})

        assert response.ok
        assert response.data["solved"] is True
        assert solver.calls == [("hcaptcha", "abc")]

    @pytest.mark.asyncio
    async def test_session_status(self, dispatcher):
        await _ready(dispatcher)

        response = await dispatcher.dispatch("session_status")

        assert response.ok
        assert response.data["alive"] is True
        assert response.data["session"]["state"] == "ready"
        assert response.data["circuits"]["navigation"]["status"] == "closed"
        assert response.data["ledger"]["succeeded"] == ["browser_init", "navigate"]


class TestPrematureCalls:
    """Calls out of order are rejected before touching the browser."""

    @pytest.mark.asyncio
    async def test_content_before_init(self, dispatcher, launcher, context):
        response = await dispatcher.dispatch("get_content", {"mode": "main"})

        assert response.ok is False
        assert response.error.kind == "validation_error"
        assert response.error.retryable is False
        assert "browser_init" in response.error.message
        assert launcher.configs == []
        assert context.ledger.last_entry().outcome == Outcome.REJECTED

    @pytest.mark.asyncio
    async def test_content_before_navigate(self, dispatcher):
        await dispatcher.dispatch("browser_init")

        response = await dispatcher.dispatch("click", {"selector": "#go"})

        assert response.error.kind == "validation_error"
        assert "navigate was never called" in response.error.message

    @pytest.mark.asyncio
    async def test_after_close(self, dispatcher, launcher, context):
        await _ready(dispatcher)

        closed = await dispatcher.dispatch("browser_close")
        response = await dispatcher.dispatch("navigate", {"url": "https://example.com/"})

        assert closed.ok
        assert launcher.browser.closed is True
        assert response.error.kind == "validation_error"
        assert "closed" in response.error.message

    @pytest.mark.asyncio
    async def test_idle_session_is_closed(self, dispatcher, clock, settings):
        await _ready(dispatcher)
        clock.advance(settings.SESSION_IDLE_TIMEOUT_SECONDS + 1)

        response = await dispatcher.dispatch("get_content")

        assert response.error.kind == "validation_error"
        assert dispatcher.context.session.state == SessionState.CLOSED


class TestArgumentValidation:
    """Malformed calls are rejected as invalid_arguments."""

    @pytest.mark.asyncio
    async def test_bad_url_scheme(self, dispatcher):
        await dispatcher.dispatch("browser_init")

        response = await dispatcher.dispatch("navigate", {"url": "ftp://example.com"})

        assert response.error.kind == "invalid_arguments"
        assert "unsupported URL scheme" in response.error.message

    @pytest.mark.asyncio
    async def test_unknown_argument(self, dispatcher):
        await dispatcher.dispatch("browser_init")

        response = await dispatcher.dispatch("navigate", {"url": "https://example.com", "speed": "fast"})

        assert response.error.kind == "invalid_arguments"
        assert response.error.context["errors"][0]["field"] == "speed"

    @pytest.mark.asyncio
    async def test_selector_mode_needs_selector(self, dispatcher):
        await _ready(dispatcher)

        response = await dispatcher.dispatch("get_content", {"mode": "selector"})

        assert response.error.kind == "invalid_arguments"

    @pytest.mark.asyncio
    async def test_unknown_operation(self, dispatcher):
        await _ready(dispatcher)

        response = await dispatcher.dispatch("scroll", {"pixels": 300})

        assert response.error.kind == "invalid_arguments"
        assert "Unknown operation" in response.error.message

    @pytest.mark.asyncio
    async def test_malformed_continuation_token(self, dispatcher):
        await _ready(dispatcher)

        response = await dispatcher.dispatch("get_content", {"continuation_token": "garbage"})

        assert response.error.kind == "invalid_arguments"

    @pytest.mark.asyncio
    async def test_captcha_without_solver(self, settings, launcher, clock):
        dispatcher = ToolDispatcher(create_context(settings=settings, launcher=launcher, clock=clock))
        await _ready(dispatcher)

        response = await dispatcher.dispatch("solve_captcha")

        assert response.error.kind == "captcha_failed"
        assert response.error.retryable is False


class TestFailures:
    """Breaker trips, crashes and timeouts surface as structured errors."""

    @pytest.mark.asyncio
    async def test_repeated_navigation_failures_open_circuit(self, dispatcher, launcher, clock, settings):
        await dispatcher.dispatch("browser_init")
        page = launcher.page
        page.goto_error = RuntimeError("net::ERR_CONNECTION_REFUSED at https://down.example.com/")

        for _ in range(settings.CIRCUIT_FAILURE_THRESHOLD):
            response = await dispatcher.dispatch("navigate", {"url": "https://down.example.com/"})
            assert response.error.kind == "unknown_error"

        rejected = await dispatcher.dispatch("navigate", {"url": "https://down.example.com/"})
        assert rejected.error.kind == "circuit_open"
        assert rejected.error.retryable is True
        assert rejected.error.context["retry_after"] > 0
        assert len([call for call in page.calls if call[0] == "goto"]) == settings.CIRCUIT_FAILURE_THRESHOLD

        content = await dispatcher.dispatch("get_content")
        assert "navigate failed 3 times" in content.error.message
        assert "ERR_CONNECTION_REFUSED" in content.error.message

        # After the cooldown a probe is let through and closes the circuit.
        page.goto_error = None
        clock.advance(settings.CIRCUIT_COOLDOWN_SECONDS)
        recovered = await dispatcher.dispatch("navigate", {"url": "https://example.com/"})
        assert recovered.ok
        assert (await dispatcher.dispatch("get_content")).ok

    @pytest.mark.asyncio
    async def test_crash_requires_reinit(self, dispatcher, launcher):
        await _ready(dispatcher)
        launcher.page.goto_error = RuntimeError("Target closed")

        crashed = await dispatcher.dispatch("navigate", {"url": "https://example.com/next"})
        assert crashed.error.kind == "session_crashed"

        rejected = await dispatcher.dispatch("navigate", {"url": "https://example.com/next"})
        assert rejected.error.kind == "validation_error"
        assert "crashed" in rejected.error.message

        assert (await dispatcher.dispatch("browser_init")).ok
        assert len(launcher.configs) == 2
        assert (await dispatcher.dispatch("navigate", {"url": "https://example.com/next"})).ok

    @pytest.mark.asyncio
    async def test_navigation_timeout_keeps_session(self, dispatcher, launcher):
        await dispatcher.dispatch("browser_init")
        launcher.page.goto_delay = 5

        response = await dispatcher.dispatch("navigate", {"url": "https://slow.example.com/"})

        assert response.error.kind == "navigation_timeout"
        assert response.error.retryable is True
        assert dispatcher.context.session.state == SessionState.READY

    @pytest.mark.asyncio
    async def test_launch_failure(self, settings, clock):
        from tests.conftest import FakeLauncher

        launcher = FakeLauncher(failures=10)
        dispatcher = ToolDispatcher(create_context(settings=settings, launcher=launcher, clock=clock))

        response = await dispatcher.dispatch("browser_init")

        assert response.error.kind == "browser_launch_failed"
        assert dispatcher.context.session.state == SessionState.CLOSED
        assert dispatcher.context.ledger.consecutive_failures("browser_init") == 1
