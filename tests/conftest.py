"""Shared fixtures: an in-memory browser, page and launcher."""

import asyncio
from types import SimpleNamespace

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from browserguard.browser.extractor import (
    FULL_CONTENT_SCRIPT,
    MAIN_CONTENT_SCRIPT,
    PREFLIGHT_SCRIPT,
    SELECTOR_CONTENT_SCRIPT,
)
from browserguard.browser.navigator import JS_CLICK_SCRIPT, JS_TYPE_SCRIPT
from browserguard.browser.selector_resolver import (
    ATTRIBUTE_MATCH_SCRIPT,
    COUNT_MATCHES_SCRIPT,
    PROXIMITY_SCRIPT,
    TEXT_MATCH_SCRIPT,
)
from browserguard.browser.session import LaunchedBrowser
from browserguard.core.config import Settings, get_settings


class FakePage:
    """Just enough of a Playwright Page for the collectors and actions.

    ``elements`` maps selectors that exist on the page to their content.
    ``text_matches`` and ``attribute_matches`` map a text or attribute
    fragment to the selector the in-page search would build for it.
    """

    def __init__(self, url: str = "about:blank"):
        self.url = url
        self.title_text = "Example Domain"
        self.full_text = "Example Domain\nThis domain is for use in illustrative examples."
        self.main_text = "This domain is for use in illustrative examples."
        self.html = "<html><body><h1>Example Domain</h1></body></html>"
        self.preflight_stats = {
            "html_bytes": 1_256,
            "text_chars": 120,
            "node_count": 40,
            "image_count": 0,
            "iframe_count": 0,
            "script_count": 1,
        }
        self.elements: dict[str, str] = {}
        self.text_matches: dict[str, str] = {}
        self.attribute_matches: dict[str, str] = {}
        self.proximity: str | None = None

        self.status = 200
        self.goto_error: Exception | None = None
        self.action_error: Exception | None = None
        self.js_error: Exception | None = None
        self.goto_delay = 0.0
        self.alive = True
        self.route_error: Exception | None = None
        self.routes: list[tuple[str, object]] = []
        self.calls: list[tuple] = []
        self.scripts: list[str] = []
        self.closed = False
        self.navigation_timeout: int | None = None

    async def goto(self, url, wait_until=None, timeout=None):
        self.calls.append(("goto", url, wait_until, timeout))
        if self.goto_delay:
            await asyncio.sleep(self.goto_delay)
        if self.goto_error is not None:
            raise self.goto_error
        self.url = url
        return SimpleNamespace(status=self.status)

    async def title(self):
        return self.title_text

    async def evaluate(self, script, arg=None):
        self.scripts.append(script)
        if script == "() => true":
            if not self.alive:
                raise Exception("Target closed")
            return True
        if script == PREFLIGHT_SCRIPT:
            return dict(self.preflight_stats)
        if script == FULL_CONTENT_SCRIPT:
            return self.html if arg else self.full_text
        if script == MAIN_CONTENT_SCRIPT:
            return self.html if arg else self.main_text
        if script == SELECTOR_CONTENT_SCRIPT:
            selector, _as_html = arg
            return self.elements.get(selector)
        if script == COUNT_MATCHES_SCRIPT:
            return 1 if arg in self.elements else 0
        if script == TEXT_MATCH_SCRIPT:
            _role, texts = arg
            return next((self.text_matches[t] for t in texts if t in self.text_matches), None)
        if script == ATTRIBUTE_MATCH_SCRIPT:
            _role, fragments = arg
            return next((self.attribute_matches[f] for f in fragments if f in self.attribute_matches), None)
        if script == PROXIMITY_SCRIPT:
            return self.proximity
        if script in (JS_CLICK_SCRIPT, JS_TYPE_SCRIPT):
            if self.js_error is not None:
                raise self.js_error
            if script == JS_CLICK_SCRIPT:
                self.calls.append(("js_click", arg[0]))
            else:
                self.calls.append(("js_type", arg[0], arg[1]))
            return arg[0] in self.elements
        raise AssertionError(f"unexpected script: {script[:60]!r}")

    async def wait_for_selector(self, selector, state="visible", timeout=None):
        self.calls.append(("wait_for_selector", selector))
        if selector not in self.elements:
            raise PlaywrightTimeoutError(f"Timeout {timeout}ms exceeded waiting for {selector}")

    async def click(self, selector, timeout=None):
        self.calls.append(("click", selector))
        if self.action_error is not None:
            raise self.action_error

    async def fill(self, selector, value, timeout=None):
        self.calls.append(("fill", selector, value))
        if self.action_error is not None:
            raise self.action_error

    async def type(self, selector, text, delay=None):
        self.calls.append(("type", selector, text, delay))
        if self.action_error is not None:
            raise self.action_error

    async def wait_for_timeout(self, timeout):
        self.calls.append(("wait_for_timeout", timeout))

    async def wait_for_load_state(self, state, timeout=None):
        self.calls.append(("wait_for_load_state", state))

    async def wait_for_url(self, url, timeout=None):
        self.calls.append(("wait_for_url", url))
        self.url = url

    async def route(self, pattern, handler):
        if self.route_error is not None:
            raise self.route_error
        self.routes.append((pattern, handler))

    async def unroute(self, pattern, handler):
        self.routes.remove((pattern, handler))

    async def close(self):
        self.closed = True

    def set_default_navigation_timeout(self, timeout):
        self.navigation_timeout = timeout


class FakeBrowser:
    """Playwright Browser stand-in with a working disconnect event."""

    def __init__(self):
        self.connected = True
        self.closed = False
        self.handlers: dict[str, list] = {}

    def is_connected(self):
        return self.connected

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    def disconnect(self):
        self.connected = False
        for handler in self.handlers.get("disconnected", []):
            handler(self)

    async def close(self):
        self.closed = True
        self.connected = False


class FakeLauncher:
    """Launcher that hands out FakeBrowser/FakePage pairs.

    The first ``failures`` launches raise ``error``.
    """

    def __init__(self, failures: int = 0, error: Exception | None = None, setup=None):
        self.failures = failures
        self.error = error
        self.setup = setup
        self.configs = []
        self.pages: list[FakePage] = []
        self.browsers: list[FakeBrowser] = []

    async def launch(self, config):
        self.configs.append(config)
        if self.failures:
            self.failures -= 1
            raise self.error or RuntimeError("Browser process exited with code 1")
        page = FakePage()
        if self.setup is not None:
            self.setup(page)
        browser = FakeBrowser()
        self.pages.append(page)
        self.browsers.append(browser)
        return LaunchedBrowser(browser=browser, page=page)

    @property
    def page(self) -> FakePage:
        return self.pages[-1]

    @property
    def browser(self) -> FakeBrowser:
        return self.browsers[-1]


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """Settings are cached per process; start every test fresh."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings():
    """Fast settings: no launch backoff, short waits, no port scanning."""
    return Settings(
        BROWSER_CDP_ENDPOINT="http://127.0.0.1:9222",
        LAUNCH_BACKOFF_SECONDS=0,
        LAUNCH_TIMEOUT_SECONDS=2,
        OPERATION_TIMEOUT_SECONDS=0.5,
        NAVIGATION_TIMEOUT_MS=200,
        LIVENESS_TIMEOUT_SECONDS=0.1,
        BUSY_WAIT_SECONDS=0.1,
        CLOSE_TIMEOUT_SECONDS=0.5,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def launcher():
    return FakeLauncher()


@pytest.fixture
def page():
    return FakePage("https://example.com/")
