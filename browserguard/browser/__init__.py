"""Browser layer for browserguard.

This package owns the single browser session and everything that touches
the page: locating an executable and a debug port, launching, the circuit
breaker, page actions, content capture and self-healing selectors.

Main Components:
- SessionManager: Owns the browser/page handles; ``with_page`` is the only gate
- CircuitBreaker: Per-operation-class fail-fast protection
- Navigator: goto/click/type/wait with selector healing
- PageCapture / ResourceBlocker: page.evaluate collectors and temporary blocking
- SelectorResolver: Ranked fallback strategies for broken selectors

Example Usage:
    ```python
    from browserguard.browser import Navigator, SelectorResolver, SessionManager

    async def title_of(url: str) -> str:
        manager = SessionManager()
        await manager.init()
        try:
            result = await manager.with_page(
                lambda page: Navigator.goto(page, url),
                operation_class="navigation",
            )
            return result["title"]
        finally:
            await manager.close()
    ```
"""

from browserguard.browser.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerState,
    CircuitStatus,
)
from browserguard.browser.extractor import PageCapture, ResourceBlocker
from browserguard.browser.locator import (
    find_available_port,
    is_port_available,
    recommended_host,
    resolve_browser_executable,
)
from browserguard.browser.navigator import Navigator
from browserguard.browser.selector_resolver import SelectorResolver, parse_selector_hints
from browserguard.browser.session import (
    BrowserSession,
    LaunchConfig,
    LaunchedBrowser,
    PlaywrightLauncher,
    SessionManager,
    SessionState,
)

__all__ = [
    # Circuit breaker
    "CircuitBreaker",
    "CircuitBreakerState",
    "CircuitStatus",
    # Capture
    "PageCapture",
    "ResourceBlocker",
    # Locator
    "find_available_port",
    "is_port_available",
    "recommended_host",
    "resolve_browser_executable",
    # Actions
    "Navigator",
    # Selectors
    "SelectorResolver",
    "parse_selector_hints",
    # Session
    "BrowserSession",
    "LaunchConfig",
    "LaunchedBrowser",
    "PlaywrightLauncher",
    "SessionManager",
    "SessionState",
]
