"""Page actions: navigation, clicking, typing and waiting.

Every action runs inside SessionManager.with_page. Selector-based actions
wait for their element first; when it does not show up the selector
resolver is consulted, and the action proceeds on the healed selector only
if its confidence clears the threshold for the intent.
"""

import random
from typing import Any, Literal

import structlog
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from browserguard.browser.extractor import FIND_ELEMENT_JS
from browserguard.browser.selector_resolver import SelectorResolver
from browserguard.core.errors import (
    BrowserGuardError,
    ElementNotFoundError,
    NavigationTimeoutError,
    is_unrecoverable,
    wrap_exception,
)
from browserguard.models.selector import SelectorIntent, SelectorResolutionResult

logger = structlog.get_logger(__name__)

WaitState = Literal["attached", "detached", "visible", "hidden"]


# Run when real input events fail on an element that was found.
# Both return false when nothing matches.
JS_CLICK_SCRIPT = """
([selector]) => {
""" + FIND_ELEMENT_JS + """
    const el = findElement(selector);
    if (!el) return false;
    el.click();
    return true;
}
"""

JS_TYPE_SCRIPT = """
([selector, text, clear]) => {
""" + FIND_ELEMENT_JS + """
    const el = findElement(selector);
    if (!el) return false;
    el.focus();
    if (el.isContentEditable) {
        el.textContent = clear ? text : el.textContent + text;
    } else {
        el.value = clear ? text : (el.value || '') + text;
    }
    el.dispatchEvent(new Event('input', { bubbles: true }));
    el.dispatchEvent(new Event('change', { bubbles: true }));
    return true;
}
"""


class Navigator:
    """Page actions with self-healing selectors.

    Typing without an explicit delay uses a random per-character delay so
    input events look like a person typing.
    """

    MIN_CHAR_DELAY_MS = 80
    MAX_CHAR_DELAY_MS = 200
    ELEMENT_TIMEOUT_MS = 5000

    @staticmethod
    async def goto(
        page: Any,
        url: str,
        wait_until: Literal["domcontentloaded", "networkidle", "load", "commit"] = "domcontentloaded",
        timeout_ms: int = 60000,
    ) -> dict[str, Any]:
        """Navigate to ``url``.

        Args:
            page: Playwright Page instance
            url: Target URL
            wait_until: Wait strategy for navigation
            timeout_ms: Navigation timeout

        Returns:
            dict: url, final_url, status and title

        Raises:
            NavigationTimeoutError: If the page did not load in time
        """
        logger.info("navigating", url=url, wait_until=wait_until)
        try:
            response = await page.goto(url, wait_until=wait_until, timeout=timeout_ms)
        except BrowserGuardError:
            raise
        except PlaywrightTimeoutError as e:
            logger.warning("navigation_timeout", url=url, timeout_ms=timeout_ms)
            raise NavigationTimeoutError(
                f"Navigation to {url} timed out after {timeout_ms}ms",
                context={"url": url, "timeout_ms": timeout_ms},
                suggested_action="Retry, or use wait_until='commit' for slow pages.",
            ) from e
        except Exception as e:
            logger.error("navigation_failed", url=url, error=str(e), error_type=type(e).__name__)
            raise wrap_exception(e, operation="navigate") from e

        result = {
            "url": url,
            "final_url": page.url,
            "status": response.status if response else None,
            "title": await page.title(),
        }
        logger.info("navigation_complete", url=url, final_url=result["final_url"], status=result["status"])
        return result

    @staticmethod
    async def locate(
        page: Any,
        selector: str,
        resolver: SelectorResolver,
        intent: SelectorIntent,
        text_hint: str | None = None,
        state: WaitState = "visible",
        timeout_ms: int = ELEMENT_TIMEOUT_MS,
    ) -> tuple[str, SelectorResolutionResult | None]:
        """Wait for ``selector``, healing it if it never appears.

        Returns:
            The selector to act on, and the resolution when healing was needed

        Raises:
            ElementNotFoundError: If neither the selector nor a fallback matched
        """
        try:
            await page.wait_for_selector(selector, state=state, timeout=timeout_ms)
            return selector, None
        except Exception as e:
            if is_unrecoverable(e):
                raise wrap_exception(e, operation=intent) from e
            logger.info("selector_missing", selector=selector, intent=intent, error_type=type(e).__name__)

        resolution = await resolver.resolve(selector, page, intent=intent, text_hint=text_hint)
        if not resolution.resolved or resolution.confidence < resolver.threshold_for(intent):
            raise ElementNotFoundError(
                selector,
                context={"intent": intent, "attempted": resolution.attempted},
            )

        healed = resolution.resolved_selector
        try:
            await page.wait_for_selector(healed, state=state, timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise ElementNotFoundError(
                selector,
                f"Element not found: {selector} (fallback {healed} is not {state})",
                context={"intent": intent, "resolved_selector": healed},
            ) from e
        return healed, resolution

    @staticmethod
    def _action_result(
        selector: str,
        target: str,
        resolution: SelectorResolutionResult | None,
        fallback: str | None = None,
    ) -> dict[str, Any]:
        return {
            "selector": selector,
            "resolved_selector": target,
            "strategy_used": resolution.strategy_used if resolution else "exact",
            "confidence": resolution.confidence if resolution else 1.0,
            "healed": resolution is not None,
            "fallback": fallback,
        }

    @staticmethod
    async def _javascript_fallback(
        page: Any,
        script: str,
        args: list[Any],
        action: Literal["click", "type"],
        selector: str,
        target: str,
        cause: Exception,
    ) -> None:
        """Repeat a failed action through page.evaluate.

        Raises:
            ElementNotFoundError: If the action timed out and the script found nothing
            BrowserGuardError: The wrapped original error when the script fails too
        """
        if is_unrecoverable(cause):
            raise wrap_exception(cause, operation=action) from cause

        logger.warning(
            "action_failed_trying_javascript",
            action=action,
            target=target,
            error=str(cause),
            error_type=type(cause).__name__,
        )
        try:
            done = await page.evaluate(script, args)
            detail = "no element matched"
        except Exception as js_error:
            if is_unrecoverable(js_error):
                raise wrap_exception(js_error, operation=action) from js_error
            done = False
            detail = str(js_error)

        if done:
            return

        logger.warning("javascript_fallback_failed", action=action, target=target, detail=detail)
        if isinstance(cause, PlaywrightTimeoutError):
            verb = "clickable" if action == "click" else "editable"
            raise ElementNotFoundError(
                selector,
                f"Element not {verb}: {target} (JavaScript fallback: {detail})",
                context={"intent": action, "resolved_selector": target},
            ) from cause
        error = wrap_exception(cause, operation=action)
        error.context["javascript_fallback_error"] = detail
        raise error from cause

    @staticmethod
    async def click(
        page: Any,
        selector: str,
        resolver: SelectorResolver,
        text_hint: str | None = None,
        timeout_ms: int = ELEMENT_TIMEOUT_MS,
    ) -> dict[str, Any]:
        """Click an element, healing the selector if needed."""
        target, resolution = await Navigator.locate(
            page, selector, resolver, "click", text_hint=text_hint, timeout_ms=timeout_ms
        )
        fallback = None
        try:
            await page.click(target, timeout=timeout_ms)
        except Exception as e:
            await Navigator._javascript_fallback(page, JS_CLICK_SCRIPT, [target], "click", selector, target, e)
            fallback = "javascript"

        resolver.remember("click", target)
        logger.info(
            "element_clicked",
            selector=selector,
            target=target,
            healed=resolution is not None,
            fallback=fallback,
        )
        return Navigator._action_result(selector, target, resolution, fallback)

    @staticmethod
    async def type_text(
        page: Any,
        selector: str,
        text: str,
        resolver: SelectorResolver,
        text_hint: str | None = None,
        clear: bool = True,
        delay_ms: int | None = None,
        timeout_ms: int = ELEMENT_TIMEOUT_MS,
    ) -> dict[str, Any]:
        """Type into a field, healing the selector if needed.

        Args:
            page: Playwright Page instance
            selector: CSS selector for the field
            text: Text to type
            resolver: Selector resolver
            text_hint: Visible label of the field
            clear: Empty the field first
            delay_ms: Fixed per-key delay; random human-like delays when None
            timeout_ms: Element timeout
        """
        target, resolution = await Navigator.locate(
            page, selector, resolver, "type", text_hint=text_hint, timeout_ms=timeout_ms
        )
        fallback = None
        try:
            if clear:
                await page.fill(target, "", timeout=timeout_ms)
            if delay_ms is None:
                for char in text:
                    await page.type(target, char, delay=random.randint(
                        Navigator.MIN_CHAR_DELAY_MS,
                        Navigator.MAX_CHAR_DELAY_MS,
                    ))
            else:
                await page.type(target, text, delay=delay_ms)
        except Exception as e:
            await Navigator._javascript_fallback(
                page, JS_TYPE_SCRIPT, [target, text, clear], "type", selector, target, e
            )
            fallback = "javascript"

        resolver.remember("type", target)
        logger.info("text_typed", selector=selector, target=target, length=len(text), fallback=fallback)
        return {**Navigator._action_result(selector, target, resolution, fallback), "length": len(text)}

    @staticmethod
    async def wait_for(
        page: Any,
        kind: Literal["selector", "timeout", "load_state", "url"],
        value: str | None,
        resolver: SelectorResolver,
        state: WaitState = "visible",
        timeout_ms: int = 30000,
    ) -> dict[str, Any]:
        """Wait for a selector, a fixed time, a load state or a URL."""
        if kind == "timeout":
            await page.wait_for_timeout(timeout_ms)
            return {"kind": kind, "waited_ms": timeout_ms}

        if kind == "selector":
            target, resolution = await Navigator.locate(
                page, value or "", resolver, "extract", state=state, timeout_ms=timeout_ms
            )
            return {"kind": kind, **Navigator._action_result(value or "", target, resolution)}

        try:
            if kind == "load_state":
                await page.wait_for_load_state(value, timeout=timeout_ms)
            else:
                await page.wait_for_url(value, timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationTimeoutError(
                f"Timed out after {timeout_ms}ms waiting for {kind} '{value}'",
                context={"kind": kind, "value": value},
            ) from e
        except Exception as e:
            raise wrap_exception(e, operation="wait") from e
        return {"kind": kind, "value": value, "url": page.url}
