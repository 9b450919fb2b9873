"""Page content capture.

This module provides the page.evaluate collectors used by the content
strategy engine: full document text/HTML, main-content reduction, a single
selector subtree, and a metadata-only preflight pass. It also provides a
temporary sub-resource blocker for capturing heavy pages.
"""

from collections.abc import Iterable
from typing import Any

import structlog

from browserguard.core.errors import ElementNotFoundError
from browserguard.models.content import ContentType, PagePreflight

logger = structlog.get_logger(__name__)


PREFLIGHT_SCRIPT = """
() => {
    const root = document.documentElement;
    const html = root ? root.outerHTML : '';
    return {
        html_bytes: new Blob([html]).size,
        text_chars: document.body ? document.body.innerText.length : 0,
        node_count: document.getElementsByTagName('*').length,
        image_count: document.images.length,
        iframe_count: document.getElementsByTagName('iframe').length,
        script_count: document.scripts.length,
    };
}
"""

FULL_CONTENT_SCRIPT = """
(asHtml) => {
    const root = document.documentElement;
    if (!root) return '';
    if (asHtml) return root.outerHTML;
    return document.body ? document.body.innerText : root.textContent || '';
}
"""

MAIN_CONTENT_SCRIPT = """
(asHtml) => {
    const candidates = ['main', 'article', '[role="main"]', '#main', '#content', '.main-content', '.content'];
    let root = null;
    for (const selector of candidates) {
        const found = document.querySelector(selector);
        if (found && found.textContent.trim().length > 0) { root = found; break; }
    }
    root = root || document.body || document.documentElement;
    if (!root) return '';

    const clone = root.cloneNode(true);
    const boilerplate = [
        'script', 'style', 'noscript', 'template', 'svg', 'iframe',
        'nav', 'header', 'footer', 'aside', 'form',
        '[role="navigation"]', '[role="banner"]', '[role="contentinfo"]', '[role="complementary"]',
        '[aria-hidden="true"]', '.ad', '.ads', '.advert', '.advertisement', '[id^="ad-"]', '[class*="sponsor"]',
        '.cookie', '.cookie-banner', '.newsletter', '.share', '.social', '.breadcrumb', '.menu', '.navbar', '.sidebar',
    ];
    clone.querySelectorAll(boilerplate.join(',')).forEach(el => el.remove());

    if (asHtml) return clone.innerHTML.trim();

    const blocks = 'p,h1,h2,h3,h4,h5,h6,li,pre,blockquote,tr,dt,dd,figcaption,section,div';
    clone.querySelectorAll(blocks).forEach(el => el.insertAdjacentText('afterend', '\\n'));
    return clone.textContent
        .split('\\n')
        .map(line => line.replace(/\\s+/g, ' ').trim())
        .filter((line, i, lines) => line.length > 0 || (i > 0 && lines[i - 1].length > 0))
        .join('\\n')
        .trim();
}
"""

# Shared by every collector that looks up a caller-supplied selector.
# Selectors starting with ``xpath=``, ``//`` or ``(//`` are XPath, anything else is CSS.
FIND_ELEMENT_JS = """
const xpathOf = (selector) => {
    if (selector.startsWith('xpath=')) return selector.slice(6);
    if (selector.startsWith('//') || selector.startsWith('(//')) return selector;
    return null;
};
const xpathElements = (expr) => {
    const snapshot = document.evaluate(expr, document, null, XPathResult.ORDERED_NODE_SNAPSHOT_TYPE, null);
    const elements = [];
    for (let i = 0; i < snapshot.snapshotLength; i++) {
        const node = snapshot.snapshotItem(i);
        if (node.nodeType === Node.ELEMENT_NODE) elements.push(node);
    }
    return elements;
};
const findElement = (selector) => {
    const expr = xpathOf(selector);
    if (expr === null) return document.querySelector(selector);
    return xpathElements(expr)[0] || null;
};
const countElements = (selector) => {
    const expr = xpathOf(selector);
    if (expr === null) return document.querySelectorAll(selector).length;
    return xpathElements(expr).length;
};
"""

SELECTOR_CONTENT_SCRIPT = """
([selector, asHtml]) => {
""" + FIND_ELEMENT_JS + """
    let el = null;
    try {
        el = findElement(selector);
    } catch (e) {
        return null;
    }
    if (!el) return null;
    return asHtml ? el.outerHTML : (el.innerText || el.textContent || '');
}
"""

# Substring match against request URLs.
AD_HOST_PATTERNS: tuple[str, ...] = (
    "doubleclick.net",
    "googlesyndication.com",
    "google-analytics.com",
    "googletagmanager.com",
    "adservice.google.",
    "facebook.com/tr",
    "hotjar.com",
    "mixpanel.com",
    "scorecardresearch.com",
    "taboola.com",
    "outbrain.com",
)


class PageCapture:
    """Collectors run against the current page.

    Attributes:
        page: Playwright Page (only valid inside SessionManager.with_page)
    """

    def __init__(self, page: Any) -> None:
        self.page = page

    async def preflight(self) -> PagePreflight:
        """Measure the document without serializing its content."""
        stats = await self.page.evaluate(PREFLIGHT_SCRIPT)
        preflight = PagePreflight(**(stats or {}))
        logger.debug(
            "page_preflight",
            html_bytes=preflight.html_bytes,
            node_count=preflight.node_count,
            image_count=preflight.image_count,
        )
        return preflight

    async def full(self, content_type: ContentType = "text") -> str:
        """Serialize the whole document."""
        return await self.page.evaluate(FULL_CONTENT_SCRIPT, content_type == "html") or ""

    async def main(self, content_type: ContentType = "text") -> str:
        """Main content with navigation and boilerplate stripped."""
        return await self.page.evaluate(MAIN_CONTENT_SCRIPT, content_type == "html") or ""

    async def selector(self, selector: str, content_type: ContentType = "text") -> str:
        """Content of the first element matching ``selector``.

        Raises:
            ElementNotFoundError: If nothing matches (or the selector is invalid)
        """
        content = await self.page.evaluate(SELECTOR_CONTENT_SCRIPT, [selector, content_type == "html"])
        if content is None:
            raise ElementNotFoundError(selector)
        return content


class ResourceBlocker:
    """Abort heavy sub-resources for the duration of a capture.

    Usage:
        async with ResourceBlocker(page, ["image", "media", "font"]) as blocker:
            content = await PageCapture(page).main()

    Failing to install or remove the route is logged, never raised; the
    capture then simply runs unblocked.
    """

    ROUTE_PATTERN = "**/*"

    def __init__(
        self,
        page: Any,
        resource_types: Iterable[str] = ("image", "media", "font"),
        url_patterns: Iterable[str] = AD_HOST_PATTERNS,
    ) -> None:
        self.page = page
        self.resource_types = frozenset(resource_types)
        self.url_patterns = tuple(url_patterns)
        self.active = False
        self.blocked_count = 0

    def should_block(self, resource_type: str, url: str) -> bool:
        """Whether a request would be aborted."""
        if resource_type in self.resource_types:
            return True
        return any(pattern in url for pattern in self.url_patterns)

    async def _handle(self, route: Any) -> None:
        request = route.request
        if self.should_block(request.resource_type, request.url):
            self.blocked_count += 1
            await route.abort()
        else:
            await route.continue_()

    async def __aenter__(self) -> "ResourceBlocker":
        try:
            await self.page.route(self.ROUTE_PATTERN, self._handle)
            self.active = True
            logger.debug("resource_blocking_enabled", resource_types=sorted(self.resource_types))
        except Exception as e:
            logger.warning("resource_blocking_failed", error=str(e), error_type=type(e).__name__)
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if not self.active:
            return
        self.active = False
        try:
            await self.page.unroute(self.ROUTE_PATTERN, self._handle)
            logger.debug("resource_blocking_disabled", blocked_count=self.blocked_count)
        except Exception as e:
            logger.warning("resource_unblocking_failed", error=str(e), error_type=type(e).__name__)
