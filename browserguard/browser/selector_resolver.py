"""Self-healing selector resolution.

When a selector no longer matches, the resolver walks a fixed ladder of
fallback strategies and returns the first selector that matches, with a
confidence score for the strategy that produced it:

    exact (1.0) > normalized (0.9) > text_match (0.7)
        > attribute_match (0.5) > structural_proximity (0.35)

Strategies below the caller's threshold are never tried, so click/type
(destructive intents) can not act on a proximity guess. Nothing is cached
between calls except the last successful selector per intent, and
proximity results are never remembered, so the same selector against an
unchanged DOM always resolves the same way.
"""

import re
from dataclasses import dataclass, field
from typing import Any

from browserguard.browser.extractor import FIND_ELEMENT_JS
from browserguard.core.config import Settings, get_settings
from browserguard.core.logging import get_logger
from browserguard.models.selector import (
    SelectorIntent,
    SelectorResolutionResult,
    SelectorStrategy,
)

logger = get_logger(__name__)


STRATEGY_CONFIDENCE: dict[SelectorStrategy, float] = {
    "exact": 1.0,
    "normalized": 0.9,
    "text_match": 0.7,
    "attribute_match": 0.5,
    "structural_proximity": 0.35,
}

DESTRUCTIVE_INTENTS = frozenset({"click", "type"})

INTENT_ROLE_SELECTORS: dict[str, str] = {
    "click": ", ".join([
        "a[href]",
        "button",
        'input[type="button"]',
        'input[type="submit"]',
        'input[type="checkbox"]',
        'input[type="radio"]',
        '[role="button"]',
        '[role="link"]',
        '[role="menuitem"]',
        '[role="tab"]',
        "[onclick]",
        "summary",
        "label",
        "select",
    ]),
    "type": ", ".join([
        'input:not([type="hidden"]):not([type="button"]):not([type="submit"])'
        ':not([type="checkbox"]):not([type="radio"])',
        "textarea",
        '[contenteditable="true"]',
        '[role="textbox"]',
        '[role="searchbox"]',
        '[role="combobox"]',
    ]),
    "extract": ", ".join([
        "main",
        "article",
        "section",
        "table",
        "ul",
        "ol",
        "pre",
        "blockquote",
        "h1, h2, h3, h4, h5, h6",
        "p",
        "li",
        "td",
        "div",
        "span",
        '[role="main"]',
        '[role="region"]',
    ]),
}

# Builds a selector that uniquely identifies an element.
_BUILD_SELECTOR_JS = """
const buildSelector = (el) => {
    const esc = (s) => (window.CSS && CSS.escape) ? CSS.escape(s) : s.replace(/[^\\w-]/g, '\\\\$&');
    if (el.id && document.querySelectorAll('#' + esc(el.id)).length === 1) return '#' + esc(el.id);
    const parts = [];
    let node = el;
    while (node && node.nodeType === 1 && node !== document.documentElement) {
        if (node.id && document.querySelectorAll('#' + esc(node.id)).length === 1) {
            parts.unshift('#' + esc(node.id));
            break;
        }
        let part = node.tagName.toLowerCase();
        const parent = node.parentElement;
        if (parent) {
            const siblings = Array.from(parent.children).filter(c => c.tagName === node.tagName);
            if (siblings.length > 1) part += ':nth-of-type(' + (siblings.indexOf(node) + 1) + ')';
        }
        parts.unshift(part);
        node = parent;
    }
    return parts.join(' > ');
};
const isVisible = (el) => {
    const rect = el.getBoundingClientRect();
    const style = window.getComputedStyle(el);
    return rect.width > 0 && rect.height > 0 && style.visibility !== 'hidden' && style.display !== 'none';
};
"""

COUNT_MATCHES_SCRIPT = """
(selector) => {
""" + FIND_ELEMENT_JS + """
    try {
        return countElements(selector);
    } catch (e) {
        return -1;
    }
}
"""

TEXT_MATCH_SCRIPT = """
([roleSelector, texts]) => {
""" + _BUILD_SELECTOR_JS + """
    const norm = (s) => (s || '').replace(/\\s+/g, ' ').trim().toLowerCase();
    const wanted = texts.map(norm).filter(t => t.length > 0);
    if (!wanted.length) return null;
    let best = null;
    for (const el of document.querySelectorAll(roleSelector)) {
        const label = norm(el.innerText || el.value || el.getAttribute('aria-label') ||
            el.getAttribute('placeholder') || el.getAttribute('title') || el.textContent);
        if (!label) continue;
        for (const text of wanted) {
            if (!label.includes(text)) continue;
            const score = (label === text ? 0 : 1) * 100000 + label.length;
            const visible = isVisible(el) ? 0 : 1;
            const rank = visible * 1000000 + score;
            if (!best || rank < best.rank) best = { rank, el };
        }
    }
    return best ? buildSelector(best.el) : null;
}
"""

ATTRIBUTE_MATCH_SCRIPT = """
([roleSelector, fragments]) => {
""" + _BUILD_SELECTOR_JS + """
    const wanted = fragments.map(f => f.toLowerCase()).filter(f => f.length > 1);
    if (!wanted.length) return null;
    const attrs = ['id', 'name', 'class', 'aria-label', 'placeholder', 'title', 'data-testid', 'data-test', 'data-qa'];
    for (const fragment of wanted) {
        for (const attr of attrs) {
            for (const el of document.querySelectorAll(roleSelector)) {
                const value = (el.getAttribute(attr) || '').toLowerCase();
                if (value && value.includes(fragment)) return buildSelector(el);
            }
        }
    }
    return null;
}
"""

PROXIMITY_SCRIPT = """
([anchorSelector, roleSelector]) => {
""" + _BUILD_SELECTOR_JS + FIND_ELEMENT_JS + """
    let anchor = null;
    try { anchor = findElement(anchorSelector); } catch (e) { return null; }
    if (!anchor) return null;
    let scope = anchor.parentElement;
    for (let depth = 0; scope && depth < 3; depth++) {
        const candidate = Array.from(scope.querySelectorAll(roleSelector)).find(el => el !== anchor);
        if (candidate) return buildSelector(candidate);
        scope = scope.parentElement;
    }
    return null;
}
"""

_ID_RE = re.compile(r"#([A-Za-z_][\w-]*)")
_CLASS_RE = re.compile(r"\.([A-Za-z_][\w-]*)")
_TAG_RE = re.compile(r"^\s*([A-Za-z][\w-]*)")
_ATTR_RE = re.compile(r"""\[\s*([\w-]+)\s*[~|^$*]?=\s*["']?([^"'\]]+)["']?\s*\]""")
_TEXT_RE = re.compile(r"""(?::has-text|:contains|:text)\(\s*["'](.+?)["']\s*\)|^text=["']?(.+?)["']?$""")


@dataclass
class SelectorHints:
    """Pieces of a selector usable by the fallback strategies."""
    tag: str | None = None
    element_id: str | None = None
    classes: list[str] = field(default_factory=list)
    name: str | None = None
    attributes: dict[str, str] = field(default_factory=dict)
    text: str | None = None

    def words(self) -> list[str]:
        """Human words derived from id, name and classes (``submit-btn`` -> ``submit btn``)."""
        sources = [self.element_id, self.name, *self.classes]
        words = []
        for source in sources:
            if source:
                phrase = re.sub(r"[-_]+", " ", re.sub(r"([a-z])([A-Z])", r"\1 \2", source)).strip()
                if phrase and phrase not in words:
                    words.append(phrase.lower())
        return words

    def fragments(self) -> list[str]:
        """Attribute fragments, most specific first."""
        result: list[str] = []
        for value in [self.element_id, self.name, *self.attributes.values(), *self.classes]:
            if value and value not in result:
                result.append(value)
        for value in list(result):
            for part in re.split(r"[-_\s]+", value):
                if len(part) > 2 and part not in result:
                    result.append(part)
        return result


def _last_compound(selector: str) -> str:
    """The compound selector after the last combinator, ignoring brackets and quotes."""
    depth = 0
    quote: str | None = None
    start = 0
    for index, char in enumerate(selector):
        if quote:
            if char == quote:
                quote = None
        elif char in "\"'":
            quote = char
        elif char in "[(":
            depth += 1
        elif char in "])":
            depth = max(0, depth - 1)
        elif depth == 0 and char in " >+~,":
            start = index + 1
    return selector[start:].strip()


def parse_selector_hints(selector: str) -> SelectorHints:
    """Pull id, classes, name, tag, attribute values and quoted text out of a selector."""
    hints = SelectorHints()
    selector = selector.strip() if selector else ""
    if not selector:
        return hints

    text_match = _TEXT_RE.search(selector)
    if text_match:
        hints.text = text_match.group(1) or text_match.group(2)
    if selector.startswith(("xpath=", "/", "(/", "text=")):
        return hints

    # Only the last compound selector describes the target element.
    target = _last_compound(selector)
    plain = re.sub(r"\([^)]*\)", "", re.sub(r"\[[^\]]*\]", "", target))

    id_match = _ID_RE.search(plain)
    if id_match:
        hints.element_id = id_match.group(1)
    hints.classes = _CLASS_RE.findall(plain)
    tag_match = _TAG_RE.match(target)
    if tag_match and not target.startswith(("#", ".", "[")):
        hints.tag = tag_match.group(1).lower()
    for attr, value in _ATTR_RE.findall(target):
        if attr == "id" and not hints.element_id:
            hints.element_id = value
        elif attr == "name":
            hints.name = value
        else:
            hints.attributes[attr] = value
    return hints


def normalized_variants(selector: str) -> list[str]:
    """Case/whitespace-normalized variants of ``selector``, excluding itself."""
    collapsed = " ".join(selector.split())
    variants = [collapsed, collapsed.lower()]

    hints = parse_selector_hints(selector)
    if hints.element_id:
        variants.append(f'[id="{hints.element_id}" i]')
    if hints.classes:
        variants.append("".join(f'[class~="{cls}" i]' for cls in hints.classes))

    result: list[str] = []
    for variant in variants:
        if variant and variant != selector and variant not in result:
            result.append(variant)
    return result


class SelectorResolver:
    """Resolves broken selectors against the current page."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._last_success: dict[str, str] = {}

    def threshold_for(self, intent: SelectorIntent) -> float:
        """Minimum accepted confidence for ``intent``."""
        if intent in DESTRUCTIVE_INTENTS:
            return max(self.settings.SELECTOR_DESTRUCTIVE_MIN_CONFIDENCE, self.settings.SELECTOR_MIN_CONFIDENCE)
        return self.settings.SELECTOR_MIN_CONFIDENCE

    def remember(self, intent: SelectorIntent, selector: str) -> None:
        """Record the last selector that worked for ``intent``."""
        self._last_success[intent] = selector

    def last_success(self, intent: SelectorIntent) -> str | None:
        """Last selector remembered for ``intent``."""
        return self._last_success.get(intent)

    async def _matches(self, page: Any, selector: str) -> bool:
        count = await page.evaluate(COUNT_MATCHES_SCRIPT, selector)
        return isinstance(count, int) and count > 0

    async def resolve(
        self,
        selector: str | None,
        page: Any,
        intent: SelectorIntent = "extract",
        text_hint: str | None = None,
    ) -> SelectorResolutionResult:
        """Find a working selector for ``selector``.

        Args:
            selector: Original selector (may be None when only a text hint is given)
            page: Playwright Page
            intent: What the caller is about to do
            text_hint: Visible text of the wanted element

        Returns:
            SelectorResolutionResult; confidence 0 means nothing usable was found
        """
        original = selector or ""
        threshold = self.threshold_for(intent)
        hints = parse_selector_hints(original)
        role_selector = INTENT_ROLE_SELECTORS[intent]
        attempted: list[str] = []

        texts = [t for t in (text_hint, hints.text) if t] or hints.words()
        anchor = self._last_success.get(intent)

        for strategy, confidence in STRATEGY_CONFIDENCE.items():
            if confidence < threshold:
                break
            resolved: str | None = None

            if strategy == "exact":
                if not original:
                    continue
                attempted.append(strategy)
                if await self._matches(page, original):
                    resolved = original
            elif strategy == "normalized":
                if not original:
                    continue
                attempted.append(strategy)
                for variant in normalized_variants(original):
                    if await self._matches(page, variant):
                        resolved = variant
                        break
            elif strategy == "text_match":
                if not texts:
                    continue
                attempted.append(strategy)
                resolved = await page.evaluate(TEXT_MATCH_SCRIPT, [role_selector, texts])
            elif strategy == "attribute_match":
                fragments = hints.fragments()
                if not fragments:
                    continue
                attempted.append(strategy)
                resolved = await page.evaluate(ATTRIBUTE_MATCH_SCRIPT, [role_selector, fragments])
            elif strategy == "structural_proximity":
                if not anchor or anchor == original:
                    continue
                attempted.append(strategy)
                resolved = await page.evaluate(PROXIMITY_SCRIPT, [anchor, role_selector])

            if resolved:
                if strategy != "structural_proximity":
                    self.remember(intent, resolved)
                if strategy != "exact":
                    logger.info(
                        "selector_healed",
                        original=original,
                        resolved=resolved,
                        strategy=strategy,
                        confidence=confidence,
                        intent=intent,
                    )
                return SelectorResolutionResult(
                    original_selector=original,
                    resolved_selector=resolved,
                    strategy_used=strategy,
                    confidence=confidence,
                    intent=intent,
                    attempted=attempted,
                )

        logger.info(
            "selector_unresolved",
            original=original,
            intent=intent,
            threshold=threshold,
            attempted=attempted,
        )
        return SelectorResolutionResult.failed(original, intent, attempted)
