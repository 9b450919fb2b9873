"""Content strategy engine.

Decides what part of the page to return and how much of it:

- ``full``: the whole document. Above the emergency limit it is hard
  truncated; it is only chunked when the caller passes an explicit budget.
- ``main``: a metadata preflight decides whether heavy sub-resources are
  blocked during capture, then boilerplate is stripped; content that still
  exceeds the budget is chunked and ``chunking`` is recommended.
- ``summary``: the main reduction cut to the summary budget at a word boundary.
- ``selector``: one subtree; a selector that does not match is healed once
  through the selector resolver.
"""

from dataclasses import dataclass
from typing import Any

from browserguard.browser.extractor import PageCapture, ResourceBlocker
from browserguard.browser.selector_resolver import SelectorResolver
from browserguard.content.chunking import (
    ContinuationState,
    content_digest,
    decode_continuation,
    encode_continuation,
    split_into_chunks,
)
from browserguard.content.token_budget import TokenEstimator
from browserguard.core.config import Settings, get_settings
from browserguard.core.errors import ElementNotFoundError, StaleContinuationError
from browserguard.core.logging import get_logger
from browserguard.models.content import ChunkInfo, ContentRequest, ContentResult
from browserguard.models.selector import SelectorResolutionResult

logger = get_logger(__name__)


@dataclass
class Capture:
    """Raw output of one extraction mode, before budgeting."""
    content: str
    truncated: bool = False
    resources_blocked: bool = False
    resolution: SelectorResolutionResult | None = None


class ContentStrategyEngine:
    """Turns a ContentRequest into a budgeted ContentResult."""

    def __init__(
        self,
        settings: Settings | None = None,
        estimator: TokenEstimator | None = None,
        resolver: SelectorResolver | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.estimator = estimator or TokenEstimator(chars_per_token=self.settings.CHARS_PER_TOKEN)
        self.resolver = resolver

    def effective_budget(self, request: ContentRequest) -> int | None:
        """Token budget applied to ``request`` (None means no chunking)."""
        settings = self.settings
        requested = request.token_budget
        if requested is not None:
            requested = min(requested, settings.EMERGENCY_TOKEN_LIMIT)

        if request.mode == "summary":
            return min(requested or settings.SUMMARY_TOKEN_BUDGET, settings.SUMMARY_TOKEN_BUDGET)
        if request.mode == "full":
            return requested
        return requested or settings.DEFAULT_TOKEN_BUDGET

    async def extract(self, request: ContentRequest, page: Any) -> ContentResult:
        """Extract content for ``request`` from ``page``.

        A continuation token overrides mode, selector, type and budget with
        the values it was issued for.

        Raises:
            ElementNotFoundError: If a selector could not be resolved
            StaleContinuationError: If the page changed since the token was issued
            ContentTooLargeError: If the content needs more than MAX_CHUNKS chunks
        """
        state: ContinuationState | None = None
        if request.continuation_token:
            state = decode_continuation(request.continuation_token)
            request = ContentRequest(
                mode=state.mode,
                selector=state.selector,
                token_budget=state.budget,
                content_type=state.type,
            )

        budget = state.budget if state else self.effective_budget(request)
        capture = await self._capture(request, page)

        if request.mode == "summary":
            content, cut = self.estimator.truncate(capture.content, budget)
            capture.content = content
            capture.truncated = capture.truncated or cut

        return self._deliver(request, capture, budget, state)

    async def _capture(self, request: ContentRequest, page: Any) -> Capture:
        collector = PageCapture(page)
        if request.mode == "full":
            return self._emergency_cap(await collector.full(request.content_type))
        if request.mode in ("main", "summary"):
            return await self._capture_main(collector, page, request)
        return await self._capture_selector(collector, page, request)

    def _emergency_cap(self, content: str) -> Capture:
        limit = self.settings.emergency_char_limit
        if self.estimator.estimate(content) <= self.settings.EMERGENCY_TOKEN_LIMIT and len(content) <= limit:
            return Capture(content=content)
        logger.warning(
            "content_emergency_truncated",
            original_chars=len(content),
            limit_chars=limit,
        )
        return Capture(content=content[:limit], truncated=True)

    async def _capture_main(self, collector: PageCapture, page: Any, request: ContentRequest) -> Capture:
        settings = self.settings
        preflight = await collector.preflight()
        blocked = False

        if preflight.is_heavy(settings.HEAVY_PAGE_BYTES, settings.HEAVY_PAGE_NODES):
            async with ResourceBlocker(page, settings.BLOCKED_RESOURCE_TYPES) as blocker:
                content = await collector.main(request.content_type)
                blocked = blocker.active
        else:
            content = await collector.main(request.content_type)

        if not content.strip():
            logger.info("main_content_empty_fallback_to_full")
            content = await collector.full(request.content_type)
        return Capture(content=content, resources_blocked=blocked)

    async def _capture_selector(self, collector: PageCapture, page: Any, request: ContentRequest) -> Capture:
        selector = request.selector or ""
        try:
            content = await collector.selector(selector, request.content_type)
            if self.resolver is not None:
                self.resolver.remember("extract", selector)
            return Capture(content=content)
        except ElementNotFoundError:
            if self.resolver is None:
                raise

        resolution = await self.resolver.resolve(selector, page, intent="extract")
        if not resolution.resolved:
            raise ElementNotFoundError(
                selector,
                context={"intent": "extract", "attempted": resolution.attempted},
            )
        content = await collector.selector(resolution.resolved_selector, request.content_type)
        return Capture(content=content, resolution=resolution)

    def _deliver(
        self,
        request: ContentRequest,
        capture: Capture,
        budget: int | None,
        state: ContinuationState | None,
    ) -> ContentResult:
        content = capture.content
        digest = content_digest(content)
        if state is not None and state.digest != digest:
            raise StaleContinuationError(
                "Page content changed since the continuation token was issued",
                context={"mode": state.mode, "index": state.index},
                suggested_action="Request the content again without a continuation token.",
            )

        total_tokens = self.estimator.estimate(content)
        recommendation = None
        if request.mode in ("main", "selector") and total_tokens > self.settings.DEFAULT_TOKEN_BUDGET:
            recommendation = "chunking"

        result = {
            "mode": request.mode,
            "content_type": request.content_type,
            "truncated": capture.truncated,
            "total_estimated_tokens": total_tokens,
            "recommendation": recommendation,
            "resources_blocked": capture.resources_blocked,
            "strategy_used": capture.resolution.strategy_used if capture.resolution else None,
            "resolution": capture.resolution,
        }

        needs_chunks = budget is not None and total_tokens > budget and request.mode != "summary"
        if not needs_chunks:
            if state is not None and state.index > 0:
                raise StaleContinuationError("Continuation index is past the end of the content")
            return ContentResult(content=content, estimated_tokens=total_tokens, **result)

        chunks = split_into_chunks(content, budget, self.estimator, self.settings.MAX_CHUNKS)
        index = state.index if state else 0
        if index >= len(chunks):
            raise StaleContinuationError(
                f"Continuation index {index} is past the last chunk ({len(chunks) - 1})",
            )

        next_token = None
        if index + 1 < len(chunks):
            next_token = encode_continuation(ContinuationState(
                mode=request.mode,
                selector=request.selector,
                type=request.content_type,
                budget=budget,
                index=index + 1,
                digest=digest,
            ))

        chunk = chunks[index]
        logger.info(
            "content_chunked",
            mode=request.mode,
            chunk_index=index,
            total_chunks=len(chunks),
            total_tokens=total_tokens,
            budget=budget,
        )
        return ContentResult(
            content=chunk,
            estimated_tokens=self.estimator.estimate(chunk),
            chunk_info=ChunkInfo(index=index, total=len(chunks), continuation_token=next_token),
            **result,
        )
