"""Pydantic models for content requests and results."""

from typing import Literal

from pydantic import BaseModel, Field, model_validator

from .selector import SelectorResolutionResult

ContentMode = Literal["full", "main", "summary", "selector"]
ContentType = Literal["text", "html"]


class ContentRequest(BaseModel):
    """A single content-returning call.

    Built from tool arguments and consumed within that call.
    """

    mode: ContentMode = Field(default="main", description="Extraction mode")
    selector: str | None = Field(
        default=None,
        description="CSS selector; required iff mode is 'selector'"
    )
    token_budget: int | None = Field(
        default=None,
        gt=0,
        description="Caller ceiling on estimated tokens (clamped to the emergency limit)"
    )
    content_type: ContentType = Field(default="text", description="Return text or HTML")
    continuation_token: str | None = Field(
        default=None,
        description="Token from a previous chunked response"
    )

    @model_validator(mode="after")
    def check_selector(self) -> "ContentRequest":
        """A selector is required for selector mode and meaningless otherwise."""
        if self.mode == "selector" and not (self.selector and self.selector.strip()):
            raise ValueError("selector is required when mode is 'selector'")
        if self.mode != "selector" and self.selector is not None:
            raise ValueError("selector is only allowed when mode is 'selector'")
        return self


class ChunkInfo(BaseModel):
    """Position of a chunk inside a chunked response."""

    index: int = Field(..., ge=0, description="Zero-based chunk index")
    total: int = Field(..., ge=1, description="Total number of chunks")
    continuation_token: str | None = Field(
        default=None,
        description="Pass back to fetch the next chunk; None on the last chunk"
    )

    @property
    def has_more(self) -> bool:
        """Whether more chunks follow."""
        return self.index + 1 < self.total


class PagePreflight(BaseModel):
    """Metadata-only measurements of the current document."""

    html_bytes: int = Field(default=0, ge=0)
    text_chars: int = Field(default=0, ge=0)
    node_count: int = Field(default=0, ge=0)
    image_count: int = Field(default=0, ge=0)
    iframe_count: int = Field(default=0, ge=0)
    script_count: int = Field(default=0, ge=0)

    def is_heavy(self, max_bytes: int, max_nodes: int) -> bool:
        """Whether sub-resources should be blocked before capture."""
        return self.html_bytes > max_bytes or self.node_count > max_nodes


class ContentResult(BaseModel):
    """Content delivered to the caller."""

    content: str = Field(..., description="Extracted content (possibly one chunk)")
    truncated: bool = Field(default=False, description="Whether content was cut off")
    mode: ContentMode = Field(..., description="Mode that produced the content")
    content_type: ContentType = Field(default="text")
    estimated_tokens: int = Field(..., ge=0, description="Estimated tokens of `content`")
    total_estimated_tokens: int | None = Field(
        default=None,
        ge=0,
        description=(
            "Estimated tokens of the captured content before chunking; "
            "summary and oversized full captures are measured after truncation"
        ),
    )
    chunk_info: ChunkInfo | None = Field(default=None, description="Set when content was chunked")
    recommendation: Literal["chunking"] | None = Field(
        default=None,
        description="'chunking' when the reduced content still exceeds the safe limit"
    )
    resources_blocked: bool = Field(
        default=False,
        description="Whether heavy sub-resources were blocked during capture"
    )
    strategy_used: str | None = Field(
        default=None,
        description="Selector strategy used when a selector had to be healed"
    )
    resolution: SelectorResolutionResult | None = Field(
        default=None,
        description="Selector resolution details when healing happened"
    )
