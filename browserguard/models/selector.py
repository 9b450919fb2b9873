"""Pydantic models for selector resolution."""

from typing import Literal

from pydantic import BaseModel, Field, model_validator

SelectorIntent = Literal["click", "type", "extract"]
SelectorStrategy = Literal[
    "exact",
    "normalized",
    "text_match",
    "attribute_match",
    "structural_proximity",
]


class SelectorResolutionResult(BaseModel):
    """Outcome of resolving a possibly broken selector.

    A result with confidence 0 means resolution failed; the caller must
    report an error instead of acting on a guess.
    """

    original_selector: str = Field(..., description="Selector as given by the caller")
    resolved_selector: str | None = Field(
        default=None,
        description="Selector that matched an element"
    )
    strategy_used: SelectorStrategy | None = Field(
        default=None,
        description="Strategy that produced the resolved selector"
    )
    confidence: float = Field(default=0.0, ge=0.0, le=1.0, description="Match confidence")
    intent: SelectorIntent = Field(default="extract", description="What the caller wants to do")
    attempted: list[str] = Field(
        default_factory=list,
        description="Strategies tried, in order"
    )

    @model_validator(mode="after")
    def check_consistency(self) -> "SelectorResolutionResult":
        """A resolved selector always has positive confidence, and vice versa."""
        if self.resolved_selector is not None and self.confidence <= 0:
            raise ValueError("a resolved selector must have confidence > 0")
        if self.resolved_selector is None and self.confidence > 0:
            raise ValueError("confidence must be 0 when nothing was resolved")
        return self

    @property
    def resolved(self) -> bool:
        """Whether a usable selector was found."""
        return self.resolved_selector is not None

    @property
    def healed(self) -> bool:
        """Whether a fallback strategy was needed."""
        return self.resolved and self.strategy_used != "exact"

    @classmethod
    def failed(
        cls, original_selector: str, intent: SelectorIntent, attempted: list[str] | None = None
    ) -> "SelectorResolutionResult":
        """Build a total-failure result."""
        return cls(
            original_selector=original_selector,
            intent=intent,
            attempted=attempted or [],
        )
