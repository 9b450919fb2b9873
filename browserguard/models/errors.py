"""Pydantic model for structured errors returned to callers."""

from typing import Any

from pydantic import BaseModel, Field


class ErrorPayload(BaseModel):
    """Machine-readable description of a failed or rejected call."""

    kind: str = Field(..., description="Error kind, e.g. 'validation_error' or 'circuit_open'")
    message: str = Field(..., description="Human-readable explanation")
    retryable: bool = Field(
        default=False,
        description="Whether the caller may retry the same call later"
    )
    suggested_action: str | None = Field(
        default=None,
        description="What the caller should do next"
    )
    context: dict[str, Any] = Field(
        default_factory=dict,
        description="Extra details (missing prerequisites, remaining cooldown, selector...)"
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "kind": "validation_error",
                    "message": "get_content requires browser_init: browser_init was never called",
                    "retryable": False,
                    "suggested_action": "Call browser_init first.",
                    "context": {"operation": "get_content", "missing": ["browser_init"]},
                }
            ]
        }
    }
