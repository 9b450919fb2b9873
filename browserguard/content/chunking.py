"""Budget-driven chunking and stateless continuation tokens.

Chunks are cut at the latest structural boundary that keeps the chunk
within budget: a blank line, a line break, the end of a tag, whitespace,
and only as a last resort a hard cut. Concatenating the chunks reproduces
the input exactly.

Continuation tokens describe how to re-derive the same split (mode,
selector, content type, budget, chunk index) plus a digest of the content
the split was computed from. Nothing is stored server-side, so a token
stays usable across processes as long as the page content is unchanged.
"""

import base64
import binascii
import hashlib

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from browserguard.content.token_budget import TokenEstimator
from browserguard.core.errors import ContentTooLargeError, InvalidArgumentsError
from browserguard.core.logging import get_logger
from browserguard.models.content import ContentMode, ContentType

logger = get_logger(__name__)

TOKEN_VERSION = 1

# Ordered by preference; each entry is (separator, minimum fill ratio).
_BOUNDARIES: tuple[tuple[str, float], ...] = (
    ("\n\n", 0.5),
    ("\n", 0.5),
    (">", 0.5),
    (" ", 0.5),
    ("\n", 0.0),
    (">", 0.0),
    (" ", 0.0),
)


def _cut_point(window: str) -> int:
    """Index just past the best boundary inside ``window`` (len(window) for a hard cut)."""
    size = len(window)
    for separator, min_fill in _BOUNDARIES:
        index = window.rfind(separator)
        if index <= 0:
            continue
        end = index + len(separator)
        if end >= size * min_fill:
            return end
    return size


def split_into_chunks(
    content: str,
    budget: int,
    estimator: TokenEstimator,
    max_chunks: int = 200,
) -> list[str]:
    """Split ``content`` into ordered chunks that each fit ``budget`` tokens.

    Args:
        content: Text or HTML to split
        budget: Token budget per chunk
        estimator: Token estimator used for the budget
        max_chunks: Maximum number of chunks allowed

    Returns:
        Non-empty list of chunks; ``"".join(chunks) == content``

    Raises:
        ContentTooLargeError: If more than ``max_chunks`` chunks would be needed
        ValueError: If the budget can not hold a single character
    """
    if not content:
        return [""]

    limit = estimator.max_chars(budget)
    if limit < 1:
        raise ValueError(f"token budget {budget} is too small to hold any content")

    total_tokens = estimator.estimate(content)
    if -(-len(content) // limit) > max_chunks:
        raise ContentTooLargeError(
            total_tokens,
            budget * max_chunks,
            context={"max_chunks": max_chunks, "chunk_budget": budget},
            suggested_action="Use mode 'main', 'summary' or 'selector' to narrow the content.",
        )

    chunks: list[str] = []
    position = 0
    length = len(content)
    while position < length:
        if length - position <= limit:
            chunks.append(content[position:])
            break
        cut = _cut_point(content[position:position + limit])
        chunks.append(content[position:position + cut])
        position += cut
        if len(chunks) >= max_chunks and position < length:
            raise ContentTooLargeError(
                total_tokens,
                budget * max_chunks,
                context={"max_chunks": max_chunks, "chunk_budget": budget},
                suggested_action="Use mode 'main', 'summary' or 'selector' to narrow the content.",
            )

    logger.debug("content_split", chunks=len(chunks), budget=budget, total_tokens=total_tokens)
    return chunks


def content_digest(content: str) -> str:
    """Short fingerprint of the content a split was computed from."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()[:16]


class ContinuationState(BaseModel):
    """Everything needed to re-derive a chunked response."""

    v: int = Field(default=TOKEN_VERSION)
    mode: ContentMode
    selector: str | None = None
    type: ContentType = "text"
    budget: int = Field(..., gt=0)
    index: int = Field(..., ge=0)
    digest: str


def encode_continuation(state: ContinuationState) -> str:
    """Serialize to URL-safe base64 without padding."""
    raw = state.model_dump_json(exclude_none=True).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_continuation(token: str) -> ContinuationState:
    """Parse a continuation token.

    Raises:
        InvalidArgumentsError: If the token is malformed or from another version
    """
    try:
        padded = token + "=" * (-len(token) % 4)
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
        state = ContinuationState.model_validate_json(raw)
    except (binascii.Error, UnicodeError, ValueError, PydanticValidationError) as e:
        raise InvalidArgumentsError(
            "Malformed continuation token",
            context={"error": str(e)[:200]},
            suggested_action="Request the content again without a continuation token.",
        ) from e

    if state.v != TOKEN_VERSION:
        raise InvalidArgumentsError(
            f"Unsupported continuation token version {state.v}",
            suggested_action="Request the content again without a continuation token.",
        )
    return state
