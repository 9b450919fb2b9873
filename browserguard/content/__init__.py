"""Content delivery for token-limited callers.

- TokenEstimator: character-based token estimates
- split_into_chunks / continuation tokens: stateless chunking
- ContentStrategyEngine: mode selection, resource blocking and budgeting
"""

from browserguard.content.chunking import (
    ContinuationState,
    content_digest,
    decode_continuation,
    encode_continuation,
    split_into_chunks,
)
from browserguard.content.strategy import ContentStrategyEngine
from browserguard.content.token_budget import CHARS_PER_TOKEN, TokenEstimator

__all__ = [
    "CHARS_PER_TOKEN",
    "TokenEstimator",
    "ContinuationState",
    "content_digest",
    "decode_continuation",
    "encode_continuation",
    "split_into_chunks",
    "ContentStrategyEngine",
]
