"""Token estimation for content returned to LLM callers.

NO tokenizer dependencies - uses character-based estimation. The estimate
only has to be conservative, deterministic and monotonic in the length of
the text, so chunk boundaries are stable for the same input.
"""

import logging
import math

logger = logging.getLogger(__name__)


# Approximate characters per token by model family
CHARS_PER_TOKEN = {
    "anthropic": 3.5,    # Claude models
    "deepseek": 3.8,     # DeepSeek models
    "qwen": 3.5,         # Qwen models
    "openai": 4.0,       # GPT models
    "default": 4.0,      # Conservative default
}


class TokenEstimator:
    """Estimates token counts from character length."""

    def __init__(self, chars_per_token: float | None = None, family: str = "default"):
        """
        Initialize the estimator.

        Args:
            chars_per_token: Explicit divisor; overrides ``family``
            family: Model family used to pick the divisor
        """
        if chars_per_token is None:
            chars_per_token = CHARS_PER_TOKEN.get(family, CHARS_PER_TOKEN["default"])
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self.chars_per_token = chars_per_token

    def estimate(self, text: str) -> int:
        """Estimated tokens for ``text`` (ceil of chars / divisor)."""
        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)

    def max_chars(self, tokens: int) -> int:
        """Largest character count whose estimate stays within ``tokens``."""
        if tokens <= 0:
            return 0
        return max(0, math.floor(tokens * self.chars_per_token))

    def fits(self, text: str, budget: int) -> bool:
        """Whether ``text`` fits in ``budget`` tokens."""
        return self.estimate(text) <= budget

    def truncate(self, text: str, budget: int, at_word: bool = True) -> tuple[str, bool]:
        """
        Cut ``text`` down to ``budget`` tokens.

        Args:
            text: Text to cut
            budget: Token budget
            at_word: Cut at the last whitespace before the limit when possible

        Returns:
            Tuple of (text, was_truncated)
        """
        if self.fits(text, budget):
            return text, False

        limit = self.max_chars(budget)
        cut = text[:limit]
        if at_word:
            boundary = max(cut.rfind(" "), cut.rfind("\n"))
            # Keep a hard cut when the only boundary would throw most of it away
            if boundary > limit // 2:
                cut = cut[:boundary]
        cut = cut.rstrip()
        logger.debug(f"Truncated {len(text)} chars to {len(cut)} (budget={budget} tokens)")
        return cut, True
