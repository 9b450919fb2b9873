"""Tests for token estimation."""

import pytest

from browserguard.content.token_budget import CHARS_PER_TOKEN, TokenEstimator


def test_estimate_rounds_up():
    """Partial tokens count as whole tokens."""
    estimator = TokenEstimator()
    assert estimator.estimate("") == 0
    assert estimator.estimate("abc") == 1
    assert estimator.estimate("abcd") == 1
    assert estimator.estimate("abcde") == 2


def test_estimate_is_monotonic():
    """Longer text never estimates fewer tokens."""
    estimator = TokenEstimator()
    counts = [estimator.estimate("x" * n) for n in range(0, 200)]
    assert counts == sorted(counts)


def test_family_divisor():
    """Model families pick their own divisor; explicit values win."""
    assert TokenEstimator(family="anthropic").chars_per_token == CHARS_PER_TOKEN["anthropic"]
    assert TokenEstimator(family="unknown").chars_per_token == CHARS_PER_TOKEN["default"]
    assert TokenEstimator(chars_per_token=2.0, family="anthropic").chars_per_token == 2.0


def test_invalid_divisor():
    with pytest.raises(ValueError):
        TokenEstimator(chars_per_token=0)


def test_max_chars_round_trip():
    """max_chars is the largest length still within the budget."""
    estimator = TokenEstimator(chars_per_token=3.5)
    for budget in (1, 7, 100, 1000):
        limit = estimator.max_chars(budget)
        assert estimator.estimate("x" * limit) <= budget
        assert estimator.estimate("x" * (limit + 1)) > budget


def test_truncate_noop_when_fits():
    estimator = TokenEstimator()
    assert estimator.truncate("short text", 100) == ("short text", False)


def test_truncate_at_word_boundary():
    """Cuts land on whitespace and stay within budget."""
    estimator = TokenEstimator()
    text = "alpha beta gamma delta epsilon zeta eta theta"

    cut, truncated = estimator.truncate(text, 5)

    assert truncated is True
    assert estimator.fits(cut, 5)
    assert text.startswith(cut)
    assert cut == "alpha beta gamma"


def test_truncate_hard_cut_without_spaces():
    estimator = TokenEstimator()

    cut, truncated = estimator.truncate("x" * 100, 5)

    assert truncated is True
    assert cut == "x" * 20
