"""
Unit tests for the FuzzyMatcher.
"""

from __future__ import annotations

import pytest

from recon_engine.config import MatchingConfig
from recon_engine.fuzzy_matcher import FuzzyMatcher

HEADERS = ["Transaction Id", "Settled Amount", "Card Brand", "Customer Name"]


@pytest.fixture
def matcher() -> FuzzyMatcher:
    return FuzzyMatcher(MatchingConfig(column_match_threshold=75.0), HEADERS)


@pytest.fixture
def strict_matcher() -> FuzzyMatcher:
    return FuzzyMatcher(MatchingConfig(column_match_threshold=95.0), HEADERS)


# ======================================================================
# Matching
# ======================================================================

class TestMatch:
    def test_close_match_accepted(self, matcher: FuzzyMatcher) -> None:
        result = matcher.match("transaction ids")
        assert result is not None
        assert result.column == "Transaction Id"
        assert result.score >= 75.0
        assert not result.is_ambiguous

    def test_returns_original_header(self, matcher: FuzzyMatcher) -> None:
        result = matcher.match("card_brand")
        assert result is not None
        assert result.column == "Card Brand"
        assert result.score == 100.0

    def test_word_order_insensitive(self, matcher: FuzzyMatcher) -> None:
        result = matcher.match("amount settled")
        assert result is not None
        assert result.column == "Settled Amount"

    def test_no_match_below_threshold(self, strict_matcher: FuzzyMatcher) -> None:
        assert strict_matcher.match("xyzzy gibberish") is None
        assert strict_matcher.match("customer") is None

    def test_empty_input(self, matcher: FuzzyMatcher) -> None:
        assert matcher.match("") is None
        assert matcher.match("   ") is None

    def test_no_headers(self) -> None:
        assert FuzzyMatcher(MatchingConfig(), []).match("amount") is None


# ======================================================================
# Ambiguity
# ======================================================================

class TestAmbiguity:
    def test_close_runner_up_flagged(self) -> None:
        matcher = FuzzyMatcher(
            MatchingConfig(column_match_threshold=70.0),
            ["amount 1", "amount 2"],
        )
        result = matcher.match("amount")
        assert result is not None
        assert result.is_ambiguous

    def test_duplicate_normalised_headers_first_wins(self) -> None:
        matcher = FuzzyMatcher(MatchingConfig(), ["Txn_ID", "txn id"])
        result = matcher.match("TXN ID")
        assert result is not None
        assert result.column == "Txn_ID"
        assert not result.is_ambiguous
