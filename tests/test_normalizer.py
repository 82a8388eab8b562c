"""
Unit tests for the LabelNormalizer and AmountNormalizer.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from recon_engine.normalizer import AmountNormalizer, LabelNormalizer


@pytest.fixture
def labels() -> LabelNormalizer:
    return LabelNormalizer()


@pytest.fixture
def amounts() -> AmountNormalizer:
    return AmountNormalizer(scale=2)


# ======================================================================
# Label normalisation
# ======================================================================

class TestNormalizeLabel:
    def test_lowercase_and_strip(self, labels: LabelNormalizer) -> None:
        assert labels.normalize_label("  Transaction ID  ") == "transaction id"

    def test_separators_become_spaces(self, labels: LabelNormalizer) -> None:
        assert labels.normalize_label("card_brand") == "card brand"
        assert labels.normalize_label("Card.Brand") == "card brand"

    def test_punctuation_removal(self, labels: LabelNormalizer) -> None:
        assert labels.normalize_label("Amount ($)") == "amount"

    def test_hash_kept(self, labels: LabelNormalizer) -> None:
        assert labels.normalize_label("Ref #") == "ref #"

    def test_empty_string(self, labels: LabelNormalizer) -> None:
        assert labels.normalize_label("") == ""


# ======================================================================
# Amount parsing
# ======================================================================

class TestParseAmount:
    @pytest.mark.parametrize(
        "raw",
        ["10.00", "10", "$10", " $10.00 ", 10, 10.0, Decimal("10"), "USD 10", "10.00 USD"],
    )
    def test_representations_agree(self, amounts: AmountNormalizer, raw) -> None:
        assert amounts.parse(raw) == Decimal("10.00")

    def test_thousands_separator(self, amounts: AmountNormalizer) -> None:
        assert amounts.parse("$1,234.56") == Decimal("1234.56")

    def test_parenthetical_negative(self, amounts: AmountNormalizer) -> None:
        assert amounts.parse("($1,234.56)") == Decimal("-1234.56")

    @pytest.mark.parametrize(
        "raw", ["$(10.00)", "($10.00)", "USD (10.00)", "(USD 10.00)", "(10.00) USD", "-$10.00"]
    )
    def test_currency_outside_or_inside_parentheses(self, amounts: AmountNormalizer, raw) -> None:
        assert amounts.parse(raw) == Decimal("-10.00")

    def test_leading_and_trailing_minus(self, amounts: AmountNormalizer) -> None:
        assert amounts.parse("-$5.25") == Decimal("-5.25")
        assert amounts.parse("$-5.25") == Decimal("-5.25")
        assert amounts.parse("5.25-") == Decimal("-5.25")

    def test_european_format(self, amounts: AmountNormalizer) -> None:
        assert amounts.parse("1.234,56 €", fmt="eu") == Decimal("1234.56")

    def test_plain_format_rejects_grouping(self, amounts: AmountNormalizer) -> None:
        with pytest.raises(ValueError):
            amounts.parse("1,234.56", fmt="plain")

    def test_quantized_half_up(self, amounts: AmountNormalizer) -> None:
        assert amounts.parse("2.345") == Decimal("2.35")
        assert str(amounts.parse("7")) == "7.00"

    def test_blank_is_none(self, amounts: AmountNormalizer) -> None:
        assert amounts.parse("   ") is None
        assert amounts.parse(None) is None

    def test_unparseable(self, amounts: AmountNormalizer) -> None:
        with pytest.raises(ValueError, match="Cannot parse"):
            amounts.parse("N/A")

    def test_identifier_is_not_an_amount(self, amounts: AmountNormalizer) -> None:
        with pytest.raises(ValueError, match="Cannot parse"):
            amounts.parse("TXN-1")

    def test_unknown_format(self, amounts: AmountNormalizer) -> None:
        with pytest.raises(ValueError, match="Unknown amount format"):
            amounts.parse("1", fmt="roman")

    def test_non_finite_float(self, amounts: AmountNormalizer) -> None:
        with pytest.raises(ValueError):
            amounts.parse(float("nan"))


# ======================================================================
# Lenient variant
# ======================================================================

class TestNormalizeValue:
    def test_success_has_no_warnings(self, amounts: AmountNormalizer) -> None:
        val, warns = amounts.normalize_value("$3.18")
        assert val == Decimal("3.18")
        assert warns == []

    def test_failure_returns_warning(self, amounts: AmountNormalizer) -> None:
        val, warns = amounts.normalize_value("abc")
        assert val is None
        assert any("Cannot parse" in w for w in warns)

    def test_empty(self, amounts: AmountNormalizer) -> None:
        val, warns = amounts.normalize_value("")
        assert val is None
        assert warns == ["Value is empty"]
