"""
Unit tests for the derive-column expression language.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from recon_engine.errors import StepConfigError, ValueTypeError
from recon_engine.expressions import compile_expression


# ======================================================================
# Parsing
# ======================================================================

class TestParsing:
    def test_columns_collected(self) -> None:
        expr = compile_expression("[Gross Amount] - fee * 2")
        assert expr.columns == frozenset({"Gross Amount", "fee"})

    def test_literals_only(self) -> None:
        assert compile_expression("1 + 2 * 3").evaluate({}) == Decimal("7")

    def test_parentheses(self) -> None:
        assert compile_expression("(1 + 2) * 3").evaluate({}) == Decimal("9")

    def test_unary_minus(self) -> None:
        assert compile_expression("-amount").evaluate({"amount": Decimal("4")}) == Decimal("-4")

    @pytest.mark.parametrize("text", ["", "1 +", "(1 + 2", "amount $ 2", "1 2", "import os"])
    def test_syntax_errors(self, text: str) -> None:
        with pytest.raises(StepConfigError):
            compile_expression(text)

    def test_non_string(self) -> None:
        with pytest.raises(StepConfigError):
            compile_expression(42)  # type: ignore[arg-type]


# ======================================================================
# Evaluation
# ======================================================================

class TestEvaluation:
    def test_arithmetic_is_exact(self) -> None:
        expr = compile_expression("a + b")
        assert expr.evaluate({"a": Decimal("0.1"), "b": Decimal("0.2")}) == Decimal("0.3")

    def test_null_propagates(self) -> None:
        assert compile_expression("a * 2").evaluate({"a": None}) is None

    def test_concatenation(self) -> None:
        expr = compile_expression("brand & '-' & amount")
        row = {"brand": "Visa", "amount": Decimal("12.50")}
        assert expr.evaluate(row) == "Visa-12.50"

    def test_concatenation_null_reads_as_empty(self) -> None:
        expr = compile_expression('a & "/" & b')
        assert expr.evaluate({"a": None, "b": date(2024, 3, 1)}) == "/2024-03-01"

    def test_concat_binds_looser_than_plus(self) -> None:
        expr = compile_expression("'x' & 1 + 2")
        assert expr.evaluate({}) == "x3"

    def test_text_in_arithmetic(self) -> None:
        with pytest.raises(ValueTypeError, match="normalize"):
            compile_expression("a + 1").evaluate({"a": "$5"})

    def test_division_by_zero(self) -> None:
        with pytest.raises(ZeroDivisionError):
            compile_expression("a / 0").evaluate({"a": Decimal("1")})

    def test_escaped_quote(self) -> None:
        assert compile_expression(r"'it\'s'").evaluate({}) == "it's"
