"""
Unit tests for the MatchingEngine.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from recon_engine.config import MatchingConfig
from recon_engine.errors import AmbiguousKeyError, MatchingConfigError
from recon_engine.matching import MatchingEngine
from recon_engine.table import Table


def _table(rows) -> Table:
    return Table.from_records(["transaction_id", "amount"], rows)


@pytest.fixture
def engine() -> MatchingEngine:
    return MatchingEngine(MatchingConfig(key_columns=("transaction_id",)))


# ======================================================================
# Partitions
# ======================================================================

class TestPartitions:
    def test_basic_partitions(self, engine: MatchingEngine) -> None:
        left = _table([["TXN-1", 10], ["TXN-2", 20], ["TXN-3", 30]])
        right = _table([["TXN-3", 30], ["TXN-1", 10], ["TXN-9", 90]])
        result = engine.match(left, right)

        assert [(p.left_index, p.right_index) for p in result.matched] == [(2, 0), (0, 1)]
        assert result.missing_from_right == [1]
        assert result.missing_from_left == [2]
        assert result.is_complete()
        assert result.warnings == []

    def test_missing_from_left_rows(self, engine: MatchingEngine) -> None:
        left = _table([["TXN-1", "127.50"]])
        right = _table([["TXN-1", "127.50"], ["TXN-4", "45.20"]])
        result = engine.match(left, right)
        assert [r["transaction_id"] for r in result.missing_from_left_rows()] == ["TXN-4"]
        assert result.missing_from_left_rows()[0]["amount"] == "45.20"

    def test_empty_tables(self, engine: MatchingEngine) -> None:
        result = engine.match(_table([]), _table([]))
        assert result.matched == []
        assert result.is_complete()

    def test_key_normalisation(self, engine: MatchingEngine) -> None:
        left = _table([[" txn-1 ", 1], ["TXN-2", 2]])
        right = _table([["TXN-1", 1], ["txn-2", 2]])
        assert len(engine.match(left, right).matched) == 2

    def test_case_sensitive_keys(self) -> None:
        engine = MatchingEngine(
            MatchingConfig(key_columns=("transaction_id",), case_sensitive_keys=True)
        )
        result = engine.match(_table([["txn-1", 1]]), _table([["TXN-1", 1]]))
        assert result.matched == []
        assert result.is_complete()

    def test_numeric_keys_normalised(self) -> None:
        left = Table.from_records(["id"], [[Decimal("10.0")]])
        right = Table.from_records(["id"], [[Decimal("10.00")]])
        result = MatchingEngine().match(left, right, ["id"])
        assert len(result.matched) == 1

    def test_number_and_text_ids_meet(self) -> None:
        left = Table.from_records(["id", "amount"], [[1001, "10"], [Decimal("7.50"), "1"]])
        right = Table.from_records(["id", "amount"], [["1001", "10"], ["7.5", "1"]])
        result = MatchingEngine().match(left, right, ["id"])
        assert [p.key for p in result.matched] == [("1001",), ("7.5",)]
        assert result.missing_from_left == []
        assert result.missing_from_right == []

    def test_date_and_iso_text_meet(self) -> None:
        left = Table.from_records(["posted"], [[date(2024, 3, 1)]])
        right = Table.from_records(["posted"], [["2024-03-01"]])
        assert len(MatchingEngine().match(left, right, ["posted"]).matched) == 1

    def test_composite_key(self) -> None:
        cols = ["date", "ref", "amount"]
        left = Table.from_records(cols, [["2024-01-01", "A", 1], ["2024-01-02", "A", 2]])
        right = Table.from_records(cols, [["2024-01-02", "A", 2]])
        result = MatchingEngine().match(left, right, ["date", "ref"])
        assert [(p.left_index, p.right_index) for p in result.matched] == [(1, 0)]
        assert result.matched[0].key == ("2024-01-02", "a")


# ======================================================================
# Null keys
# ======================================================================

class TestNullKeys:
    def test_null_and_blank_keys_never_match(self, engine: MatchingEngine) -> None:
        left = _table([[None, 1], ["  ", 2], ["TXN-1", 3]])
        right = _table([[None, 1], ["", 2], ["TXN-1", 3]])
        result = engine.match(left, right)

        assert len(result.matched) == 1
        assert result.missing_from_right == [0, 1]
        assert result.missing_from_left == [0, 1]
        assert result.null_key_rows == {"left": [0, 1], "right": [0, 1]}
        assert result.is_complete()


# ======================================================================
# Duplicate keys
# ======================================================================

class TestAmbiguousKeys:
    @pytest.fixture
    def left(self) -> Table:
        return _table([["TXN-1", "10.00"], ["TXN-1", "20.00"], ["TXN-2", "5.00"]])

    @pytest.fixture
    def right(self) -> Table:
        return _table([["TXN-1", "20.00"], ["TXN-2", "5.00"]])

    def test_pairs_in_order_of_appearance(
        self, engine: MatchingEngine, left: Table, right: Table
    ) -> None:
        result = engine.match(left, right)
        assert [(p.left_index, p.right_index) for p in result.matched] == [(0, 0), (2, 1)]
        assert result.missing_from_right == [1]
        assert result.is_complete()

    def test_warning_recorded(
        self, engine: MatchingEngine, left: Table, right: Table
    ) -> None:
        result = engine.match(left, right)
        assert len(result.warnings) == 1
        warning = result.warnings[0]
        assert warning.key == ("txn-1",)
        assert (warning.left_count, warning.right_count) == (2, 1)
        assert "1 pair(s)" in warning.message

    def test_error_when_configured(self, left: Table, right: Table) -> None:
        engine = MatchingEngine(
            MatchingConfig(key_columns=("transaction_id",), error_on_ambiguous_key=True)
        )
        with pytest.raises(AmbiguousKeyError):
            engine.match(left, right)


# ======================================================================
# Configuration errors
# ======================================================================

class TestConfigErrors:
    def test_no_keys(self) -> None:
        with pytest.raises(MatchingConfigError, match="No key columns"):
            MatchingEngine().match(_table([]), _table([]))

    def test_missing_key_column(self, engine: MatchingEngine) -> None:
        right = Table.from_records(["id", "amount"], [])
        with pytest.raises(MatchingConfigError, match="right"):
            engine.match(_table([]), right)

    def test_to_dict(self, engine: MatchingEngine) -> None:
        result = engine.match(_table([["TXN-1", 10]]), _table([["TXN-1", 11]]))
        d = result.to_dict()
        assert d["matched"][0]["left"]["amount"] == "10"
        assert d["matched"][0]["key"] == ["txn-1"]

    def test_to_dict_keeps_columns_named_like_metadata(self, engine: MatchingEngine) -> None:
        cols = ["transaction_id", "index", "row"]
        left = Table.from_records(cols, [["TXN-1", "a", "b"]])
        right = Table.from_records(cols, [["TXN-2", "c", "d"]])
        d = engine.match(left, right).to_dict()
        assert d["missing_from_right"] == [
            {"index": 0, "row": {"transaction_id": "TXN-1", "index": "a", "row": "b"}}
        ]
        assert d["missing_from_left"][0]["row"]["index"] == "c"
