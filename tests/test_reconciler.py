"""
End-to-end tests for the Reconciler orchestrator.
"""

from __future__ import annotations

import logging
from decimal import Decimal

import pytest

from recon_engine.classifier import FEE_ERROR
from recon_engine.config import MatchingConfig, ReconciliationConfig
from recon_engine.errors import MatchingConfigError, PipelineStateError, ValueTypeError
from recon_engine.pipeline import PipelineStatus
from recon_engine.reconciler import Reconciler
from recon_engine.table import Table

RESOLVE = {
    "kind": "resolve-columns",
    "targets": {"transaction_id": [], "amount": [], "card_brand": []},
}
NORMALIZE = {"kind": "normalize-amount", "column": "amount"}


@pytest.fixture
def ledger() -> Table:
    return Table.from_records(
        ["Txn ID", "Amount", "Brand"],
        [
            ["TXN-1", "$127.50", "Visa"],
            ["TXN-2", "10.00", "Amex"],
            ["TXN-3", "$1,000.00", "Visa"],
        ],
    )


@pytest.fixture
def settlement() -> Table:
    return Table.from_records(
        ["Reference", "Gross Amount", "Card Type"],
        [
            ["txn-1", 124.32, "Visa"],
            ["TXN-2", 10.0, "Amex"],
            ["TXN-3", "$1,000", "Visa"],
            ["TXN-4", "45.20", "Visa"],
        ],
    )


def _config(**overrides) -> ReconciliationConfig:
    options = dict(
        matching=MatchingConfig(key_columns=("transaction_id",)),
        log_level=logging.WARNING,
        group_by="card_brand",
    )
    options.update(overrides)
    return ReconciliationConfig(**options)


@pytest.fixture
def reconciler(ledger: Table, settlement: Table) -> Reconciler:
    rec = Reconciler(ledger, settlement, _config())
    for pipe in (rec.left, rec.right):
        pipe.add_step(RESOLVE)
        pipe.add_step(NORMALIZE)
    return rec


# ======================================================================
# Full run
# ======================================================================

class TestReconcile:
    def test_end_to_end(self, reconciler: Reconciler) -> None:
        report = reconciler.reconcile()
        summary = report.summary

        assert summary.matched == 3
        assert summary.missing_from_right == 0
        assert summary.missing_from_left == 1
        assert summary.discrepancies == 1
        assert summary.clean_matches == 2
        assert summary.match_percentage == 100.0

        (d,) = report.discrepancies
        assert d.delta == Decimal("-3.18")
        assert d.classification == FEE_ERROR

        (orphan,) = report.match.missing_from_left_rows()
        assert orphan["transaction_id"] == "TXN-4"
        assert orphan["amount"] == Decimal("45.20")

    def test_pipelines_auto_run(self, reconciler: Reconciler) -> None:
        reconciler.reconcile()
        assert reconciler.left.status is PipelineStatus.EXECUTED
        assert reconciler.right.current_table().columns == (
            "transaction_id", "amount", "card_brand",
        )

    def test_group_breakdown(self, reconciler: Reconciler) -> None:
        groups = {g.group: g for g in reconciler.reconcile().summary.groups}
        assert groups["Visa"].left_total == Decimal("1127.50")
        assert groups["Visa"].right_total == Decimal("1169.52")
        assert groups["Amex"].difference == Decimal("0")

    def test_numeric_spellings_agree(self) -> None:
        cols = ["transaction_id", "amount"]
        left = Table.from_records(cols, [["A", "10.00"], ["B", 10.0], ["C", "$10"]])
        right = Table.from_records(cols, [["A", "$10"], ["B", "10.00"], ["C", 10]])
        rec = Reconciler(left, right, _config(group_by=None))
        rec.left.add_step(NORMALIZE)
        rec.right.add_step(NORMALIZE)
        report = rec.reconcile()
        assert report.summary.matched == 3
        assert report.discrepancies == []

    def test_sequential_matches_concurrent(self, ledger: Table, settlement: Table) -> None:
        results = []
        for concurrent in (True, False):
            rec = Reconciler(ledger, settlement, _config(run_concurrently=concurrent))
            for pipe in (rec.left, rec.right):
                pipe.add_step(RESOLVE)
                pipe.add_step(NORMALIZE)
            results.append(rec.reconcile().to_dict())
        assert results[0] == results[1]

    def test_ambiguity_surfaces_as_warning(self) -> None:
        cols = ["transaction_id", "amount"]
        left = Table.from_records(cols, [["TXN-1", "1"], ["TXN-1", "2"]])
        right = Table.from_records(cols, [["TXN-1", "1"]])
        rec = Reconciler(left, right, _config())
        report = rec.reconcile(compare_fields=[])
        assert report.summary.matched == 1
        assert any("appears 2x" in w for w in report.validation_warnings)


# ======================================================================
# Failure modes
# ======================================================================

class TestFailures:
    def test_step_failure_propagates(self, reconciler: Reconciler) -> None:
        reconciler.left.add_step({"kind": "normalize-amount", "column": "card_brand"})
        with pytest.raises(ValueTypeError) as info:
            reconciler.reconcile()
        assert info.value.step_index == 3
        assert reconciler.left.status is PipelineStatus.FAILED
        assert reconciler.left.cursor == 2
        assert reconciler.right.status is PipelineStatus.EXECUTED

    def test_reverted_pipeline_refused(self, reconciler: Reconciler) -> None:
        reconciler.run_pipelines()
        reconciler.left.revert_to(1)
        with pytest.raises(PipelineStateError, match="ledger"):
            reconciler.reconcile()

    def test_redo_makes_ready_again(self, reconciler: Reconciler) -> None:
        reconciler.run_pipelines()
        reconciler.left.revert_to(1)
        reconciler.left.redo()
        assert reconciler.reconcile().summary.matched == 3

    def test_key_columns_disagree(self, reconciler: Reconciler) -> None:
        reconciler.left.set_key_columns(["amount"])
        with pytest.raises(MatchingConfigError, match="different key columns"):
            reconciler.reconcile()

    def test_explicit_keys_override(self, reconciler: Reconciler) -> None:
        reconciler.left.set_key_columns(["amount"])
        report = reconciler.reconcile(key_columns=["transaction_id"])
        assert report.summary.matched == 3

    def test_missing_compare_field(self, reconciler: Reconciler) -> None:
        with pytest.raises(MatchingConfigError, match="fee"):
            reconciler.reconcile(compare_fields=["fee"])
