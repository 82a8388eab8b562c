"""
Unit tests for the HistoryLog (append-only snapshots with a cursor).
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from recon_engine.errors import OutOfRangeError, SchemaError
from recon_engine.history import HistoryLog
from recon_engine.steps import DeriveColumn, NormalizeAmount, RenameColumn
from recon_engine.table import Table


@pytest.fixture
def original() -> Table:
    return Table.from_records(["Amt"], [["$10"], ["(2.50)"]])


@pytest.fixture
def log(original: Table) -> HistoryLog:
    log = HistoryLog(original)
    log.execute_step(RenameColumn(source="Amt", target="amount"))
    log.execute_step(NormalizeAmount(column="amount"))
    log.execute_step(DeriveColumn(name="double", expression="amount * 2"))
    return log


class TestAppend:
    def test_entry_zero_is_input(self, log: HistoryLog, original: Table) -> None:
        assert log.entry(0).table is original
        assert log.entry(0).step is None

    def test_cursor_at_tail(self, log: HistoryLog) -> None:
        assert log.cursor == 3
        assert log.at_tail
        assert log.current().columns == ("amount", "double")

    def test_entry_metadata(self, log: HistoryLog) -> None:
        entry = log.entry(3)
        assert entry.record_count == 2
        assert entry.columns_added == ("double",)
        assert log.entry(1).columns_removed == ("Amt",)
        assert entry.to_dict()["step"]["kind"] == "derive-column"

    def test_failure_appends_nothing(self, log: HistoryLog) -> None:
        before = log.entries()
        with pytest.raises(SchemaError):
            log.execute_step(RenameColumn(source="missing", target="x"))
        assert log.entries() == before
        assert log.cursor == 3


class TestRevert:
    def test_revert_returns_snapshot(self, log: HistoryLog, original: Table) -> None:
        assert log.revert_to(0) is original
        assert log.cursor == 0
        assert len(log) == 4  # later entries are kept

    def test_revert_matches_rerun_prefix(self, log: HistoryLog, original: Table) -> None:
        fresh = HistoryLog(original)
        fresh.execute_step(RenameColumn(source="Amt", target="amount"))
        fresh.execute_step(NormalizeAmount(column="amount"))
        assert log.revert_to(2) == fresh.current()

    def test_out_of_range(self, log: HistoryLog) -> None:
        with pytest.raises(OutOfRangeError):
            log.revert_to(4)
        with pytest.raises(OutOfRangeError):
            log.revert_to(-1)
        with pytest.raises(IndexError):
            log.preview(99)

    def test_redo(self, log: HistoryLog) -> None:
        log.revert_to(1)
        assert log.can_redo
        assert log.redo().column("amount") == (Decimal("10.00"), Decimal("-2.50"))
        assert log.cursor == 2

    def test_redo_at_tail(self, log: HistoryLog) -> None:
        with pytest.raises(OutOfRangeError):
            log.redo()

    def test_execute_after_revert_truncates(self, log: HistoryLog) -> None:
        log.revert_to(2)
        log.execute_step(DeriveColumn(name="half", expression="amount / 2"))
        assert len(log) == 4
        assert log.cursor == 3
        assert log.current().columns == ("amount", "half")
        assert not log.can_redo

    def test_preview_does_not_move_cursor(self, log: HistoryLog, original: Table) -> None:
        assert log.preview(0) is original
        assert log.cursor == 3

    def test_snapshots_never_change(self, log: HistoryLog) -> None:
        snapshot = log.preview(2)
        log.revert_to(1)
        log.execute_step(NormalizeAmount(column="amount", format="plain"))
        assert snapshot.column("amount") == (Decimal("10.00"), Decimal("-2.50"))
