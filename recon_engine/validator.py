"""
Validation Layer.

Pre-join checks on the two finalised Tables, run *before* the matching
engine so that configuration problems are reported once rather than per
row.

Checks performed
----------------
1. **Key columns** — at least one key column is configured and every key
   column exists on both sides; failures are errors.
2. **Compare fields** — every field the classifier diffs exists on both
   sides; failures are errors.
3. **Null keys** — rows whose key is null or blank can never match; warning.
4. **Numeric fields** — compare fields holding text instead of decimals
   are flagged so the user can add a normalize-amount step; warning.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Sequence

from recon_engine.logging_setup import get_logger
from recon_engine.table import Table

logger = get_logger("validator")


class ValidationReport:
    """Accumulates errors and warnings during a validation pass."""

    def __init__(self) -> None:
        self.errors: list[str] = []
        self.warnings: list[str] = []

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)
        logger.error("Validation ERROR: %s", msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)
        logger.warning("Validation WARNING: %s", msg)


class Validator:
    """Validates a left/right Table pair before joining."""

    def validate_for_join(
        self,
        left: Table,
        right: Table,
        key_columns: Sequence[str],
        compare_fields: Sequence[str] = (),
    ) -> ValidationReport:
        """Run all checks and return a ``ValidationReport``."""
        report = ValidationReport()
        self._check_key_columns(left, right, key_columns, report)
        self._check_compare_fields(left, right, compare_fields, report)
        if report.is_valid:
            self._check_null_keys(left, "left", key_columns, report)
            self._check_null_keys(right, "right", key_columns, report)
            self._check_numeric(left, "left", compare_fields, report)
            self._check_numeric(right, "right", compare_fields, report)
        return report

    # ------------------------------------------------------------------ #
    # Individual checks
    # ------------------------------------------------------------------ #

    @staticmethod
    def _check_key_columns(
        left: Table, right: Table, key_columns: Sequence[str], report: ValidationReport
    ) -> None:
        if not key_columns:
            report.add_error("No key columns configured for the join")
            return
        for side, table in (("left", left), ("right", right)):
            missing = [k for k in key_columns if not table.has_column(k)]
            if missing:
                report.add_error(
                    f"Key column(s) {missing} missing from {side} table; "
                    f"available: {list(table.columns)}"
                )

    @staticmethod
    def _check_compare_fields(
        left: Table, right: Table, fields: Sequence[str], report: ValidationReport
    ) -> None:
        for side, table in (("left", left), ("right", right)):
            missing = [f for f in fields if not table.has_column(f)]
            if missing:
                report.add_error(f"Compare field(s) {missing} missing from {side} table")

    @staticmethod
    def _check_null_keys(
        table: Table, side: str, key_columns: Sequence[str], report: ValidationReport
    ) -> None:
        columns = [table.column(k) for k in key_columns]
        blank = sum(
            1
            for i in range(len(table))
            if any(c[i] is None or (isinstance(c[i], str) and not c[i].strip()) for c in columns)
        )
        if blank:
            report.add_warning(
                f"{blank} {side} row(s) have an empty key and cannot be matched"
            )

    @staticmethod
    def _check_numeric(
        table: Table, side: str, fields: Sequence[str], report: ValidationReport
    ) -> None:
        for name in fields:
            text_values = sum(
                1 for v in table.column(name) if v is not None and not isinstance(v, Decimal)
            )
            if text_values:
                report.add_warning(
                    f"{text_values} {side} value(s) in {name!r} are not numeric; "
                    f"add a normalize-amount step to compare them as amounts"
                )
