"""
Reconciliation summary statistics.

Aggregates a ``MatchResult`` and its discrepancies into the headline
numbers a report shows: how many rows matched, how many are missing on
each side, the total variance, counts per classification, and an optional
per-group breakdown (for example per card brand) of both sides' totals.
"""

from __future__ import annotations

from collections import Counter
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from recon_engine.schema import (
    Discrepancy,
    GroupSummary,
    MatchResult,
    ReconciliationSummary,
)
from recon_engine.table import Table


def build_summary(
    result: MatchResult,
    discrepancies: Sequence[Discrepancy],
    amount_field: Optional[str] = None,
    group_by: Optional[str] = None,
) -> ReconciliationSummary:
    """Summarise one reconciliation run.

    ``total_variance`` sums the deltas of every numeric discrepancy.  The
    per-group breakdown needs both ``amount_field`` and ``group_by`` to
    exist on the respective side; a side lacking either contributes
    nothing.
    """
    variance = sum(
        (d.delta for d in discrepancies if d.delta is not None), Decimal("0")
    )
    pairs = {(d.pair.left_index, d.pair.right_index) for d in discrepancies}

    summary = ReconciliationSummary(
        left_rows=len(result.left),
        right_rows=len(result.right),
        matched=len(result.matched),
        missing_from_right=len(result.missing_from_right),
        missing_from_left=len(result.missing_from_left),
        discrepancies=len(discrepancies),
        total_variance=variance,
        by_classification=dict(Counter(d.classification for d in discrepancies)),
        pairs_with_discrepancies=len(pairs),
    )

    if amount_field and group_by:
        summary.groups = _group_totals(result.left, result.right, amount_field, group_by)
    return summary


def _group_totals(
    left: Table, right: Table, amount_field: str, group_by: str
) -> List[GroupSummary]:
    groups: Dict[object, GroupSummary] = {}

    for side, table in (("left", left), ("right", right)):
        if not (table.has_column(amount_field) and table.has_column(group_by)):
            continue
        for group, amount in zip(table.column(group_by), table.column(amount_field)):
            if isinstance(group, str):
                group = group.strip() or None
            entry = groups.setdefault(group, GroupSummary(group=group))
            if not isinstance(amount, Decimal):
                amount = Decimal("0")
            if side == "left":
                entry.left_total += amount
                entry.left_count += 1
            else:
                entry.right_total += amount
                entry.right_count += 1

    return list(groups.values())
