"""
Result data models.

Plain structured data handed to the reporting collaborator: the join
partitions, the classified discrepancies, and the aggregate report.
Nothing here formats or renders; ``to_dict`` gives JSON-ready primitives.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from recon_engine.table import Row, Table, Value


def _plain(value: Value) -> Any:
    """JSON-friendly form of a cell value (decimals as strings)."""
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, date):
        return value.isoformat()
    return value


def plain_row(row: Row) -> Dict[str, Any]:
    return {k: _plain(v) for k, v in row.items()}


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MatchedPair:
    """Row indices of a left row and the right row it was paired with."""

    left_index: int
    right_index: int
    key: Tuple[Any, ...]


@dataclass(frozen=True)
class AmbiguousKeyWarning:
    """A join key that occurs more than once on at least one side."""

    key: Tuple[Any, ...]
    left_count: int
    right_count: int

    @property
    def message(self) -> str:
        paired = min(self.left_count, self.right_count)
        return (
            f"Key {self.key!r} appears {self.left_count}x on the left and "
            f"{self.right_count}x on the right; {paired} pair(s) matched by order "
            f"of appearance"
        )


@dataclass
class MatchResult:
    """Three disjoint partitions covering every row of both Tables once."""

    left: Table
    right: Table
    key_columns: Tuple[str, ...]
    matched: List[MatchedPair] = field(default_factory=list)
    missing_from_right: List[int] = field(default_factory=list)  # left-only rows
    missing_from_left: List[int] = field(default_factory=list)  # right-only rows
    warnings: List[AmbiguousKeyWarning] = field(default_factory=list)
    null_key_rows: Dict[str, List[int]] = field(default_factory=dict)

    def left_row(self, pair: MatchedPair) -> Row:
        return self.left.row(pair.left_index)

    def right_row(self, pair: MatchedPair) -> Row:
        return self.right.row(pair.right_index)

    def missing_from_right_rows(self) -> List[Row]:
        return [self.left.row(i) for i in self.missing_from_right]

    def missing_from_left_rows(self) -> List[Row]:
        return [self.right.row(i) for i in self.missing_from_left]

    def is_complete(self) -> bool:
        """True when every row of both sides sits in exactly one partition."""
        left_ids = [p.left_index for p in self.matched] + list(self.missing_from_right)
        right_ids = [p.right_index for p in self.matched] + list(self.missing_from_left)
        return (
            sorted(left_ids) == list(range(len(self.left)))
            and sorted(right_ids) == list(range(len(self.right)))
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key_columns": list(self.key_columns),
            "matched": [
                {
                    "key": [_plain(k) for k in p.key],
                    "left_index": p.left_index,
                    "right_index": p.right_index,
                    "left": plain_row(self.left_row(p)),
                    "right": plain_row(self.right_row(p)),
                }
                for p in self.matched
            ],
            "missing_from_right": [
                {"index": i, "row": plain_row(self.left.row(i))} for i in self.missing_from_right
            ],
            "missing_from_left": [
                {"index": i, "row": plain_row(self.right.row(i))} for i in self.missing_from_left
            ],
            "warnings": [w.message for w in self.warnings],
        }


# ---------------------------------------------------------------------------
# Discrepancies
# ---------------------------------------------------------------------------

class Presence:
    BOTH = "both"
    LEFT_ONLY = "left_only"
    RIGHT_ONLY = "right_only"
    NEITHER = "neither"


@dataclass(frozen=True)
class Discrepancy:
    """A differing field on a matched pair.  ``delta = right - left``."""

    pair: MatchedPair
    field: str
    left_value: Value
    right_value: Value
    delta: Optional[Decimal]
    presence: str
    classification: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": [_plain(k) for k in self.pair.key],
            "left_index": self.pair.left_index,
            "right_index": self.pair.right_index,
            "field": self.field,
            "left_value": _plain(self.left_value),
            "right_value": _plain(self.right_value),
            "delta": _plain(self.delta),
            "presence": self.presence,
            "classification": self.classification,
        }


# ---------------------------------------------------------------------------
# Aggregate
# ---------------------------------------------------------------------------

@dataclass
class GroupSummary:
    """Per-group totals (e.g. per card brand)."""

    group: Any
    left_total: Decimal = Decimal("0")
    right_total: Decimal = Decimal("0")
    left_count: int = 0
    right_count: int = 0

    @property
    def difference(self) -> Decimal:
        return self.right_total - self.left_total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "group": _plain(self.group),
            "left_total": _plain(self.left_total),
            "right_total": _plain(self.right_total),
            "difference": _plain(self.difference),
            "left_count": self.left_count,
            "right_count": self.right_count,
        }


@dataclass
class ReconciliationSummary:
    left_rows: int
    right_rows: int
    matched: int
    missing_from_right: int
    missing_from_left: int
    discrepancies: int
    total_variance: Decimal
    by_classification: Dict[str, int] = field(default_factory=dict)
    groups: List[GroupSummary] = field(default_factory=list)
    pairs_with_discrepancies: int = 0

    @property
    def match_percentage(self) -> float:
        """Share of left rows that found a partner, 0.0–100.0."""
        if self.left_rows == 0:
            return 0.0
        return round(self.matched / self.left_rows * 100, 2)

    @property
    def clean_matches(self) -> int:
        return self.matched - self.pairs_with_discrepancies

    def to_dict(self) -> Dict[str, Any]:
        return {
            "left_rows": self.left_rows,
            "right_rows": self.right_rows,
            "matched": self.matched,
            "clean_matches": self.clean_matches,
            "match_percentage": self.match_percentage,
            "missing_from_right": self.missing_from_right,
            "missing_from_left": self.missing_from_left,
            "discrepancies": self.discrepancies,
            "total_variance": _plain(self.total_variance),
            "by_classification": dict(self.by_classification),
            "groups": [g.to_dict() for g in self.groups],
        }


@dataclass
class ReconciliationReport:
    """Everything the reporting collaborator needs from one run."""

    match: MatchResult
    discrepancies: List[Discrepancy]
    summary: ReconciliationSummary
    validation_warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary.to_dict(),
            "match": self.match.to_dict(),
            "discrepancies": [d.to_dict() for d in self.discrepancies],
            "validation_warnings": list(self.validation_warnings),
        }
