"""
Configuration module for the reconciliation engine.

All tuneable parameters — batch sizes, thresholds, matching behaviour —
live here.  Nothing is hard-coded in business logic modules.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple


@dataclass(frozen=True)
class ExecutionConfig:
    """Controls how the Step Executor walks a Table."""

    # Rows processed between two cancellation checks.  Bounds the amount of
    # work lost when a long-running step is cancelled.
    batch_size: int = 5000

    # Decimal places that normalize-amount quantizes parsed values to.
    amount_scale: int = 2

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.amount_scale < 0:
            raise ValueError(f"amount_scale must be >= 0, got {self.amount_scale}")


@dataclass(frozen=True)
class MatchingConfig:
    """Controls the join and column resolution."""

    # Columns that correlate rows across the two datasets.
    key_columns: Tuple[str, ...] = ()

    # When False, string key values are compared case-insensitively.
    case_sensitive_keys: bool = False

    # Strip surrounding whitespace from string key values before joining.
    strip_keys: bool = True

    # When True duplicate keys abort the join; when False, a warning.
    error_on_ambiguous_key: bool = False

    # Fuzzy column resolution: minimum rapidfuzz score (0–100) to accept
    column_match_threshold: float = 85.0

    # If two candidate columns score within this delta the resolution is
    # flagged as ambiguous.
    column_ambiguity_delta: float = 5.0


@dataclass(frozen=True)
class ClassificationConfig:
    """Controls the discrepancy classifier."""

    # Absolute delta at or below which a shortfall is treated as a fee error
    fee_threshold: Decimal = Decimal("10.00")

    # Fields diffed between the two sides of every matched pair
    compare_fields: Tuple[str, ...] = ("amount",)

    unclassified_label: str = "Unclassified"


@dataclass(frozen=True)
class ReconciliationConfig:
    """Top-level configuration aggregating all sub-configs."""

    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    matching: MatchingConfig = field(default_factory=MatchingConfig)
    classification: ClassificationConfig = field(default_factory=ClassificationConfig)

    # Logging level for the engine's audit trail
    log_level: int = logging.INFO

    # Run the left and right pipelines on separate worker threads.
    run_concurrently: bool = True

    # Optional column for the per-group summary breakdown (e.g. card brand)
    group_by: Optional[str] = None
