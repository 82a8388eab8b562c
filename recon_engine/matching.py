"""
Matching Engine.

Joins two finalised Tables on their key columns in a single hash pass:

1. Index every left row by its key tuple (insertion-ordered queue per key).
2. Walk the right rows; each probe pops the *earliest* unpaired left row
   with the same key, so duplicates pair up in order of first appearance.
3. Left rows never popped become ``missing_from_right``; right rows that
   found no partner become ``missing_from_left``.

The pass is O(n + m).  Every row lands in exactly one partition; rows
whose key is null or blank never match and go to their side's missing
partition.

Duplicate keys are *not* fatal by default: an ``AmbiguousKeyWarning`` is
recorded per affected key (set ``error_on_ambiguous_key`` to abort).
"""

from __future__ import annotations

from collections import Counter, deque
from datetime import date
from decimal import Decimal
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple

from recon_engine.config import MatchingConfig
from recon_engine.errors import AmbiguousKeyError, MatchingConfigError
from recon_engine.logging_setup import get_logger
from recon_engine.schema import AmbiguousKeyWarning, MatchedPair, MatchResult
from recon_engine.table import Table, Value

logger = get_logger("matching")

Key = Tuple[Any, ...]


class MatchingEngine:
    """Key-based join producing a ``MatchResult``.

    Parameters
    ----------
    config:
        Key columns and key normalisation flags.
    """

    def __init__(self, config: Optional[MatchingConfig] = None) -> None:
        self._config = config or MatchingConfig()

    def match(
        self,
        left: Table,
        right: Table,
        key_columns: Optional[Sequence[str]] = None,
    ) -> MatchResult:
        """Partition both tables into matched / missing-from-right / missing-from-left.

        Raises
        ------
        MatchingConfigError
            No key columns, or a key column absent from either table.
        AmbiguousKeyError
            Duplicate keys when ``error_on_ambiguous_key`` is set.
        """
        keys = tuple(key_columns if key_columns is not None else self._config.key_columns)
        self._check_keys(left, right, keys)

        left_keys = self._key_tuples(left, keys)
        right_keys = self._key_tuples(right, keys)

        index: Dict[Key, Deque[int]] = {}
        for i, key in enumerate(left_keys):
            if key is not None:
                index.setdefault(key, deque()).append(i)

        result = MatchResult(left=left, right=right, key_columns=keys)
        paired_left = [False] * len(left)

        for j, key in enumerate(right_keys):
            queue = index.get(key) if key is not None else None
            if queue:
                i = queue.popleft()
                paired_left[i] = True
                result.matched.append(MatchedPair(left_index=i, right_index=j, key=key))
            else:
                result.missing_from_left.append(j)

        result.missing_from_right = [i for i, done in enumerate(paired_left) if not done]

        null_left = [i for i, k in enumerate(left_keys) if k is None]
        null_right = [j for j, k in enumerate(right_keys) if k is None]
        if null_left or null_right:
            result.null_key_rows = {"left": null_left, "right": null_right}

        result.warnings = self._ambiguities(left_keys, right_keys)
        for warning in result.warnings:
            logger.warning("AmbiguousKeyWarning: %s", warning.message)
        if result.warnings and self._config.error_on_ambiguous_key:
            raise AmbiguousKeyError(
                f"{len(result.warnings)} duplicate join key(s), first: "
                f"{result.warnings[0].message}"
            )

        logger.info(
            "Join on %s — matched=%d, missing_from_right=%d, missing_from_left=%d, "
            "ambiguous_keys=%d",
            list(keys),
            len(result.matched),
            len(result.missing_from_right),
            len(result.missing_from_left),
            len(result.warnings),
        )
        return result

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    @staticmethod
    def _check_keys(left: Table, right: Table, keys: Key) -> None:
        if not keys:
            raise MatchingConfigError("No key columns configured for the join")
        for side, table in (("left", left), ("right", right)):
            missing = [k for k in keys if not table.has_column(k)]
            if missing:
                raise MatchingConfigError(
                    f"Key column(s) {missing} missing from {side} table; "
                    f"available: {list(table.columns)}"
                )

    def _key_tuples(self, table: Table, keys: Key) -> List[Optional[Key]]:
        columns = [table.column(k) for k in keys]
        out: List[Optional[Key]] = []
        for i in range(len(table)):
            parts = tuple(self._key_part(c[i]) for c in columns)
            out.append(None if any(p is None for p in parts) else parts)
        return out

    def _key_part(self, value: Value) -> Optional[str]:
        """Canonical text of one key cell; ``None`` for null or blank.

        Numbers and dates are keyed by their text so an id typed as a
        number in one file still meets the same id typed as text in the
        other.
        """
        if value is None:
            return None
        if isinstance(value, Decimal):
            # 10.0 and 10.00 are the same key
            text = format(value.normalize(), "f")
        elif isinstance(value, date):
            text = value.isoformat()
        else:
            text = str(value)
        if self._config.strip_keys:
            text = text.strip()
        if not text:
            return None
        return text if self._config.case_sensitive_keys else text.casefold()

    @staticmethod
    def _ambiguities(
        left_keys: List[Optional[Key]], right_keys: List[Optional[Key]]
    ) -> List[AmbiguousKeyWarning]:
        left_counts = Counter(k for k in left_keys if k is not None)
        right_counts = Counter(k for k in right_keys if k is not None)
        warnings: List[AmbiguousKeyWarning] = []
        seen: set = set()
        for key in list(left_counts) + list(right_counts):
            if key in seen:
                continue
            seen.add(key)
            if left_counts[key] > 1 or right_counts[key] > 1:
                warnings.append(
                    AmbiguousKeyWarning(
                        key=key,
                        left_count=left_counts[key],
                        right_count=right_counts[key],
                    )
                )
        return warnings
