"""
Fuzzy Column Matching Layer.

When neither an exact alias nor the synonym dictionary identifies a
column, this layer uses ``rapidfuzz`` to find the closest header in a
table.  Results are confidence-gated:

* Matches **below** ``column_match_threshold`` are rejected outright.
* If two headers are within ``column_ambiguity_delta`` of each other the
  result is flagged as ambiguous and the caller records a diagnostic instead
  of silently picking one.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from rapidfuzz import fuzz, process

from recon_engine.config import MatchingConfig
from recon_engine.logging_setup import get_logger
from recon_engine.normalizer import LabelNormalizer

logger = get_logger("fuzzy_matcher")


@dataclass
class FuzzyCandidate:
    """A single candidate header returned by the fuzzy matcher."""

    column: str
    score: float  # 0–100
    is_ambiguous: bool = False


class FuzzyMatcher:
    """Fuzzy-match a wanted column name against a set of table headers.

    The matcher pre-builds a normalised version of every header so that
    comparisons ignore case, punctuation and ``_`` / ``.`` separators.

    Parameters
    ----------
    config:
        Matching thresholds.
    headers:
        The column names to match against.
    normalizer:
        Shared label normaliser; a fresh one is built when omitted.
    """

    def __init__(
        self,
        config: MatchingConfig,
        headers: Iterable[str],
        normalizer: Optional[LabelNormalizer] = None,
    ) -> None:
        self._config = config
        self._normalizer = normalizer or LabelNormalizer()

        # normalised header → original header (first one wins)
        self._targets: dict[str, str] = {}
        for header in headers:
            self._targets.setdefault(self._normalizer.normalize_label(header), header)

        self._target_keys: list[str] = list(self._targets)

    def match(self, wanted: str) -> Optional[FuzzyCandidate]:
        """Find the header that best matches ``wanted``.

        Returns
        -------
        FuzzyCandidate | None
            Best match above threshold, or ``None`` if nothing qualifies.
        """
        label = self._normalizer.normalize_label(wanted)
        if not label or not self._target_keys:
            return None

        # token_sort_ratio is robust against word-order differences
        # ("id transaction" vs "transaction id").
        results = process.extract(
            label,
            self._target_keys,
            scorer=fuzz.token_sort_ratio,
            limit=5,
        )

        if not results:
            logger.debug("No fuzzy candidates for %r", wanted)
            return None

        best_key, best_score, _ = results[0]

        if best_score < self._config.column_match_threshold:
            logger.info(
                "Fuzzy best for %r is %r (%.1f) — below threshold %.1f; rejected",
                wanted,
                best_key,
                best_score,
                self._config.column_match_threshold,
            )
            return None

        is_ambiguous = False
        if len(results) > 1:
            runner_key, second_score, _ = results[1]
            if best_score - second_score <= self._config.column_ambiguity_delta:
                is_ambiguous = True
                logger.warning(
                    "Ambiguous fuzzy column match for %r: best=%r (%.1f), "
                    "runner-up=%r (%.1f)",
                    wanted,
                    best_key,
                    best_score,
                    runner_key,
                    second_score,
                )

        column = self._targets[best_key]
        logger.info(
            "Fuzzy column match: %r → %r (score=%.1f, ambiguous=%s)",
            wanted,
            column,
            best_score,
            is_ambiguous,
        )
        return FuzzyCandidate(column=column, score=best_score, is_ambiguous=is_ambiguous)
