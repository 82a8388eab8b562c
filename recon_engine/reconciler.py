"""
Reconciliation Orchestrator.

The central entry point that wires together every layer:

    ledger Table      →  Pipeline(left)  ─┐
                                          ├→ Validator → MatchingEngine
    settlement Table  →  Pipeline(right) ─┘      → DiscrepancyClassifier → Summary

Usage
-----
>>> from recon_engine.reconciler import Reconciler
>>> from recon_engine.config import MatchingConfig, ReconciliationConfig
>>>
>>> rec = Reconciler(ledger, settlement, ReconciliationConfig(
...     matching=MatchingConfig(key_columns=("transaction_id",))))
>>> rec.left.add_step({"kind": "normalize-amount", "column": "amount"})
>>> rec.right.add_step({"kind": "normalize-amount", "column": "amount"})
>>> report = rec.reconcile()
>>> print(report.to_dict()["summary"])
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, Optional, Sequence, Tuple

from recon_engine.classifier import DiscrepancyClassifier, RuleLike
from recon_engine.config import ReconciliationConfig
from recon_engine.errors import MatchingConfigError, PipelineStateError, StepError
from recon_engine.executor import StepExecutor
from recon_engine.logging_setup import configure_logging, get_logger
from recon_engine.matching import MatchingEngine
from recon_engine.pipeline import Pipeline, PipelineStatus
from recon_engine.schema import ReconciliationReport
from recon_engine.summary import build_summary
from recon_engine.synonym_mapper import SynonymMapper
from recon_engine.table import Table
from recon_engine.validator import Validator

logger = get_logger("reconciler")


class Reconciler:
    """Owns both pipelines and runs the join, classification and summary.

    Parameters
    ----------
    ledger:
        The business-system export (left side).
    settlement:
        The payment-processor export (right side).
    config:
        All tuneable knobs.
    rules:
        Ordered classification rules; the fee/rate defaults when omitted.
    extra_synonyms:
        Additional column aliases for the resolve-columns step.
    """

    def __init__(
        self,
        ledger: Table,
        settlement: Table,
        config: Optional[ReconciliationConfig] = None,
        rules: Optional[Iterable[RuleLike]] = None,
        extra_synonyms: Optional[Dict[str, str]] = None,
    ) -> None:
        self._config = config or ReconciliationConfig()

        configure_logging(level=self._config.log_level)

        synonyms = SynonymMapper(extra_synonyms=extra_synonyms)
        executor = StepExecutor(
            config=self._config.execution,
            matching=self._config.matching,
            synonyms=synonyms,
        )
        keys = self._config.matching.key_columns
        self.left = Pipeline("ledger", ledger, key_columns=keys, executor=executor)
        self.right = Pipeline("settlement", settlement, key_columns=keys, executor=executor)

        self._validator = Validator()
        self._matcher = MatchingEngine(self._config.matching)
        self._classifier = DiscrepancyClassifier(self._config.classification, rules)

        logger.info(
            "Reconciler initialised — keys=%s, compare=%s, fee_threshold=%s, concurrent=%s",
            list(keys),
            list(self._config.classification.compare_fields),
            self._config.classification.fee_threshold,
            self._config.run_concurrently,
        )

    @property
    def config(self) -> ReconciliationConfig:
        return self._config

    # ------------------------------------------------------------------ #
    # Pipelines
    # ------------------------------------------------------------------ #

    def run_pipelines(self, cancel: Optional[threading.Event] = None) -> Tuple[Table, Table]:
        """Run both pipelines to completion.

        Both sides always run to their own end (success or failure); if
        either fails, the left side's error is raised first.
        """
        if self._config.run_concurrently:
            with ThreadPoolExecutor(max_workers=2, thread_name_prefix="pipeline") as pool:
                futures = [pool.submit(p.run, cancel) for p in (self.left, self.right)]
                errors = [f.exception() for f in futures]
        else:
            errors = []
            for p in (self.left, self.right):
                try:
                    p.run(cancel)
                    errors.append(None)
                except StepError as exc:
                    errors.append(exc)

        for pipeline, error in zip((self.left, self.right), errors):
            if error is not None:
                logger.error("Pipeline %r failed: %s", pipeline.name, error)
                raise error
        return self.left.current_table(), self.right.current_table()

    # ------------------------------------------------------------------ #
    # Join + classification
    # ------------------------------------------------------------------ #

    def reconcile(
        self,
        key_columns: Optional[Sequence[str]] = None,
        compare_fields: Optional[Sequence[str]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> ReconciliationReport:
        """Run pending steps, then match, classify and summarise.

        Raises
        ------
        StepError
            A pipeline step failed; partial history stays inspectable.
        PipelineStateError
            A pipeline was reverted and is not back at its tail.
        MatchingConfigError
            Key or compare columns are missing or not configured.
        """
        if not (self.left.is_ready and self.right.is_ready):
            reverted = [
                p.name for p in (self.left, self.right) if p.status is PipelineStatus.REVERTED
            ]
            if reverted:
                raise PipelineStateError(
                    f"Pipeline(s) {reverted} were reverted; run() or redo() them back "
                    f"to their last step before joining"
                )
            self.run_pipelines(cancel)

        keys = self._resolve_keys(key_columns)
        compare = tuple(
            compare_fields
            if compare_fields is not None
            else self._config.classification.compare_fields
        )
        left, right = self.left.current_table(), self.right.current_table()

        report = self._validator.validate_for_join(left, right, keys, compare)
        if not report.is_valid:
            raise MatchingConfigError("; ".join(report.errors))

        match = self._matcher.match(left, right, keys)
        discrepancies = self._classifier.classify(match, compare)
        summary = build_summary(
            match,
            discrepancies,
            amount_field=compare[0] if compare else None,
            group_by=self._config.group_by,
        )

        logger.info(
            "Reconciliation complete — matched=%d (%.2f%%), missing_from_right=%d, "
            "missing_from_left=%d, discrepancies=%d, variance=%s",
            summary.matched,
            summary.match_percentage,
            summary.missing_from_right,
            summary.missing_from_left,
            summary.discrepancies,
            summary.total_variance,
        )

        return ReconciliationReport(
            match=match,
            discrepancies=discrepancies,
            summary=summary,
            validation_warnings=report.warnings
            + [w.message for w in match.warnings],
        )

    def _resolve_keys(self, key_columns: Optional[Sequence[str]]) -> Tuple[str, ...]:
        if key_columns is not None:
            return tuple(key_columns)
        left_keys, right_keys = self.left.key_columns, self.right.key_columns
        if left_keys and right_keys and left_keys != right_keys:
            raise MatchingConfigError(
                f"Pipelines declare different key columns: {list(left_keys)} "
                f"vs {list(right_keys)}"
            )
        return left_keys or right_keys
