"""
Step Executor.

Applies one step to one Table and returns the new Table together with the
diagnostics the step produced.  The executor never mutates its input and
keeps no state between calls; it is safe to share one executor between
pipelines running on different threads.

Long steps walk their input in row batches of ``ExecutionConfig.batch_size``
and check the caller's cancellation event between batches.  A cancelled
step raises ``StepCancelled`` and returns nothing, so no partial Table can
ever reach the history log.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Iterator, List, Optional

from recon_engine.config import ExecutionConfig, MatchingConfig
from recon_engine.errors import ExecutionError, StepCancelled, StepError
from recon_engine.logging_setup import get_logger
from recon_engine.normalizer import AmountNormalizer, LabelNormalizer
from recon_engine.steps import Step
from recon_engine.synonym_mapper import SynonymMapper
from recon_engine.table import Table

logger = get_logger("executor")


@dataclass
class StepOutcome:
    """Result of a successful step execution."""

    table: Table
    diagnostics: List[str] = field(default_factory=list)
    duration_ms: float = 0.0


class StepContext:
    """Per-execution services handed to ``Step.apply``."""

    def __init__(
        self,
        step: Step,
        config: ExecutionConfig,
        matching: MatchingConfig,
        synonyms: SynonymMapper,
        labels: LabelNormalizer,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        self.step = step
        self.matching = matching
        self.synonyms = synonyms
        self.labels = labels
        self.amounts = AmountNormalizer(scale=config.amount_scale)
        self.diagnostics: List[str] = []
        self._batch_size = config.batch_size
        self._cancel = cancel

    def check_cancelled(self) -> None:
        if self._cancel is not None and self._cancel.is_set():
            raise StepCancelled("Cancelled before completion", step_kind=self.step.kind)

    def batches(self, total: int) -> Iterator[range]:
        """Yield row ranges, checking for cancellation before each one."""
        self.check_cancelled()
        for start in range(0, total, self._batch_size):
            if start:
                self.check_cancelled()
            yield range(start, min(start + self._batch_size, total))

    def diagnose(self, message: str) -> None:
        self.diagnostics.append(message)
        logger.info("%s: %s", self.step.kind, message)


class StepExecutor:
    """Apply steps to tables.

    Parameters
    ----------
    config:
        Batch size and amount scale.
    matching:
        Thresholds used by the resolve-columns step.
    synonyms:
        Column alias dictionary used by the resolve-columns step.
    """

    def __init__(
        self,
        config: Optional[ExecutionConfig] = None,
        matching: Optional[MatchingConfig] = None,
        synonyms: Optional[SynonymMapper] = None,
    ) -> None:
        self._config = config or ExecutionConfig()
        self._matching = matching or MatchingConfig()
        self._labels = LabelNormalizer()
        self._synonyms = synonyms or SynonymMapper(normalizer=self._labels)

    @property
    def config(self) -> ExecutionConfig:
        return self._config

    def execute(
        self,
        step: Step,
        table: Table,
        cancel: Optional[threading.Event] = None,
    ) -> StepOutcome:
        """Apply ``step`` to ``table``.

        Raises
        ------
        StepError
            ``SchemaError``, ``ValueTypeError``, ``StepConfigError``,
            ``StepCancelled``, or ``ExecutionError`` for anything else.
        """
        if not isinstance(step, Step):
            raise ExecutionError(f"Not a step: {step!r}")

        ctx = StepContext(
            step,
            self._config,
            self._matching,
            self._synonyms,
            self._labels,
            cancel=cancel,
        )
        started = time.perf_counter()
        try:
            ctx.check_cancelled()
            result = step.apply(table, ctx)
        except StepError as exc:
            if exc.step_kind is None:
                exc.step_kind = step.kind
            logger.warning("Step %s failed: %s", step.describe(), exc.cause)
            raise
        except (ArithmeticError, LookupError, TypeError, ValueError) as exc:
            logger.exception("Step %s failed unexpectedly", step.describe())
            raise ExecutionError(
                f"{type(exc).__name__}: {exc}", step_kind=step.kind
            ) from exc

        duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Executed %s — rows %d → %d, columns %d → %d (%.1f ms)",
            step.describe(),
            len(table),
            len(result),
            len(table.columns),
            len(result.columns),
            duration_ms,
        )
        return StepOutcome(table=result, diagnostics=ctx.diagnostics, duration_ms=duration_ms)
