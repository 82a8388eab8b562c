"""
Exception hierarchy for the reconciliation engine.

Every step failure carries the index of the step in its pipeline (once
known) and the step kind, so a caller can tell the user *where* a
pipeline stopped as well as *why*.
"""

from __future__ import annotations

from typing import Optional


class ReconError(Exception):
    """Base class for every error raised by ``recon_engine``."""


# ---------------------------------------------------------------------------
# Step execution
# ---------------------------------------------------------------------------

class StepError(ReconError):
    """A step could not be applied to its input Table."""

    def __init__(
        self,
        cause: str,
        *,
        step_kind: Optional[str] = None,
        step_index: Optional[int] = None,
    ) -> None:
        self.cause = cause
        self.step_kind = step_kind
        self.step_index = step_index
        super().__init__(cause)

    def at(self, step_index: int, step_kind: Optional[str] = None) -> "StepError":
        """Attach pipeline position information and return ``self``."""
        self.step_index = step_index
        if step_kind is not None and self.step_kind is None:
            self.step_kind = step_kind
        return self

    def __str__(self) -> str:
        where = []
        if self.step_index is not None:
            where.append(f"step {self.step_index}")
        if self.step_kind is not None:
            where.append(self.step_kind)
        if where:
            return f"[{' '.join(where)}] {self.cause}"
        return self.cause


class SchemaError(StepError):
    """A referenced column is absent, or a new column name is already taken."""


class ValueTypeError(StepError, TypeError):
    """A cell value cannot be coerced to the type an operation expects."""


class StepConfigError(StepError, ValueError):
    """Step parameters are malformed, missing, or unknown."""


class ExecutionError(StepError):
    """Uncategorised failure while applying a step."""


class StepCancelled(StepError):
    """The cancellation signal was set between two row batches."""


# ---------------------------------------------------------------------------
# History / pipeline
# ---------------------------------------------------------------------------

class OutOfRangeError(ReconError, IndexError):
    """A history index does not address an existing entry."""


class PipelineStateError(ReconError):
    """An operation is not allowed in the pipeline's current state."""


# ---------------------------------------------------------------------------
# Matching
# ---------------------------------------------------------------------------

class MatchingConfigError(ReconError, ValueError):
    """The join cannot run: key columns are missing or not configured."""


class AmbiguousKeyError(ReconError):
    """A join key maps to several rows and ambiguity was configured as fatal."""


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

class RuleConfigError(ReconError, ValueError):
    """A classification rule is malformed."""
