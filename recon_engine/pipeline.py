"""
Pipeline Orchestrator.

One ``Pipeline`` per dataset side.  It owns the configured step list, the
``HistoryLog`` of snapshots those steps produced, the key columns later
used for joining, and a small state machine::

    IDLE ──run──▶ EXECUTING ──ok──▶ EXECUTED
                      │
                      └──StepError──▶ FAILED   (cursor stays at last success)

    any state ──revert_to──▶ REVERTED   (EXECUTED when reverting to the last step)
    REVERTED ──add_step──▶ IDLE        (steps after the cursor are dropped)

Steps are numbered from 1: step ``n`` produces history entry ``n`` and
entry 0 is the ingested input.  ``revert_to(k)`` therefore shows the same
Table as re-running only steps ``1..k``.

Usage
-----
>>> from recon_engine.pipeline import Pipeline
>>> from recon_engine.table import Table
>>>
>>> pipe = Pipeline("ledger", Table.from_records(["Amt"], [["$10"]]))
>>> pipe.add_step({"kind": "rename-column", "from": "Amt", "to": "amount"})
>>> pipe.add_step({"kind": "normalize-amount", "column": "amount"})
>>> table = pipe.run()
"""

from __future__ import annotations

import threading
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from recon_engine.errors import PipelineStateError, StepError
from recon_engine.executor import StepExecutor
from recon_engine.history import HistoryEntry, HistoryLog
from recon_engine.logging_setup import get_logger
from recon_engine.steps import Step, build_step
from recon_engine.table import Table

logger = get_logger("pipeline")

StepLike = Union[Step, Mapping[str, Any]]


class PipelineStatus(str, Enum):
    IDLE = "idle"
    EXECUTING = "executing"
    EXECUTED = "executed"
    REVERTED = "reverted"
    FAILED = "failed"


class Pipeline:
    """Ordered step sequence plus its history for one dataset side.

    Parameters
    ----------
    name:
        Label used in logs and error messages (e.g. ``"ledger"``).
    table:
        The ingested Table; becomes history entry 0.
    key_columns:
        Columns the matching engine joins on once the pipeline is executed.
    executor:
        Shared ``StepExecutor``; a default one is created when omitted.
    steps:
        Initial step configuration.
    """

    def __init__(
        self,
        name: str,
        table: Table,
        key_columns: Sequence[str] = (),
        executor: Optional[StepExecutor] = None,
        steps: Optional[Sequence[StepLike]] = None,
    ) -> None:
        self.name = name
        self._log = HistoryLog(table, executor=executor)
        self._steps: List[Step] = []
        self._key_columns: Tuple[str, ...] = tuple(key_columns)
        self._status = PipelineStatus.IDLE
        self._last_error: Optional[StepError] = None
        self._run_lock = threading.Lock()

        for step in steps or ():
            self.add_step(step)

    # ------------------------------------------------------------------ #
    # State
    # ------------------------------------------------------------------ #

    @property
    def status(self) -> PipelineStatus:
        return self._status

    @property
    def last_error(self) -> Optional[StepError]:
        return self._last_error

    @property
    def history(self) -> HistoryLog:
        return self._log

    @property
    def cursor(self) -> int:
        return self._log.cursor

    @property
    def steps(self) -> Tuple[Step, ...]:
        return tuple(self._steps)

    @property
    def pending_steps(self) -> Tuple[Step, ...]:
        """Configured steps not reflected in the current snapshot."""
        return tuple(self._steps[self._log.cursor:])

    @property
    def is_ready(self) -> bool:
        """True when the pipeline can feed the matching engine."""
        return (
            self._status is PipelineStatus.EXECUTED
            and self._log.cursor == len(self._steps)
        )

    @property
    def key_columns(self) -> Tuple[str, ...]:
        return self._key_columns

    def set_key_columns(self, columns: Sequence[str]) -> None:
        self._key_columns = tuple(columns)

    # ------------------------------------------------------------------ #
    # Configuration
    # ------------------------------------------------------------------ #

    def add_step(self, step: StepLike) -> int:
        """Append a step; returns its step number.

        Adding a step while reverted branches from the cursor: configured
        steps after it are dropped along with their history entries.
        """
        self._guard("add a step")
        resolved = self._coerce(step)
        cursor = self._log.cursor
        if self._status is PipelineStatus.REVERTED and cursor < len(self._steps):
            dropped = len(self._steps) - cursor
            del self._steps[cursor:]
            self._log.discard_redo()
            logger.info("[%s] dropped %d reverted step(s) after entry %d", self.name, dropped, cursor)
        self._steps.append(resolved)
        if self._status in (PipelineStatus.EXECUTED, PipelineStatus.REVERTED):
            self._status = PipelineStatus.IDLE
        logger.info("[%s] step %d configured: %s", self.name, len(self._steps), resolved.describe())
        return len(self._steps)

    def replace_step(self, number: int, step: StepLike) -> None:
        """Swap step ``number`` for a new configuration.

        If that step was already executed the cursor moves back to just
        before it, so the next ``run`` re-executes from there.
        """
        self._guard("replace a step")
        self._check_number(number)
        self._steps[number - 1] = self._coerce(step)
        self._invalidate_from(number)

    def remove_step(self, number: int) -> Step:
        self._guard("remove a step")
        self._check_number(number)
        removed = self._steps.pop(number - 1)
        self._invalidate_from(number)
        return removed

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    def run(self, cancel: Optional[threading.Event] = None) -> Table:
        """Execute every pending step in order, stopping at the first failure.

        Raises
        ------
        StepError
            With ``step_index`` set to the failing step number.  The history
            up to the previous step stays valid and retrievable.
        """
        if not self._run_lock.acquire(blocking=False):
            raise PipelineStateError(f"Pipeline {self.name!r} is already executing")
        try:
            pending = self.pending_steps
            start = self._log.cursor
            if pending:
                logger.info("[%s] running %d step(s) from entry %d", self.name, len(pending), start)
            self._status = PipelineStatus.EXECUTING
            for offset, step in enumerate(pending):
                number = start + offset + 1
                try:
                    self._log.execute_step(step, cancel=cancel)
                except StepError as exc:
                    exc.at(number, step.kind)
                    self._status = PipelineStatus.FAILED
                    self._last_error = exc
                    logger.error("[%s] %s", self.name, exc)
                    raise
                except Exception:
                    self._status = PipelineStatus.FAILED
                    logger.exception("[%s] step %d (%s) failed", self.name, number, step.kind)
                    raise
            self._status = PipelineStatus.EXECUTED
            self._last_error = None
            logger.info(
                "[%s] executed — %d rows, %d columns",
                self.name,
                len(self._log.current()),
                len(self._log.current().columns),
            )
            return self._log.current()
        finally:
            self._run_lock.release()

    def current_table(self) -> Table:
        return self._log.current()

    def revert_to(self, index: int) -> Table:
        """Move the cursor to history ``index`` (0 = ingested input)."""
        self._guard("revert")
        table = self._log.revert_to(index)
        if index == len(self._steps):
            self._status = PipelineStatus.EXECUTED
        else:
            self._status = PipelineStatus.REVERTED
        return table

    def redo(self) -> Table:
        """Re-activate the next reverted entry without recomputing it."""
        self._guard("redo")
        table = self._log.redo()
        if self._log.cursor == len(self._steps):
            self._status = PipelineStatus.EXECUTED
        return table

    def preview(self, index: int) -> Table:
        """Read the snapshot at ``index`` without moving the cursor."""
        return self._log.preview(index)

    # ------------------------------------------------------------------ #
    # Reporting
    # ------------------------------------------------------------------ #

    def timeline(self) -> List[Dict[str, Any]]:
        """Per-step status for display: executed, current, reverted, or draft."""
        entries = self._log.entries()
        cursor = self._log.cursor
        out: List[Dict[str, Any]] = []
        for number, step in enumerate(self._steps, start=1):
            item: Dict[str, Any] = {"number": number, "step": step.to_config()}
            if number <= cursor:
                item["status"] = "current" if number == cursor else "completed"
            elif number < len(entries):
                item["status"] = "reverted"
            else:
                item["status"] = "draft"
            if number < len(entries):
                entry: HistoryEntry = entries[number]
                item.update(
                    record_count=entry.record_count,
                    columns_added=list(entry.columns_added),
                    duration_ms=round(entry.duration_ms, 3),
                    diagnostics=list(entry.diagnostics),
                )
            out.append(item)
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "status": self._status.value,
            "cursor": self._log.cursor,
            "key_columns": list(self._key_columns),
            "error": str(self._last_error) if self._last_error else None,
            "steps": self.timeline(),
        }

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    @staticmethod
    def _coerce(step: StepLike) -> Step:
        if isinstance(step, Step):
            return step
        return build_step(step)

    def _guard(self, action: str) -> None:
        if self._run_lock.locked():
            raise PipelineStateError(f"Cannot {action} while pipeline {self.name!r} is executing")

    def _check_number(self, number: int) -> None:
        if not 1 <= number <= len(self._steps):
            raise PipelineStateError(
                f"Step number {number} out of range 1..{len(self._steps)}"
            )

    def _invalidate_from(self, number: int) -> None:
        if number <= self._log.cursor:
            self._log.revert_to(number - 1)
            self._status = PipelineStatus.REVERTED
        self._log.discard_redo()
        if self._status is PipelineStatus.EXECUTED:
            self._status = PipelineStatus.IDLE

    def __repr__(self) -> str:
        return (
            f"Pipeline(name={self.name!r}, status={self._status.value}, "
            f"cursor={self._log.cursor}, steps={len(self._steps)})"
        )
