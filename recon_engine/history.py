"""
History Log.

An append-only arena of Table snapshots with a movable cursor, giving linear
undo/redo without ever mutating a snapshot:

* entry 0 always holds the unmodified ingested Table;
* ``execute_step`` appends after the cursor, first discarding any inactive
  (reverted) tail;
* ``revert_to`` and ``redo`` only move the cursor (O(1), no recomputation);
* ``preview`` reads any entry without moving the cursor.

Snapshots are immutable ``Table`` values, so readers need no lock.  Writes
(append / cursor moves) are serialised by the owning ``Pipeline``.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from recon_engine.errors import OutOfRangeError
from recon_engine.executor import StepExecutor
from recon_engine.logging_setup import get_logger
from recon_engine.steps import Step
from recon_engine.table import Table

logger = get_logger("history")


@dataclass(frozen=True)
class HistoryEntry:
    """One committed version: the step that produced it and its result."""

    index: int
    step: Optional[Step]  # None for entry 0 (ingested input)
    table: Table
    diagnostics: Tuple[str, ...] = ()
    duration_ms: float = 0.0
    columns_added: Tuple[str, ...] = ()
    columns_removed: Tuple[str, ...] = ()
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def record_count(self) -> int:
        return len(self.table)

    def to_dict(self) -> dict:
        return {
            "index": self.index,
            "step": self.step.to_config() if self.step is not None else None,
            "record_count": self.record_count,
            "columns": list(self.table.columns),
            "columns_added": list(self.columns_added),
            "columns_removed": list(self.columns_removed),
            "diagnostics": list(self.diagnostics),
            "duration_ms": round(self.duration_ms, 3),
            "created_at": self.created_at.isoformat(),
        }


class HistoryLog:
    """Versioned record of one dataset side.

    Parameters
    ----------
    initial:
        The ingested Table; becomes entry 0.
    executor:
        Applies steps; a default one is created when omitted.
    """

    def __init__(self, initial: Table, executor: Optional[StepExecutor] = None) -> None:
        self._executor = executor or StepExecutor()
        self._entries: List[HistoryEntry] = [HistoryEntry(index=0, step=None, table=initial)]
        self._cursor = 0

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def tail(self) -> int:
        """Index of the last stored entry (active or not)."""
        return len(self._entries) - 1

    @property
    def at_tail(self) -> bool:
        return self._cursor == self.tail

    @property
    def can_redo(self) -> bool:
        return self._cursor < self.tail

    def __len__(self) -> int:
        return len(self._entries)

    def entries(self) -> Tuple[HistoryEntry, ...]:
        """Every stored entry, including the inactive (redo-able) tail."""
        return tuple(self._entries)

    def active_entries(self) -> Tuple[HistoryEntry, ...]:
        return tuple(self._entries[: self._cursor + 1])

    def entry(self, index: int) -> HistoryEntry:
        self._check_index(index)
        return self._entries[index]

    def current(self) -> Table:
        return self._entries[self._cursor].table

    def original(self) -> Table:
        return self._entries[0].table

    # ------------------------------------------------------------------ #
    # Operations
    # ------------------------------------------------------------------ #

    def execute_step(self, step: Step, cancel: Optional[threading.Event] = None) -> Table:
        """Run ``step`` on the current snapshot and append the result.

        Nothing is appended (and no inactive entry is discarded) if the
        step raises.
        """
        base = self.current()
        outcome = self._executor.execute(step, base, cancel=cancel)

        if not self.at_tail:
            dropped = self.tail - self._cursor
            del self._entries[self._cursor + 1:]
            logger.info("Discarded %d inactive entr%s after %d",
                        dropped, "y" if dropped == 1 else "ies", self._cursor)

        before = set(base.columns)
        after = set(outcome.table.columns)
        entry = HistoryEntry(
            index=self._cursor + 1,
            step=step,
            table=outcome.table,
            diagnostics=tuple(outcome.diagnostics),
            duration_ms=outcome.duration_ms,
            columns_added=tuple(c for c in outcome.table.columns if c not in before),
            columns_removed=tuple(c for c in base.columns if c not in after),
        )
        self._entries.append(entry)
        self._cursor = entry.index
        return entry.table

    def revert_to(self, index: int) -> Table:
        """Move the cursor to ``index`` and return that snapshot."""
        self._check_index(index)
        previous, self._cursor = self._cursor, index
        logger.info("Reverted from entry %d to entry %d", previous, index)
        return self._entries[index].table

    def redo(self) -> Table:
        """Re-activate the entry right after the cursor."""
        if not self.can_redo:
            raise OutOfRangeError("Nothing to redo")
        self._cursor += 1
        logger.info("Redo to entry %d", self._cursor)
        return self._entries[self._cursor].table

    def preview(self, index: int) -> Table:
        """Return the snapshot at ``index`` without moving the cursor."""
        self._check_index(index)
        return self._entries[index].table

    def discard_redo(self) -> None:
        """Forget the inactive tail (used when the configuration diverges)."""
        del self._entries[self._cursor + 1:]

    def _check_index(self, index: int) -> None:
        if isinstance(index, bool) or not isinstance(index, int):
            raise OutOfRangeError(f"History index must be an int, got {index!r}")
        if not 0 <= index <= self.tail:
            raise OutOfRangeError(
                f"History index {index} out of range 0..{self.tail}"
            )
