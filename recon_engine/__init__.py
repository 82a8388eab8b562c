"""
Reconciliation Engine — ledger vs. settlement matching.

Normalises two tabular exports through user-configured, undoable step
pipelines, joins them on key columns, and classifies every numeric
difference between matched rows (fee errors, rate discrepancies, …).

Every transformation is deterministic and every snapshot is kept, so any
intermediate version can be previewed or restored without recomputation.
"""

__version__ = "1.0.0"

from recon_engine.pipeline import Pipeline, PipelineStatus  # noqa: F401
from recon_engine.reconciler import Reconciler  # noqa: F401
from recon_engine.table import Table  # noqa: F401
