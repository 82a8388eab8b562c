"""
Centralised logging configuration for the reconciliation engine.

Every module obtains its logger via ``get_logger(<module name>)``.
``Reconciler`` calls ``configure_logging`` once at startup so that all
downstream loggers share the same handler, format, and level.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional


_CONFIGURED = False

LOG_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)-28s | %(threadName)-12s | %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
) -> None:
    """Set up the ``recon_engine`` namespace logger.

    Parameters
    ----------
    level:
        Minimum severity to emit.
    log_file:
        If provided, a ``FileHandler`` is added alongside the console handler.
    """
    global _CONFIGURED  # noqa: PLW0603
    if _CONFIGURED:
        logging.getLogger("recon_engine").setLevel(level)
        return

    root = logging.getLogger("recon_engine")
    root.setLevel(level)
    root.propagate = False

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(formatter)
        root.addHandler(fh)

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under the ``recon_engine`` namespace."""
    return logging.getLogger(f"recon_engine.{name}")
