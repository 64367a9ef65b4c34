"""
Reconciliation package: settlement classification, the engine that
owns every write, and per-cycle aggregation.
"""

from mandate_tracker.reconciliation.classifier import (
    classify,
    is_paid_this_cycle,
    is_skipped_this_cycle,
)
from mandate_tracker.reconciliation.engine import ReconciliationEngine
from mandate_tracker.reconciliation.reporter import aggregate, partition

__all__ = [
    "ReconciliationEngine",
    "aggregate",
    "classify",
    "is_paid_this_cycle",
    "is_skipped_this_cycle",
    "partition",
]
