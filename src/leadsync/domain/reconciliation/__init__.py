"""Tag reconciliation for pipeline-stage changes."""

from __future__ import annotations

from .delta import compute_tag_delta
from .engine import BulkSyncResult, ReconciliationEngine, StageChange, SyncOutcome

__all__ = [
    "BulkSyncResult",
    "ReconciliationEngine",
    "StageChange",
    "SyncOutcome",
    "compute_tag_delta",
]
