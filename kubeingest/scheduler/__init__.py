"""Ingestion scheduling and delta computation.

Exports:
    IngestionScheduler  -- Supervisor plus one polling task per cluster.
    ClusterStatus       -- Per-cluster state exposed by ``status()``.
    compute_delta       -- Diff of two consecutive cycles of one cluster.
"""

from kubeingest.scheduler.delta import compute_delta
from kubeingest.scheduler.ingestion import Authorize, ClusterStatus, IngestionScheduler

__all__ = [
    "Authorize",
    "ClusterStatus",
    "IngestionScheduler",
    "compute_delta",
]
