"""Cluster count quality control.

This module provides:

- Access to autoqc results (spatial filter, bam flagstats)
- Reconciliation of InterOp, spatial filter and BAM cluster counts

Example:
    >>> from clustercheck.qc import ClusterCountChecker, JsonQCStore
    >>> checker = ClusterCountChecker(
    ...     id_run=1234,
    ...     position=1,
    ...     interop_path="run/InterOp/TileMetricsOut.bin",
    ...     qc_path="run/archive/qc",
    ...     store=JsonQCStore(),
    ... )
    >>> checker.run_cluster_count_check()
"""

from clustercheck.qc.results import (
    BAM_FLAGSTATS,
    SPATIAL_FILTER,
    InMemoryQCStore,
    JsonQCStore,
    QCResult,
    QCResultError,
    QCResultStore,
    ResultCollection,
    lane_qc_path,
)
from clustercheck.qc.reconcile import (
    ClusterCountChecker,
    ClusterCountError,
    MissingClusterCountError,
    OutputCountMismatchError,
    ReconciliationResult,
    SpatialFilterCounts,
    SpatialFilterMismatchError,
    format_count,
    lane_cluster_counts,
    output_cluster_count,
    spatial_filter_counts,
)

__all__ = [
    # Results
    "BAM_FLAGSTATS",
    "SPATIAL_FILTER",
    "InMemoryQCStore",
    "JsonQCStore",
    "QCResult",
    "QCResultError",
    "QCResultStore",
    "ResultCollection",
    "lane_qc_path",
    # Reconciliation
    "ClusterCountChecker",
    "ClusterCountError",
    "MissingClusterCountError",
    "OutputCountMismatchError",
    "ReconciliationResult",
    "SpatialFilterCounts",
    "SpatialFilterMismatchError",
    "format_count",
    "lane_cluster_counts",
    "output_cluster_count",
    "spatial_filter_counts",
]
