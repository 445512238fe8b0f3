"""Cluster count reconciliation for one lane of a run.

This module checks that the cluster counts reported at each stage of
run processing agree with each other:

1. Raw and pass-filter (PF) cluster counts from the tile metrics InterOp
   file.
2. Processed and failed counts from the spatial filter, if it was run.
3. Total reads in the final BAM output, from ``bam_flagstats`` results.

For paired-read runs the spatial filter and BAM counts are per read, so
they are halved before comparison. Each comparison accepts a match with
either of two reference counts; any other outcome is fatal.

Example:
    >>> from clustercheck.qc import ClusterCountChecker, JsonQCStore
    >>> checker = ClusterCountChecker(
    ...     id_run=1234,
    ...     position=1,
    ...     interop_path="run/InterOp/TileMetricsOut.bin",
    ...     qc_path="run/archive/qc",
    ...     store=JsonQCStore(),
    ...     paired_read=True,
    ... )
    >>> result = checker.run_cluster_count_check()
    >>> result.matched
    'pf'
"""

from __future__ import annotations

import logging
from pathlib import Path

import attrs

from clustercheck.io.interop import (
    DEFAULT_BLOCK_RECORDS,
    LaneClusterStats,
    read_tile_metrics,
)
from clustercheck.qc.results import (
    BAM_FLAGSTATS,
    SPATIAL_FILTER,
    QCResultError,
    QCResultStore,
    lane_qc_path,
)
from clustercheck.utils.logging import Timer

logger = logging.getLogger(__name__)

Count = int | float


# =============================================================================
# Exceptions
# =============================================================================


class ClusterCountError(RuntimeError):
    """Base class for cluster count check failures."""

    pass


class MissingClusterCountError(ClusterCountError):
    """Raised when the InterOp file has no counts for the lane."""

    def __init__(self, position: int, lanes: list[int]) -> None:
        self.position = position
        self.lanes = lanes
        super().__init__(
            f"Unable to determine a raw and/or pf cluster count for lane {position} "
            f"(lanes in InterOp: {lanes or 'none'})"
        )


class SpatialFilterMismatchError(ClusterCountError):
    """Raised when the spatial filter processed count matches neither raw nor PF."""

    def __init__(self, processed: Count, raw: Count, pf: Count) -> None:
        self.processed = processed
        self.raw = raw
        self.pf = pf
        super().__init__(
            f"Spatial filter processed count ({format_count(processed)}) matches "
            f"neither raw ({format_count(raw)}) or PF ({format_count(pf)}) clusters"
        )


class OutputCountMismatchError(ClusterCountError):
    """Raised when the BAM total matches neither the PF nor the raw count."""

    def __init__(self, pf: Count, raw: Count, actual: Count) -> None:
        self.pf = pf
        self.raw = raw
        self.actual = actual
        super().__init__(
            "Cluster count in bam files not as expected\n"
            f"\tExpected: {format_count(pf)} or {format_count(raw)}\n"
            f"\tActual: {format_count(actual)}"
        )


def format_count(value: Count) -> str:
    """Format a count, dropping the fraction of whole floats."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# =============================================================================
# Data Structures
# =============================================================================


@attrs.define(frozen=True)
class SpatialFilterCounts:
    """Spatial filter counts for one lane.

    Attributes:
        processed: Reads the spatial filter processed.
        failed: Reads the spatial filter rejected.
    """

    processed: Count
    failed: Count

    def halved(self) -> SpatialFilterCounts:
        return SpatialFilterCounts(processed=self.processed / 2, failed=self.failed / 2)


@attrs.define(frozen=True)
class ReconciliationResult:
    """Outcome of a successful cluster count check.

    Attributes:
        id_run: Run checked.
        position: Lane checked.
        raw_cluster_count: Raw count from the InterOp file.
        pf_cluster_count: PF count from the InterOp file.
        spatial_filter: Spatial filter counts after any halving, or None.
        expected_raw: Raw reference count after spatial filter adjustment.
        expected_pf: PF reference count after spatial filter adjustment.
        output_cluster_count: BAM cluster count after any halving.
        matched: Which reference the BAM count matched, "pf" or "raw".
    """

    id_run: int
    position: int
    raw_cluster_count: int
    pf_cluster_count: int
    spatial_filter: SpatialFilterCounts | None
    expected_raw: Count
    expected_pf: Count
    output_cluster_count: Count
    matched: str

    def to_dict(self) -> dict:
        return attrs.asdict(self)


# =============================================================================
# Count Retrieval
# =============================================================================


def lane_cluster_counts(
    lanes: dict[int, LaneClusterStats], position: int
) -> LaneClusterStats:
    """Return the InterOp counts for ``position``.

    Lanes lacking either a raw or a pass-filter count are never in the map.

    Raises:
        MissingClusterCountError: If the lane is not in the map.
    """
    try:
        return lanes[position]
    except KeyError:
        raise MissingClusterCountError(position, sorted(lanes)) from None


def spatial_filter_counts(
    store: QCResultStore, qc_path: Path | str, position: int
) -> SpatialFilterCounts | None:
    """Look up the spatial filter result for a lane.

    Returns:
        SpatialFilterCounts, or None if no spatial filter result exists.

    Raises:
        QCResultError: If there is more than one spatial filter result
            for the lane.
    """
    collection = store.load_from_path(qc_path)
    if collection.is_empty():
        logger.warning(
            f"There are no qc results available for this lane {position} in here: {qc_path}"
        )

    results = collection.slice("position", position).slice("class_name", SPATIAL_FILTER).results
    if not results:
        logger.warning(
            f"There is no spatial_filter result available for this lane {position} "
            f"in here: {qc_path}"
        )
        return None
    if len(results) > 1:
        raise QCResultError(
            f"More than one spatial_filter result available for this lane {position} "
            f"in here: {qc_path}"
        )

    result = results[0]
    processed = result.num_total_reads
    if processed is None:
        return None
    failed = result.num_spatial_filter_fail_reads
    return SpatialFilterCounts(processed=processed, failed=failed or 0)


def output_cluster_count(
    store: QCResultStore,
    qc_path: Path | str,
    id_run: int,
    position: int,
    plex: bool = False,
) -> int | float:
    """Sum ``total_reads`` over the lane's bam_flagstats results for this run.

    For a multiplexed lane (``plex``) the per-plex results are read from
    the lane-level QC directory. Results of other runs are ignored.
    """
    if plex:
        qc_path = lane_qc_path(qc_path, position)

    collection = store.load_from_path(qc_path)
    if collection.is_empty():
        logger.info(f"There is no auto qc results available here: {qc_path}")
        return 0

    flagstats = collection.slice("position", position).slice("class_name", BAM_FLAGSTATS)
    if flagstats.is_empty():
        logger.info(f"There is no bam flagstats available for this lane {position} in here: {qc_path}")
        return 0

    total: int | float = 0
    for result in flagstats:
        if result.id_run != id_run:
            logger.debug(f"Skipping bam_flagstats of run {result.id_run}")
            continue
        total += result.total_reads
    return total


# =============================================================================
# Checker
# =============================================================================


@attrs.define
class ClusterCountChecker:
    """Check cluster count consistency for one lane of a run.

    Attributes:
        id_run: Run identifier.
        position: Lane number.
        interop_path: Path to TileMetricsOut.bin.
        qc_path: Directory holding autoqc results.
        store: QC result store used to load results.
        paired_read: Whether the run has two reads per cluster.
        multiplexed: Whether the lane is indexed; BAM counts are then
            read from the lane-level QC directory.
        block_records: InterOp records decoded per read.
    """

    id_run: int
    position: int
    interop_path: Path | str
    qc_path: Path | str
    store: QCResultStore
    paired_read: bool = False
    multiplexed: bool = False
    block_records: int = DEFAULT_BLOCK_RECORDS

    def interop_cluster_counts(self) -> LaneClusterStats:
        with Timer(f"Decoding {self.interop_path}", logger):
            lanes = read_tile_metrics(self.interop_path, block_records=self.block_records)
        return lane_cluster_counts(lanes, self.position)

    def run_cluster_count_check(self) -> ReconciliationResult:
        """Run the check.

        Returns:
            ReconciliationResult describing the matched counts.

        Raises:
            InterOpError: If the InterOp file cannot be read.
            InterOpFormatError: If the InterOp file version is unknown.
            MissingClusterCountError: If the lane is not in the InterOp file.
            QCResultError: If the spatial filter results are ambiguous.
            SpatialFilterMismatchError: If the spatial filter count is inconsistent.
            OutputCountMismatchError: If the BAM count is inconsistent.
        """
        logger.info(f"Checking cluster counts are consistent for run {self.id_run} lane {self.position}")

        stats = self.interop_cluster_counts()
        max_count: Count = stats.raw_cluster_count
        pass_count: Count = stats.pf_cluster_count
        logger.info(f"Raw cluster count: {max_count}")
        logger.info(f"PF cluster count: {pass_count}")

        spatial = spatial_filter_counts(self.store, self.qc_path, self.position)
        if spatial is not None:
            if self.paired_read:
                spatial = spatial.halved()
            logger.info(
                f"Spatial filter applied to {format_count(spatial.processed)} clusters "
                f"failing {format_count(spatial.failed)}"
            )
            if pass_count != spatial.processed and max_count != spatial.processed:
                raise SpatialFilterMismatchError(spatial.processed, max_count, pass_count)
            max_count = spatial.processed
            pass_count = pass_count - spatial.failed
            if spatial.failed:
                logger.warning(f"Passed cluster count drops to {format_count(pass_count)}")
        else:
            logger.info("Spatial filter not applied (well, not recorded anyway)")

        total = output_cluster_count(
            self.store,
            self.qc_path,
            self.id_run,
            self.position,
            plex=self.multiplexed,
        )
        if self.paired_read:
            total = total / 2
        logger.info(f"Actual cluster count in bam files: {format_count(total)}")

        if pass_count == total:
            matched = "pf"
        elif max_count == total:
            matched = "raw"
        else:
            raise OutputCountMismatchError(pass_count, max_count, total)
        logger.info("Bam files have correct cluster count")

        return ReconciliationResult(
            id_run=self.id_run,
            position=self.position,
            raw_cluster_count=stats.raw_cluster_count,
            pf_cluster_count=stats.pf_cluster_count,
            spatial_filter=spatial,
            expected_raw=max_count,
            expected_pf=pass_count,
            output_cluster_count=total,
            matched=matched,
        )
