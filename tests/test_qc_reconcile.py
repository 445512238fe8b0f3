"""Tests for clustercheck.qc.reconcile module.

Tests cover:
- Spatial filter and bam flagstats count retrieval
- Paired-read halving and its order relative to the comparisons
- Acceptance and rejection at both decision points
- End-to-end checks against InterOp and JSON result files
"""

import pytest

from clustercheck.io.interop import InterOpFormatError, LaneClusterStats
from clustercheck.qc.reconcile import (
    ClusterCountChecker,
    ClusterCountError,
    MissingClusterCountError,
    OutputCountMismatchError,
    SpatialFilterCounts,
    SpatialFilterMismatchError,
    format_count,
    lane_cluster_counts,
    output_cluster_count,
    spatial_filter_counts,
)
from clustercheck.qc.results import InMemoryQCStore, JsonQCStore, QCResult, QCResultError

from conftest import bam_flagstats_json, encode_v2, spatial_filter_json

QC_PATH = "/runs/1234/archive/qc"


# =============================================================================
# Helpers
# =============================================================================


def spatial_filter(position: int, processed, failed) -> QCResult:
    return QCResult(
        class_name="spatial_filter",
        id_run=1234,
        position=position,
        data={"num_total_reads": processed, "num_spatial_filter_fail_reads": failed},
    )


def flagstats(position: int, total_reads, id_run: int = 1234, tag_index=None) -> QCResult:
    return QCResult(
        class_name="bam_flagstats",
        id_run=id_run,
        position=position,
        tag_index=tag_index,
        data={"total_reads": total_reads},
    )


def make_checker(
    monkeypatch,
    raw: int,
    pf: int,
    store: InMemoryQCStore,
    position: int = 1,
    paired_read: bool = False,
    multiplexed: bool = False,
) -> ClusterCountChecker:
    """Build a checker whose InterOp counts are fixed."""
    monkeypatch.setattr(
        "clustercheck.qc.reconcile.read_tile_metrics",
        lambda *args, **kwargs: {position: LaneClusterStats(raw, pf)},
    )
    return ClusterCountChecker(
        id_run=1234,
        position=position,
        interop_path="unused.bin",
        qc_path=QC_PATH,
        store=store,
        paired_read=paired_read,
        multiplexed=multiplexed,
    )


# =============================================================================
# Retrieval Tests
# =============================================================================


class TestLaneClusterCounts:
    """Tests for lane_cluster_counts function."""

    def test_present(self):
        stats = LaneClusterStats(1000, 900)
        assert lane_cluster_counts({1: stats}, 1) is stats

    def test_absent(self):
        with pytest.raises(MissingClusterCountError, match="Unable to determine") as exc:
            lane_cluster_counts({1: LaneClusterStats(1, 1)}, 4)
        assert exc.value.position == 4
        assert exc.value.lanes == [1]

    def test_empty_map(self):
        with pytest.raises(MissingClusterCountError):
            lane_cluster_counts({}, 1)


class TestSpatialFilterCounts:
    """Tests for spatial_filter_counts function."""

    def test_found(self):
        store = InMemoryQCStore()
        store.add(QC_PATH, spatial_filter(1, 2000, 10), spatial_filter(2, 5, 5))

        assert spatial_filter_counts(store, QC_PATH, 1) == SpatialFilterCounts(2000, 10)

    def test_absent(self, caplog):
        store = InMemoryQCStore()
        store.add(QC_PATH, flagstats(1, 100))

        with caplog.at_level("WARNING", logger="clustercheck"):
            assert spatial_filter_counts(store, QC_PATH, 1) is None
        assert "no spatial_filter result" in caplog.text

    def test_empty_collection(self, caplog):
        with caplog.at_level("WARNING", logger="clustercheck"):
            assert spatial_filter_counts(InMemoryQCStore(), QC_PATH, 1) is None
        assert "no qc results available" in caplog.text

    def test_more_than_one(self):
        store = InMemoryQCStore()
        store.add(QC_PATH, spatial_filter(1, 10, 0), spatial_filter(1, 10, 0))

        with pytest.raises(QCResultError, match="More than one spatial_filter"):
            spatial_filter_counts(store, QC_PATH, 1)

    def test_missing_failed_count_is_zero(self):
        store = InMemoryQCStore()
        store.add(QC_PATH, spatial_filter(1, 10, None))

        assert spatial_filter_counts(store, QC_PATH, 1) == SpatialFilterCounts(10, 0)


class TestOutputClusterCount:
    """Tests for output_cluster_count function."""

    def test_sums_matching_run(self):
        store = InMemoryQCStore()
        store.add(QC_PATH, flagstats(1, 600), flagstats(1, 300), flagstats(2, 999))

        assert output_cluster_count(store, QC_PATH, 1234, 1) == 900

    def test_ignores_other_runs(self):
        store = InMemoryQCStore()
        store.add(QC_PATH, flagstats(1, 600), flagstats(1, 5000, id_run=999))

        assert output_cluster_count(store, QC_PATH, 1234, 1) == 600

    def test_plex_reads_lane_directory(self):
        store = InMemoryQCStore()
        store.add(QC_PATH, flagstats(3, 1))
        store.add(
            "/runs/1234/archive/lane3/qc",
            flagstats(3, 400, tag_index=1),
            flagstats(3, 450, tag_index=2),
            flagstats(3, 50, tag_index=0),
            flagstats(3, 7777, id_run=4321, tag_index=1),
        )

        assert output_cluster_count(store, QC_PATH, 1234, 3, plex=True) == 900

    def test_empty_is_zero(self):
        assert output_cluster_count(InMemoryQCStore(), QC_PATH, 1234, 1) == 0

    def test_no_flagstats_is_zero(self):
        store = InMemoryQCStore()
        store.add(QC_PATH, spatial_filter(1, 10, 0))
        assert output_cluster_count(store, QC_PATH, 1234, 1) == 0


# =============================================================================
# Checker Tests
# =============================================================================


class TestClusterCountCheckerUnpaired:
    """Tests for unpaired runs without spatial filter."""

    def test_bam_matches_pf(self, monkeypatch):
        store = InMemoryQCStore()
        store.add(QC_PATH, flagstats(1, 900))

        result = make_checker(monkeypatch, 1000, 900, store).run_cluster_count_check()

        assert result.matched == "pf"
        assert result.output_cluster_count == 900
        assert result.spatial_filter is None
        assert result.expected_raw == 1000
        assert result.expected_pf == 900

    def test_bam_matches_raw(self, monkeypatch):
        store = InMemoryQCStore()
        store.add(QC_PATH, flagstats(1, 1000))

        result = make_checker(monkeypatch, 1000, 900, store).run_cluster_count_check()

        assert result.matched == "raw"

    def test_bam_matches_neither(self, monkeypatch):
        store = InMemoryQCStore()
        store.add(QC_PATH, flagstats(1, 850))

        with pytest.raises(OutputCountMismatchError) as exc:
            make_checker(monkeypatch, 1000, 900, store).run_cluster_count_check()

        assert (exc.value.pf, exc.value.raw, exc.value.actual) == (900, 1000, 850)
        message = str(exc.value)
        assert "900" in message and "1000" in message and "850" in message

    def test_no_bam_results_fails(self, monkeypatch):
        with pytest.raises(OutputCountMismatchError) as exc:
            make_checker(monkeypatch, 1000, 900, InMemoryQCStore()).run_cluster_count_check()
        assert exc.value.actual == 0

    def test_missing_lane(self, monkeypatch):
        checker = make_checker(monkeypatch, 1000, 900, InMemoryQCStore())
        checker.position = 2

        with pytest.raises(MissingClusterCountError):
            checker.run_cluster_count_check()

    def test_errors_share_base_class(self, monkeypatch):
        with pytest.raises(ClusterCountError):
            make_checker(monkeypatch, 1000, 900, InMemoryQCStore()).run_cluster_count_check()


class TestClusterCountCheckerPaired:
    """Tests for paired-read halving."""

    def test_bam_total_halved(self, monkeypatch):
        store = InMemoryQCStore()
        store.add(QC_PATH, flagstats(1, 1800))

        result = make_checker(
            monkeypatch, 1000, 900, store, paired_read=True
        ).run_cluster_count_check()

        assert result.output_cluster_count == 900
        assert result.matched == "pf"

    def test_unhalved_bam_total_fails(self, monkeypatch):
        store = InMemoryQCStore()
        store.add(QC_PATH, flagstats(1, 900))

        with pytest.raises(OutputCountMismatchError) as exc:
            make_checker(monkeypatch, 1000, 900, store, paired_read=True).run_cluster_count_check()
        assert exc.value.actual == 450

    def test_spatial_filter_halved_before_comparison(self, monkeypatch):
        # Per-read spatial filter counts: 2000 processed (= 2 x raw), 200 failed
        store = InMemoryQCStore()
        store.add(QC_PATH, spatial_filter(1, 2000, 200), flagstats(1, 1600))

        result = make_checker(
            monkeypatch, 1000, 900, store, paired_read=True
        ).run_cluster_count_check()

        assert result.spatial_filter == SpatialFilterCounts(1000, 100)
        # raw := processed, then pf := pf - failed
        assert result.expected_raw == 1000
        assert result.expected_pf == 800
        assert result.output_cluster_count == 800
        assert result.matched == "pf"

    def test_spatial_filter_not_halved_when_unpaired(self, monkeypatch):
        store = InMemoryQCStore()
        store.add(QC_PATH, spatial_filter(1, 2000, 200), flagstats(1, 1600))

        with pytest.raises(SpatialFilterMismatchError) as exc:
            make_checker(monkeypatch, 1000, 900, store).run_cluster_count_check()
        assert (exc.value.processed, exc.value.raw, exc.value.pf) == (2000, 1000, 900)

    def test_odd_counts_not_rounded(self, monkeypatch):
        store = InMemoryQCStore()
        store.add(QC_PATH, spatial_filter(1, 2001, 1), flagstats(1, 1999))

        with pytest.raises(SpatialFilterMismatchError) as exc:
            make_checker(monkeypatch, 1000, 900, store, paired_read=True).run_cluster_count_check()
        assert exc.value.processed == 1000.5


class TestClusterCountCheckerSpatialFilter:
    """Tests for the spatial filter decision point."""

    def test_processed_matches_pf(self, monkeypatch):
        # Spatial filter ran on PF clusters only
        store = InMemoryQCStore()
        store.add(QC_PATH, spatial_filter(1, 900, 50), flagstats(1, 850))

        result = make_checker(monkeypatch, 1000, 900, store).run_cluster_count_check()

        # raw is reset to the processed count, pf drops by the failed count
        assert result.expected_raw == 900
        assert result.expected_pf == 850
        assert result.matched == "pf"

    def test_processed_matches_raw(self, monkeypatch):
        store = InMemoryQCStore()
        store.add(QC_PATH, spatial_filter(1, 1000, 0), flagstats(1, 1000))

        result = make_checker(monkeypatch, 1000, 900, store).run_cluster_count_check()

        assert result.expected_raw == 1000
        assert result.expected_pf == 900
        assert result.matched == "raw"

    def test_bam_compared_with_adjusted_counts(self, monkeypatch):
        # InterOp pf (900) no longer accepted once failed reads are removed
        store = InMemoryQCStore()
        store.add(QC_PATH, spatial_filter(1, 900, 50), flagstats(1, 900))

        result = make_checker(monkeypatch, 1000, 900, store).run_cluster_count_check()
        assert result.matched == "raw"

        store = InMemoryQCStore()
        store.add(QC_PATH, spatial_filter(1, 900, 50), flagstats(1, 1000))
        with pytest.raises(OutputCountMismatchError) as exc:
            make_checker(monkeypatch, 1000, 900, store).run_cluster_count_check()
        assert (exc.value.pf, exc.value.raw, exc.value.actual) == (850, 900, 1000)

    def test_processed_matches_neither(self, monkeypatch):
        store = InMemoryQCStore()
        store.add(QC_PATH, spatial_filter(1, 950, 0), flagstats(1, 900))

        with pytest.raises(SpatialFilterMismatchError, match="matches neither"):
            make_checker(monkeypatch, 1000, 900, store).run_cluster_count_check()

    def test_failed_reads_logged(self, monkeypatch, caplog):
        store = InMemoryQCStore()
        store.add(QC_PATH, spatial_filter(1, 1000, 100), flagstats(1, 800))

        with caplog.at_level("INFO", logger="clustercheck"):
            make_checker(monkeypatch, 1000, 900, store).run_cluster_count_check()
        assert "Passed cluster count drops to 800" in caplog.text


class TestClusterCountCheckerMultiplexed:
    """Tests for multiplexed lanes."""

    def test_plex_results_summed_for_run(self, monkeypatch):
        store = InMemoryQCStore()
        store.add(QC_PATH, flagstats(2, 12345))
        store.add(
            "/runs/1234/archive/lane2/qc",
            flagstats(2, 1000, tag_index=1),
            flagstats(2, 800, tag_index=2),
            flagstats(2, 5000, id_run=1, tag_index=1),
        )

        result = make_checker(
            monkeypatch, 1000, 900, store, position=2, paired_read=True, multiplexed=True
        ).run_cluster_count_check()

        assert result.output_cluster_count == 900
        assert result.matched == "pf"


# =============================================================================
# End-to-end Tests
# =============================================================================


class TestEndToEnd:
    """Checks against files on disk."""

    def test_v2_file_and_json_results(self, tmp_path, v2_file, write_qc):
        qc_dir = write_qc(
            tmp_path / "archive" / "qc",
            [
                spatial_filter_json(position=2, processed=4000, failed=0),
                bam_flagstats_json(position=2, total_reads=3000),
                bam_flagstats_json(position=2, total_reads=8, id_run=999),
            ],
        )
        checker = ClusterCountChecker(
            id_run=1234,
            position=2,
            interop_path=v2_file,
            qc_path=qc_dir,
            store=JsonQCStore(),
            paired_read=True,
        )

        result = checker.run_cluster_count_check()

        assert result.raw_cluster_count == 2000
        assert result.pf_cluster_count == 1500
        assert result.matched == "pf"

    def test_lane_without_raw_count_fails(self, write_interop):
        path = write_interop(encode_v2([(1, 1101, 103, 900.0)]))
        store = InMemoryQCStore()
        store.add(QC_PATH, flagstats(1, 900))
        checker = ClusterCountChecker(
            id_run=1234,
            position=1,
            interop_path=path,
            qc_path=QC_PATH,
            store=store,
        )

        with pytest.raises(MissingClusterCountError, match="lane 1"):
            checker.run_cluster_count_check()

    def test_lane_without_pf_count_fails(self, write_interop):
        path = write_interop(encode_v2([(2, 1101, 102, 900.0), (2, 1102, 102, 100.0)]))
        store = InMemoryQCStore()
        store.add(QC_PATH, flagstats(2, 1000))
        checker = ClusterCountChecker(
            id_run=1234,
            position=2,
            interop_path=path,
            qc_path=QC_PATH,
            store=store,
        )

        with pytest.raises(MissingClusterCountError):
            checker.run_cluster_count_check()

    def test_unknown_interop_version(self, write_interop):
        path = write_interop(b"\x63\x0a" + encode_v2([(1, 1, 102, 1.0)])[2:])
        checker = ClusterCountChecker(
            id_run=1234,
            position=1,
            interop_path=path,
            qc_path=QC_PATH,
            store=InMemoryQCStore(),
        )

        with pytest.raises(InterOpFormatError):
            checker.run_cluster_count_check()


class TestFormatCount:
    """Tests for format_count function."""

    def test_whole_float(self):
        assert format_count(1000.0) == "1000"

    def test_half(self):
        assert format_count(1000.5) == "1000.5"

    def test_int(self):
        assert format_count(7) == "7"
