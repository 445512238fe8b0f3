"""Pytest configuration and shared fixtures for clustercheck tests.

Fixtures are organized by category:

- InterOp fixtures: Write tile metrics files in either format version
- QC fixtures: Write autoqc JSON results
- Run folder fixtures: Assemble a run folder with RunInfo.xml
"""

import json
import struct
from collections.abc import Callable, Iterable
from pathlib import Path

import pytest


# =============================================================================
# InterOp Encoding
# =============================================================================

V2_RECORD_LENGTH = 10
V3_RECORD_LENGTH = 15


def encode_v2(records: Iterable[tuple[int, int, int, float]], record_length: int = V2_RECORD_LENGTH) -> bytes:
    """Encode version 2 records of (lane, tile, code, value)."""
    data = struct.pack("<BB", 2, record_length)
    for lane, tile, code, value in records:
        record = struct.pack("<HHHf", lane, tile, code, value)
        data += record.ljust(record_length, b"\x00")
    return data


def encode_v3(
    records: Iterable[tuple[int, int, int, float, float]],
    area: float = 0.5,
    record_length: int = V3_RECORD_LENGTH,
) -> bytes:
    """Encode version 3 records of (lane, tile, code, count, count_pf)."""
    data = struct.pack("<BBf", 3, record_length, area)
    for lane, tile, code, count, count_pf in records:
        record = struct.pack("<HIB", lane, tile, code) + struct.pack("<ff", count, count_pf)
        data += record.ljust(record_length, b"\x00")
    return data


@pytest.fixture
def v2_records() -> list[tuple[int, int, int, float]]:
    """Two lanes, two tiles each, with density records mixed in.

    Lane 1: raw 1000, pf 900. Lane 2: raw 2000, pf 1500.
    """
    return [
        (1, 1101, 100, 123.5),
        (1, 1101, 102, 600.0),
        (1, 1101, 103, 550.0),
        (2, 1101, 102, 1200.0),
        (1, 1102, 102, 400.0),
        (2, 1101, 103, 900.0),
        (1, 1102, 103, 350.0),
        (2, 1102, 101, 99.0),
        (2, 1102, 102, 800.0),
        (2, 1102, 103, 600.0),
    ]


@pytest.fixture
def v3_records() -> list[tuple[int, int, int, float, float]]:
    """Two lanes with cluster count ('t') and other records.

    Lane 1: raw 1000, pf 900. Lane 3: raw 500, pf 450.
    """
    t = ord("t")
    return [
        (1, 11101, t, 600.0, 500.0),
        (3, 11101, t, 500.0, 450.0),
        (1, 11101, ord("r"), 7777.0, 8888.0),
        (1, 11102, t, 400.0, 400.0),
        (3, 11102, ord("e"), 1.0, 1.0),
    ]


@pytest.fixture
def write_interop(tmp_path: Path) -> Callable[[bytes, str], Path]:
    """Return a function writing raw bytes to an InterOp file."""

    def _write(data: bytes, name: str = "TileMetricsOut.bin") -> Path:
        path = tmp_path / name
        path.write_bytes(data)
        return path

    return _write


@pytest.fixture
def v2_file(write_interop, v2_records) -> Path:
    return write_interop(encode_v2(v2_records), "v2.bin")


@pytest.fixture
def v3_file(write_interop, v3_records) -> Path:
    return write_interop(encode_v3(v3_records), "v3.bin")


# =============================================================================
# QC Fixtures
# =============================================================================


def spatial_filter_json(position: int, processed: int, failed: int, id_run: int = 1234) -> dict:
    return {
        "__CLASS__": "npg_qc::autoqc::results::spatial_filter-66.3",
        "id_run": id_run,
        "position": position,
        "num_total_reads": processed,
        "num_spatial_filter_fail_reads": failed,
    }


def bam_flagstats_json(
    position: int, total_reads: int, id_run: int = 1234, tag_index: int | None = None
) -> dict:
    component = {"id_run": id_run, "position": position}
    if tag_index is not None:
        component["tag_index"] = tag_index
    return {
        "__CLASS__": "npg_qc::autoqc::results::bam_flagstats-66.3",
        "composition": {"components": [component]},
        "total_reads": total_reads,
    }


@pytest.fixture
def write_qc(tmp_path: Path) -> Callable[[Path, list[dict]], Path]:
    """Return a function writing autoqc JSON results into a directory."""

    def _write(qc_dir: Path, results: list[dict]) -> Path:
        qc_dir.mkdir(parents=True, exist_ok=True)
        for i, result in enumerate(results):
            (qc_dir / f"result_{i}.json").write_text(json.dumps(result))
        return qc_dir

    return _write


# =============================================================================
# Run Folder Fixtures
# =============================================================================


RUN_INFO_TEMPLATE = """<?xml version="1.0"?>
<RunInfo Version="5">
  <Run Id="230101_A00001_1234_AHXXXXXX" Number="1234">
    <Flowcell>HXXXXXX</Flowcell>
    <Reads>
{reads}
    </Reads>
    <FlowcellLayout LaneCount="{lane_count}" SurfaceCount="2" SwathCount="2" TileCount="2" />
  </Run>
</RunInfo>
"""


def run_info_xml(lane_count: int = 2, paired: bool = True, indexed: bool = False) -> str:
    reads = [(151, "N")]
    if indexed:
        reads.append((8, "Y"))
    if paired:
        reads.append((151, "N"))
    lines = [
        f'      <Read Number="{i}" NumCycles="{cycles}" IsIndexedRead="{flag}" />'
        for i, (cycles, flag) in enumerate(reads, start=1)
    ]
    return RUN_INFO_TEMPLATE.format(reads="\n".join(lines), lane_count=lane_count)


@pytest.fixture
def run_folder(tmp_path: Path, v2_records) -> Path:
    """A paired-read, non-indexed two-lane run folder with tile metrics."""
    folder = tmp_path / "230101_A00001_1234_AHXXXXXX"
    (folder / "InterOp").mkdir(parents=True)
    (folder / "InterOp" / "TileMetricsOut.bin").write_bytes(encode_v2(v2_records))
    (folder / "RunInfo.xml").write_text(run_info_xml(lane_count=2, paired=True))
    return folder
