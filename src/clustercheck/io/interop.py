"""Tile metrics InterOp file decoding.

This module reads an Illumina ``TileMetricsOut.bin`` InterOp file and
reduces its per-tile cluster counts to per-lane totals.

InterOp Tile Metrics Format:
    Byte 0 holds the format version and byte 1 the length of every
    following record. Two record layouts are supported, all fields
    little-endian:

    Version 2 (one metric per record)::

        offset  0  lane         uint16
        offset  2  tile         uint16
        offset  4  metric code  uint16  (102 cluster count, 103 cluster count pf)
        offset  6  value        float32

    Version 3 (4 byte ``area`` float32 follows the header)::

        offset  0  lane         uint16
        offset  2  tile         uint32
        offset  6  metric code  uint8   (116, ``ord('t')``, for cluster counts)
        offset  7  cluster count     float32
        offset 11  cluster count pf  float32

    Decoding stops at the first incomplete record.

Example:
    >>> from clustercheck.io.interop import read_tile_metrics
    >>> lanes = read_tile_metrics("run/InterOp/TileMetricsOut.bin")
    >>> lanes[1].raw_cluster_count, lanes[1].pf_cluster_count
    (1000, 900)
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from enum import IntEnum
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any, Union

import attrs
import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

InterOpSource = Union[str, os.PathLike, IO[bytes]]

# =============================================================================
# Constants
# =============================================================================

V3_AREA_SIZE = 4

# Records decoded per numpy block
DEFAULT_BLOCK_RECORDS = 4096


class TileMetricCodes(IntEnum):
    """Metric codes found in tile metrics records."""

    CLUSTER_DENSITY = 100
    CLUSTER_DENSITY_PF = 101
    CLUSTER_COUNT = 102
    CLUSTER_COUNT_PF = 103
    VERSION3_CLUSTER_COUNTS = ord("t")


# =============================================================================
# Exceptions
# =============================================================================


class InterOpError(OSError):
    """Raised when an InterOp file cannot be opened or read."""

    pass


class InterOpFormatError(ValueError):
    """Raised when an InterOp file has an unknown or undecodable layout."""

    pass


# =============================================================================
# Data Structures
# =============================================================================


@attrs.define(frozen=True, slots=True)
class InterOpHeader:
    """Header fields of a tile metrics file.

    Attributes:
        version: Format version byte.
        record_length: Bytes per record.
        area: Tile area (version 3 only).
    """

    version: int
    record_length: int
    area: float | None = None


@attrs.define(frozen=True, slots=True)
class TileMetricRecord:
    """One retained tile metrics record.

    Version 2 records carry a single value; version 3 cluster count
    records carry ``(cluster_count, cluster_count_pf)``.
    """

    lane: int
    tile: int
    code: int
    values: tuple[float, ...]


@attrs.define(frozen=True, slots=True)
class LaneClusterStats:
    """Cluster totals for one lane.

    Attributes:
        raw_cluster_count: Sum of raw cluster counts over all tiles.
        pf_cluster_count: Sum of pass-filter cluster counts over all tiles.
    """

    raw_cluster_count: int = attrs.field(validator=attrs.validators.ge(0))
    pf_cluster_count: int = attrs.field(validator=attrs.validators.ge(0))

    def to_dict(self) -> dict[str, int]:
        return attrs.asdict(self)


@attrs.define(slots=True)
class TileBlock:
    """Column view of a run of decoded records.

    ``values`` has one column for version 2 and two for version 3.
    """

    lanes: NDArray[np.uint16]
    tiles: NDArray[Any]
    codes: NDArray[Any]
    values: NDArray[np.float64]

    def __len__(self) -> int:
        return len(self.lanes)

    def cluster_masks(self) -> tuple[NDArray[np.bool_], NDArray[np.bool_]]:
        """Return masks of records carrying a raw and a pass-filter count."""
        v3 = self.codes == TileMetricCodes.VERSION3_CLUSTER_COUNTS
        raw_mask = (self.codes == TileMetricCodes.CLUSTER_COUNT) | v3
        pf_mask = (self.codes == TileMetricCodes.CLUSTER_COUNT_PF) | v3
        return raw_mask, pf_mask

    def cluster_columns(self) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Split values into raw and pass-filter contributions."""
        raw_mask, pf_mask = self.cluster_masks()
        first = self.values[:, 0]
        raw = np.where(raw_mask, first, 0.0)
        pf = np.where(pf_mask, first, 0.0)
        if self.values.shape[1] > 1:
            v3 = self.codes == TileMetricCodes.VERSION3_CLUSTER_COUNTS
            pf = np.where(v3, self.values[:, 1], pf)
        return raw, pf

    def records(self) -> Iterator[TileMetricRecord]:
        for lane, tile, code, values in zip(self.lanes, self.tiles, self.codes, self.values):
            yield TileMetricRecord(
                lane=int(lane),
                tile=int(tile),
                code=int(code),
                values=tuple(float(v) for v in values),
            )


# =============================================================================
# Record Layouts
# =============================================================================


@attrs.define(frozen=True)
class RecordLayout:
    """Fixed record layout for one format version.

    Attributes:
        version: Format version handled.
        extra_header: Header bytes following version and record length.
        names: Field names.
        formats: numpy formats for each field.
        offsets: Byte offsets of each field within a record.
    """

    version: int
    extra_header: int
    names: tuple[str, ...]
    formats: tuple[str, ...]
    offsets: tuple[int, ...]

    @property
    def min_length(self) -> int:
        return max(
            offset + np.dtype(fmt).itemsize
            for offset, fmt in zip(self.offsets, self.formats)
        )

    def dtype(self, record_length: int) -> np.dtype:
        if record_length < self.min_length:
            raise InterOpFormatError(
                f"Record length {record_length} too short for version {self.version} "
                f"records (need at least {self.min_length} bytes)"
            )
        return np.dtype(
            {
                "names": list(self.names),
                "formats": list(self.formats),
                "offsets": list(self.offsets),
                "itemsize": record_length,
            }
        )

    def decode(self, records: np.ndarray) -> TileBlock:
        raise NotImplementedError


@attrs.define(frozen=True)
class Version2Layout(RecordLayout):
    def decode(self, records: np.ndarray) -> TileBlock:
        keep = np.isin(
            records["code"],
            [int(TileMetricCodes.CLUSTER_COUNT), int(TileMetricCodes.CLUSTER_COUNT_PF)],
        )
        kept = records[keep]
        return TileBlock(
            lanes=kept["lane"],
            tiles=kept["tile"],
            codes=kept["code"],
            values=kept["value"].astype(np.float64).reshape(-1, 1),
        )


@attrs.define(frozen=True)
class Version3Layout(RecordLayout):
    def decode(self, records: np.ndarray) -> TileBlock:
        kept = records[records["code"] == TileMetricCodes.VERSION3_CLUSTER_COUNTS]
        values = np.column_stack(
            (
                kept["cluster_count"].astype(np.float64),
                kept["cluster_count_pf"].astype(np.float64),
            )
        )
        return TileBlock(
            lanes=kept["lane"],
            tiles=kept["tile"],
            codes=kept["code"],
            values=values.reshape(-1, 2),
        )


LAYOUTS: dict[int, RecordLayout] = {
    2: Version2Layout(
        version=2,
        extra_header=0,
        names=("lane", "tile", "code", "value"),
        formats=("<u2", "<u2", "<u2", "<f4"),
        offsets=(0, 2, 4, 6),
    ),
    3: Version3Layout(
        version=3,
        extra_header=V3_AREA_SIZE,
        names=("lane", "tile", "code", "cluster_count", "cluster_count_pf"),
        formats=("<u2", "<u4", "u1", "<f4", "<f4"),
        offsets=(0, 2, 6, 7, 11),
    ),
}


def get_layout(version: int) -> RecordLayout:
    """Return the record layout for a format version.

    Raises:
        InterOpFormatError: If the version is not supported.
    """
    try:
        return LAYOUTS[version]
    except KeyError:
        raise InterOpFormatError(f"Unknown version {version} in interop file") from None


# =============================================================================
# Lane Aggregation
# =============================================================================


class LaneAggregator:
    """Running per-lane sums of raw and pass-filter cluster counts.

    Lanes and tiles may arrive in any order. A lane is reported only when
    both a raw and a pass-filter count have been seen for it.

    Example:
        >>> agg = LaneAggregator()
        >>> agg.add(TileMetricRecord(1, 1101, 102, (500.0,)))
        >>> agg.add(TileMetricRecord(1, 1101, 103, (450.0,)))
        >>> agg.finalize()[1]
        LaneClusterStats(raw_cluster_count=500, pf_cluster_count=450)
    """

    def __init__(self) -> None:
        self._raw: dict[int, float] = {}
        self._pf: dict[int, float] = {}

    def __len__(self) -> int:
        return len(self._raw.keys() | self._pf.keys())

    @staticmethod
    def _accumulate(sums: dict[int, float], lane: int, value: float) -> None:
        sums[lane] = sums.get(lane, 0.0) + value

    def add(self, record: TileMetricRecord) -> None:
        """Add one decoded record."""
        code = record.code
        if code == TileMetricCodes.CLUSTER_COUNT:
            self._accumulate(self._raw, record.lane, record.values[0])
        elif code == TileMetricCodes.CLUSTER_COUNT_PF:
            self._accumulate(self._pf, record.lane, record.values[0])
        elif code == TileMetricCodes.VERSION3_CLUSTER_COUNTS:
            self._accumulate(self._raw, record.lane, record.values[0])
            self._accumulate(self._pf, record.lane, record.values[1])

    def add_block(self, block: TileBlock) -> None:
        """Add every record of a decoded block."""
        if len(block) == 0:
            return
        raw_mask, pf_mask = block.cluster_masks()
        raw, pf = block.cluster_columns()
        for lane in np.unique(block.lanes):
            mask = block.lanes == lane
            if (mask & raw_mask).any():
                self._accumulate(self._raw, int(lane), float(raw[mask].sum(dtype=np.float64)))
            if (mask & pf_mask).any():
                self._accumulate(self._pf, int(lane), float(pf[mask].sum(dtype=np.float64)))

    def finalize(self) -> dict[int, LaneClusterStats]:
        """Return per-lane totals rounded to whole clusters.

        Lanes missing either count are left out of the result.

        Raises:
            InterOpFormatError: If a lane sum is not finite or is negative.
        """
        for kind, sums in (("raw", self._raw), ("pf", self._pf)):
            for lane, total in sums.items():
                if not np.isfinite(total) or total < 0:
                    raise InterOpFormatError(
                        f"Invalid {kind} cluster count {total} for lane {lane}"
                    )

        lanes = {}
        for lane in sorted(self._raw.keys() | self._pf.keys()):
            if lane not in self._raw or lane not in self._pf:
                missing = "raw" if lane not in self._raw else "pf"
                logger.warning(f"Lane {lane} has no {missing} cluster count records")
                continue
            lanes[lane] = LaneClusterStats(
                raw_cluster_count=int(round(self._raw[lane])),
                pf_cluster_count=int(round(self._pf[lane])),
            )
        return lanes


# =============================================================================
# Reading
# =============================================================================


@contextmanager
def _open_source(source: InterOpSource) -> Iterator[tuple[IO[bytes], str]]:
    """Yield a binary handle for ``source``; paths are closed on exit."""
    if isinstance(source, (str, os.PathLike)):
        path = Path(source)
        try:
            fh = open(path, "rb")
        except OSError as e:
            raise InterOpError(f"Couldn't open interop file {path}, error {e.strerror}") from e
        with fh:
            yield fh, str(path)
    else:
        yield source, str(getattr(source, "name", "<stream>"))


def _read_up_to(fh: IO[bytes], size: int) -> bytes:
    """Read ``size`` bytes, or fewer only at end of file."""
    chunks = []
    remaining = size
    while remaining > 0:
        chunk = fh.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _read_exact(fh: IO[bytes], size: int, what: str, name: str) -> bytes:
    try:
        data = _read_up_to(fh, size)
    except OSError as e:
        raise InterOpError(f"Couldn't read {what} in interop file {name}, error {e}") from e
    if len(data) < size:
        raise InterOpError(f"Couldn't read {what} in interop file {name}")
    return data


def _read_records(fh: IO[bytes], size: int, name: str) -> bytes:
    try:
        return _read_up_to(fh, size)
    except OSError as e:
        raise InterOpError(f"Couldn't read records in interop file {name}, error {e}") from e


def _read_header(fh: IO[bytes], name: str) -> tuple[InterOpHeader, RecordLayout]:
    version = _read_exact(fh, 1, "file version", name)[0]
    record_length = _read_exact(fh, 1, "record length", name)[0]

    if version not in LAYOUTS:
        raise InterOpFormatError(f"Unknown version {version} in interop file {name}")
    layout = LAYOUTS[version]

    area = None
    if layout.extra_header:
        data = _read_exact(fh, layout.extra_header, "area", name)
        area = float(np.frombuffer(data, dtype="<f4")[0])

    header = InterOpHeader(version=version, record_length=record_length, area=area)
    logger.debug(f"{name}: version {version}, record length {record_length}")
    return header, layout


def _iter_blocks(
    fh: IO[bytes],
    name: str,
    header: InterOpHeader,
    layout: RecordLayout,
    block_records: int,
) -> Iterator[TileBlock]:
    # the record length only matters once record bytes follow the header
    pending = _read_records(fh, 1, name)
    if not pending:
        return
    dtype = layout.dtype(header.record_length)
    block_size = dtype.itemsize * block_records

    while True:
        data = pending + _read_records(fh, block_size - len(pending), name)
        pending = b""

        n_records = len(data) // dtype.itemsize
        if n_records:
            records = np.frombuffer(data, dtype=dtype, count=n_records)
            yield layout.decode(records)

        if len(data) < block_size:
            trailing = len(data) - n_records * dtype.itemsize
            if trailing:
                logger.debug(f"{name}: ignoring {trailing} trailing bytes")
            break


def read_header(source: InterOpSource) -> InterOpHeader:
    """Read only the header of a tile metrics file.

    Raises:
        InterOpError: If the file cannot be opened or the header read.
        InterOpFormatError: If the version is unknown.
    """
    with _open_source(source) as (fh, name):
        header, _ = _read_header(fh, name)
    return header


def iter_tile_records(
    source: InterOpSource,
    block_records: int = DEFAULT_BLOCK_RECORDS,
) -> Iterator[TileMetricRecord]:
    """Yield cluster count records from a tile metrics file.

    Records with other metric codes are skipped.

    Args:
        source: Path to the file or an open binary stream.
        block_records: Records decoded per read.

    Yields:
        TileMetricRecord for each retained record, in file order.
    """
    with _open_source(source) as (fh, name):
        header, layout = _read_header(fh, name)
        for block in _iter_blocks(fh, name, header, layout, block_records):
            yield from block.records()


def read_tile_metrics(
    source: InterOpSource,
    block_records: int = DEFAULT_BLOCK_RECORDS,
) -> dict[int, LaneClusterStats]:
    """Decode a tile metrics file into per-lane cluster totals.

    Args:
        source: Path to the file or an open binary stream. Streams are
            left open.
        block_records: Records decoded per read.

    Returns:
        Dict mapping lane number to LaneClusterStats. Empty when the file
        holds no cluster count records.

    Raises:
        InterOpError: If the file cannot be opened or its header read.
        InterOpFormatError: If the version is unknown or the record
            length is too short for the version's layout, or a lane
            sum is not a valid count.
    """
    aggregator = LaneAggregator()

    with _open_source(source) as (fh, name):
        header, layout = _read_header(fh, name)
        n_records = 0
        for block in _iter_blocks(fh, name, header, layout, block_records):
            aggregator.add_block(block)
            n_records += len(block)

    lanes = aggregator.finalize()
    if not lanes:
        logger.warning(f"No cluster count data in {name}")
    else:
        logger.debug(f"{name}: {n_records} cluster count records over {len(lanes)} lanes")
    return lanes
