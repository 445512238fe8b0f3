"""Input handlers for clustercheck.

- Tile metrics InterOp decoding and per-lane aggregation

Example:
    >>> from clustercheck.io import read_tile_metrics
    >>> lanes = read_tile_metrics("InterOp/TileMetricsOut.bin")
"""

from clustercheck.io.interop import (
    InterOpError,
    InterOpFormatError,
    InterOpHeader,
    LaneAggregator,
    LaneClusterStats,
    TileMetricCodes,
    TileMetricRecord,
    iter_tile_records,
    read_header,
    read_tile_metrics,
)

__all__ = [
    "InterOpError",
    "InterOpFormatError",
    "InterOpHeader",
    "LaneAggregator",
    "LaneClusterStats",
    "TileMetricCodes",
    "TileMetricRecord",
    "iter_tile_records",
    "read_header",
    "read_tile_metrics",
]
