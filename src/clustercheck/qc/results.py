"""Autoqc result loading.

This module provides access to per-lane QC results written by upstream
pipeline stages. Results are typed by class name (``spatial_filter``,
``bam_flagstats``, ...) and can be sliced by any attribute.

Stores are small capability objects: anything with a
``load_from_path(path)`` method returning a ResultCollection can be
passed to the reconciliation engine.

Example:
    >>> from clustercheck.qc.results import JsonQCStore
    >>> store = JsonQCStore()
    >>> collection = store.load_from_path("run/Data/Intensities/BAM_basecalls/no_cal/archive/qc")
    >>> lane = collection.slice("position", 1)
    >>> flagstats = lane.slice("class_name", "bam_flagstats")
    >>> sum(r.total_reads for r in flagstats)
    1800
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path
from typing import Any, Protocol

import attrs

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

SPATIAL_FILTER = "spatial_filter"
BAM_FLAGSTATS = "bam_flagstats"

DEFAULT_RESULT_PATTERN = "*.json"

# a trailing /qc not already inside a laneN directory
_LANE_QC_RE = re.compile(r"(?<!lane.)/qc$")


# =============================================================================
# Exceptions
# =============================================================================


class QCResultError(RuntimeError):
    """Raised when QC results are malformed or ambiguous."""

    pass


# =============================================================================
# Data Structures
# =============================================================================


@attrs.define(frozen=True)
class QCResult:
    """A single autoqc result.

    Attributes:
        class_name: Result type, e.g. "spatial_filter".
        id_run: Run identifier.
        position: Lane number.
        tag_index: Plex tag index, None for lane-level results.
        data: All attributes of the result as loaded.
    """

    class_name: str
    id_run: int | None = None
    position: int | None = None
    tag_index: int | None = None
    data: Mapping[str, Any] = attrs.field(factory=dict, eq=False, repr=False)

    def get(self, name: str, default: Any = None) -> Any:
        if name in ("class_name", "id_run", "position", "tag_index"):
            return getattr(self, name)
        return self.data.get(name, default)

    def _number(self, name: str) -> int | float | None:
        value = self.data.get(name)
        if value is None:
            return None
        if isinstance(value, (int, float)):
            return value
        try:
            return int(value)
        except (TypeError, ValueError):
            raise QCResultError(
                f"Non-numeric {name} '{value}' in {self.class_name} result"
            ) from None

    @property
    def num_total_reads(self) -> int | float | None:
        return self._number("num_total_reads")

    @property
    def num_spatial_filter_fail_reads(self) -> int | float | None:
        return self._number("num_spatial_filter_fail_reads")

    @property
    def total_reads(self) -> int | float:
        value = self._number("total_reads")
        return 0 if value is None else value

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> QCResult:
        """Build a result from an autoqc JSON object.

        Identity fields are taken from top-level keys, falling back to the
        first component of ``composition.components``.

        Raises:
            QCResultError: If no class name can be determined.
        """
        class_name = data.get("class_name") or _class_from_field(data.get("__CLASS__"))
        if not class_name:
            raise QCResultError("QC result has neither class_name nor __CLASS__")

        components = (data.get("composition") or {}).get("components") or [{}]
        component = components[0]

        def identity(key: str) -> int | None:
            value = data.get(key, component.get(key))
            return None if value is None else int(value)

        return cls(
            class_name=class_name,
            id_run=identity("id_run"),
            position=identity("position"),
            tag_index=identity("tag_index"),
            data=dict(data),
        )


def _class_from_field(value: str | None) -> str | None:
    if not value:
        return None
    # e.g. "npg_qc::autoqc::results::bam_flagstats-59.2"
    return value.rsplit("::", 1)[-1].split("-", 1)[0] or None


class ResultCollection:
    """An ordered collection of QC results.

    Example:
        >>> collection = ResultCollection([r1, r2])
        >>> collection.slice("class_name", "spatial_filter").is_empty()
        False
    """

    def __init__(self, results: Iterable[QCResult] = ()) -> None:
        self._results = list(results)

    @property
    def results(self) -> list[QCResult]:
        return list(self._results)

    def __len__(self) -> int:
        return len(self._results)

    def __iter__(self) -> Iterator[QCResult]:
        return iter(self._results)

    def __repr__(self) -> str:
        return f"ResultCollection({len(self._results)} results)"

    def is_empty(self) -> bool:
        return not self._results

    def slice(self, attribute: str, value: Any) -> ResultCollection:
        """Return the results whose ``attribute`` equals ``value``."""
        return ResultCollection(r for r in self._results if r.get(attribute) == value)


# =============================================================================
# Stores
# =============================================================================


class QCResultStore(Protocol):
    """Anything that can load a result collection from a path."""

    def load_from_path(self, path: Path | str) -> ResultCollection: ...


@attrs.define
class JsonQCStore:
    """Load autoqc results from JSON files in a directory.

    Attributes:
        pattern: Glob pattern of result files within the directory.
    """

    pattern: str = DEFAULT_RESULT_PATTERN

    def load_from_path(self, path: Path | str) -> ResultCollection:
        """Load every matching result file in ``path``.

        A missing directory gives an empty collection.

        Raises:
            QCResultError: If a file is not a valid QC result.
        """
        path = Path(path)
        if not path.is_dir():
            logger.debug(f"QC path {path} does not exist")
            return ResultCollection()

        results = []
        for result_file in sorted(path.glob(self.pattern)):
            try:
                with open(result_file) as f:
                    data = json.load(f)
            except json.JSONDecodeError as e:
                raise QCResultError(f"Cannot parse QC result {result_file}: {e}") from e
            if not isinstance(data, dict):
                raise QCResultError(f"QC result {result_file} is not a JSON object")
            results.append(QCResult.from_dict(data))

        logger.debug(f"Loaded {len(results)} QC results from {path}")
        return ResultCollection(results)


@attrs.define
class InMemoryQCStore:
    """Store backed by a mapping of path to results."""

    collections: dict[str, list[QCResult]] = attrs.Factory(dict)

    def add(self, path: Path | str, *results: QCResult) -> None:
        self.collections.setdefault(str(path), []).extend(results)

    def load_from_path(self, path: Path | str) -> ResultCollection:
        return ResultCollection(self.collections.get(str(path), []))


# =============================================================================
# Paths
# =============================================================================


def lane_qc_path(qc_path: Path | str, position: int) -> str:
    """Return the lane-level QC directory for a multiplexed lane.

    Example:
        >>> lane_qc_path("/runs/1234/archive/qc", 3)
        '/runs/1234/archive/lane3/qc'
        >>> lane_qc_path("/runs/1234/archive/lane3/qc", 3)
        '/runs/1234/archive/lane3/qc'
    """
    return _LANE_QC_RE.sub(f"/lane{position}/qc", str(qc_path))
