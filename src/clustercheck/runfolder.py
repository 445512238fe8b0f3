"""Run folder layout and RunInfo.xml parsing.

Example:
    >>> from clustercheck.runfolder import RunFolder
    >>> folder = RunFolder("/runs/230101_A00001_1234_AHXXXXXX")
    >>> folder.interop_path
    PosixPath('/runs/230101_A00001_1234_AHXXXXXX/InterOp/TileMetricsOut.bin')
    >>> folder.run_info.is_paired_read
    True
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree
from pathlib import Path

import attrs

logger = logging.getLogger(__name__)

DEFAULT_INTEROP_PATH = "InterOp/TileMetricsOut.bin"
RUN_INFO_NAME = "RunInfo.xml"


class RunInfoError(ValueError):
    """Raised when RunInfo.xml lacks required elements."""

    pass


@attrs.define(frozen=True)
class ReadInfo:
    number: int
    num_cycles: int
    is_indexed: bool


@attrs.define(frozen=True)
class RunInfo:
    """Facts about a run read from RunInfo.xml.

    Attributes:
        run_number: The ``Number`` attribute of the Run element, if any.
        lane_count: Number of lanes on the flowcell.
        reads: Reads in run order.
    """

    run_number: int | None
    lane_count: int
    reads: tuple[ReadInfo, ...]

    @property
    def positions(self) -> list[int]:
        return list(range(1, self.lane_count + 1))

    @property
    def is_paired_read(self) -> bool:
        return sum(1 for r in self.reads if not r.is_indexed) >= 2

    @property
    def is_indexed(self) -> bool:
        return any(r.is_indexed for r in self.reads)

    @classmethod
    def load(cls, path: Path | str) -> RunInfo:
        """Parse a RunInfo.xml file.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            RunInfoError: If the Run, Reads or FlowcellLayout element is missing.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"RunInfo.xml not found: {path}")

        root = xml.etree.ElementTree.parse(path).getroot()
        run = root.find("Run")
        if run is None:
            raise RunInfoError(f"No Run element in {path}")

        layout = run.find("FlowcellLayout")
        if layout is None:
            raise RunInfoError(f"No FlowcellLayout element in {path}")

        reads_element = run.find("Reads")
        if reads_element is None:
            raise RunInfoError(f"No Reads element in {path}")

        reads = sorted(
            (
                ReadInfo(
                    number=int(read.attrib["Number"]),
                    num_cycles=int(read.attrib.get("NumCycles", 0)),
                    is_indexed=read.attrib.get("IsIndexedRead", "N") == "Y",
                )
                for read in reads_element.findall("Read")
            ),
            key=lambda r: r.number,
        )

        number = run.attrib.get("Number")
        return cls(
            run_number=int(number) if number and number.isdigit() else None,
            lane_count=int(layout.attrib["LaneCount"]),
            reads=tuple(reads),
        )


@attrs.define
class RunFolder:
    """A sequencer run folder.

    Attributes:
        path: Run folder directory.
        interop_relpath: Tile metrics file relative to the run folder.
    """

    path: Path = attrs.field(converter=Path)
    interop_relpath: str = DEFAULT_INTEROP_PATH
    _run_info: RunInfo | None = attrs.field(default=None, init=False, repr=False)

    @property
    def interop_path(self) -> Path:
        return self.path / self.interop_relpath

    @property
    def run_info_path(self) -> Path:
        return self.path / RUN_INFO_NAME

    @property
    def has_run_info(self) -> bool:
        return self.run_info_path.exists()

    @property
    def run_info(self) -> RunInfo:
        if self._run_info is None:
            self._run_info = RunInfo.load(self.run_info_path)
            logger.debug(
                f"{self.run_info_path}: {self._run_info.lane_count} lanes, "
                f"{len(self._run_info.reads)} reads"
            )
        return self._run_info
