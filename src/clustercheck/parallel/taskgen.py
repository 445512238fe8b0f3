"""Job definitions and task files for per-lane cluster count checks.

One job is defined per lane. The task file has one command per line and
can be fed to any tool that consumes such files:
- HyperShell: https://hypershell.readthedocs.io/
- GNU Parallel
- xargs

Example:
    >>> from clustercheck.parallel import TaskGenerator, create_definitions
    >>> definitions = create_definitions(
    ...     id_run=1234,
    ...     positions=[1, 2],
    ...     runfolder_path="/runs/r1",
    ...     qc_path="/runs/r1/archive/qc",
    ...     bam_basecall_path="/runs/r1/BAM_basecalls",
    ...     timestamp="20090709-123456",
    ... )
    >>> task_file = TaskGenerator(definitions).generate("tasks.txt")
    >>> task_file.n_tasks
    2

    # Execute with GNU Parallel:
    # parallel -j 8 < tasks.txt
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path

import attrs

logger = logging.getLogger(__name__)

DEFAULT_SCRIPT_NAME = "npg_pipeline_check_cluster_count"
CREATED_BY = "clustercheck.parallel.taskgen"
TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


# =============================================================================
# Data Structures
# =============================================================================


@attrs.define(frozen=True)
class JobDefinition:
    """A schedulable per-lane job.

    Attributes:
        created_by: Module that created the definition.
        created_on: Timestamp shared by all jobs of one pipeline invocation.
        identifier: Run identifier.
        job_name: Name shared by all jobs of the invocation.
        command: Command line to execute.
        composition: The run and lane the job covers.
    """

    created_by: str
    created_on: str
    identifier: int
    job_name: str
    command: str
    composition: dict[str, int] = attrs.field(factory=dict)

    def to_dict(self) -> dict:
        return attrs.asdict(self)


@attrs.define(slots=True)
class TaskFile:
    """Generated task file.

    Attributes:
        path: Path to the generated task file.
        n_tasks: Number of tasks in the file.
    """

    path: Path
    n_tasks: int

    def preview(self, n: int = 5) -> list[str]:
        """Show first n tasks.

        Args:
            n: Number of tasks to show.

        Returns:
            List of first n task commands.
        """
        if not self.path.exists():
            return []

        lines = []
        with open(self.path) as f:
            for i, line in enumerate(f):
                if i >= n:
                    break
                lines.append(line.rstrip())
        return lines


# =============================================================================
# Definitions
# =============================================================================


def format_command(
    script_name: str,
    id_run: int,
    position: int,
    runfolder_path: Path | str,
    qc_path: Path | str,
    bam_basecall_path: Path | str,
) -> str:
    """Build the command line checking one lane.

    Example:
        >>> format_command("check", 1234, 1, "/r", "/r/qc", "/r/bam")
        'check --id_run=1234 --position=1 --runfolder_path=/r --qc_path=/r/qc --bam_basecall_path=/r/bam'
    """
    return (
        f"{script_name}"
        f" --id_run={id_run}"
        f" --position={position}"
        f" --runfolder_path={runfolder_path}"
        f" --qc_path={qc_path}"
        f" --bam_basecall_path={bam_basecall_path}"
    )


def create_definitions(
    id_run: int,
    positions: Iterable[int],
    runfolder_path: Path | str,
    qc_path: Path | str,
    bam_basecall_path: Path | str,
    timestamp: str | None = None,
    script_name: str = DEFAULT_SCRIPT_NAME,
) -> list[JobDefinition]:
    """Create one job definition per lane.

    Args:
        id_run: Run identifier.
        positions: Lanes to check.
        runfolder_path: Run folder directory.
        qc_path: Directory holding autoqc results.
        bam_basecall_path: BAM basecalls directory.
        timestamp: Pipeline timestamp; defaults to now.
        script_name: Executable performing the check.

    Returns:
        List of JobDefinition, in lane order.

    Raises:
        ValueError: If no positions are given.
    """
    positions = sorted(set(positions))
    if not positions:
        raise ValueError("At least one position is required")

    if timestamp is None:
        timestamp = datetime.now().strftime(TIMESTAMP_FORMAT)

    job_name = "_".join([script_name, str(id_run), timestamp])

    definitions = [
        JobDefinition(
            created_by=CREATED_BY,
            created_on=timestamp,
            identifier=id_run,
            job_name=job_name,
            command=format_command(
                script_name, id_run, position, runfolder_path, qc_path, bam_basecall_path
            ),
            composition={"id_run": id_run, "position": position},
        )
        for position in positions
    ]
    logger.debug(f"Created {len(definitions)} definitions for job {job_name}")
    return definitions


def write_definitions_json(definitions: list[JobDefinition], output_path: Path | str) -> Path:
    """Save definitions as a JSON list."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        json.dump([d.to_dict() for d in definitions], f, indent=2)
    return output_path


# =============================================================================
# Task Generator
# =============================================================================


class TaskGenerator:
    """Write job definitions as a task file, one command per line.

    Example:
        >>> gen = TaskGenerator(definitions)
        >>> task_file = gen.generate("tasks.txt", log_dir="logs")
    """

    def __init__(self, definitions: list[JobDefinition]) -> None:
        self.definitions = definitions

    def generate(
        self,
        output_path: Path | str,
        log_dir: Path | str | None = None,
    ) -> TaskFile:
        """Generate task file.

        Args:
            output_path: Where to write task file.
            log_dir: If given, redirect each job's stdout/stderr to
                ``<log_dir>/<job_name>_<position>.log``.

        Returns:
            TaskFile with metadata.
        """
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        log_dir_path = Path(log_dir) if log_dir else None
        if log_dir_path:
            log_dir_path.mkdir(parents=True, exist_ok=True)

        tasks = []
        for definition in self.definitions:
            cmd = definition.command
            if log_dir_path:
                position = definition.composition.get("position")
                log_file = log_dir_path / f"{definition.job_name}_{position}.log"
                cmd = f"{cmd} > {log_file} 2>&1"
            tasks.append(cmd)

        with open(output_path, "w") as f:
            for task in tasks:
                f.write(task + "\n")

        logger.info(f"Generated {len(tasks)} tasks in {output_path}")

        return TaskFile(path=output_path, n_tasks=len(tasks))
