"""Command-line interface for clustercheck.

This module provides the main entry point for the clustercheck CLI tool.
It uses Click to define commands.

Commands:
    interop: Print per-lane cluster totals from a tile metrics file
    check: Check cluster count consistency for one lane
    jobs: Generate per-lane check jobs for a run
    init-config: Write the current configuration to a TOML file

Example:
    $ clustercheck --help
    $ clustercheck interop run/InterOp/TileMetricsOut.bin
    $ clustercheck check --id_run 1234 --position 1 --runfolder_path run --qc_path run/archive/qc
    $ clustercheck jobs --id_run 1234 --runfolder_path run --qc_path run/archive/qc \\
          --bam_basecall_path run/BAM_basecalls -o tasks.txt
"""

import json
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from clustercheck import __version__
from clustercheck.config import Config
from clustercheck.utils.logging import setup_logging

# Initialize rich console for pretty output
console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="clustercheck")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output.")
@click.option("-q", "--quiet", is_flag=True, help="Suppress non-error output.")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    help="TOML configuration file (default: $CLUSTERCHECK_CONFIG).",
)
@click.pass_context
def main(ctx: click.Context, verbose: bool, quiet: bool, config_path: Optional[Path]) -> None:
    """clustercheck: cluster count consistency checks for sequencing runs.

    Decodes per-tile cluster counts from the InterOp tile metrics file and
    reconciles them with spatial filter and BAM output counts.
    """
    ctx.ensure_object(dict)

    try:
        config = Config.load(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise SystemExit(1)

    if verbose:
        verbosity = 2
    elif quiet:
        verbosity = 0
    else:
        verbosity = config.logging.verbosity
    setup_logging(verbosity=verbosity, log_file=config.logging.log_file)

    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["config"] = config


# =============================================================================
# interop command
# =============================================================================


@main.command("interop")
@click.argument("tile_metrics", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--json", "as_json", is_flag=True, help="Print lane totals as JSON.")
@click.pass_context
def interop(ctx: click.Context, tile_metrics: Path, as_json: bool) -> None:
    """Print per-lane raw and PF cluster totals from a tile metrics file.

    \b
    Examples:
        $ clustercheck interop run/InterOp/TileMetricsOut.bin
        $ clustercheck interop --json run/InterOp/TileMetricsOut.bin
    """
    from clustercheck.io import InterOpError, InterOpFormatError, read_header, read_tile_metrics

    config: Config = ctx.obj["config"]

    try:
        header = read_header(tile_metrics)
        lanes = read_tile_metrics(tile_metrics, block_records=config.interop.block_records)
    except (InterOpError, InterOpFormatError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise SystemExit(1)

    if as_json:
        click.echo(json.dumps({str(lane): stats.to_dict() for lane, stats in lanes.items()}))
        return

    table = Table(title=f"{tile_metrics.name} (version {header.version})")
    table.add_column("Lane", justify="right")
    table.add_column("Raw clusters", justify="right")
    table.add_column("PF clusters", justify="right")
    table.add_column("% PF", justify="right")
    for lane, stats in lanes.items():
        pct = (
            100 * stats.pf_cluster_count / stats.raw_cluster_count
            if stats.raw_cluster_count
            else 0
        )
        table.add_row(
            str(lane),
            f"{stats.raw_cluster_count:,}",
            f"{stats.pf_cluster_count:,}",
            f"{pct:.1f}",
        )
    console.print(table)


# =============================================================================
# check command
# =============================================================================


@main.command("check")
@click.option("--id_run", "id_run", type=int, required=True, help="Run identifier.")
@click.option("--position", type=int, required=True, help="Lane to check.")
@click.option(
    "--runfolder_path",
    "runfolder_path",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    required=True,
    help="Run folder directory.",
)
@click.option(
    "--qc_path",
    "qc_path",
    type=click.Path(path_type=Path),
    required=True,
    help="Directory holding autoqc results.",
)
@click.option(
    "--bam_basecall_path",
    "bam_basecall_path",
    type=click.Path(path_type=Path),
    help="BAM basecalls directory (accepted for job compatibility).",
)
@click.option(
    "--interop",
    "interop_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Tile metrics file (default: <runfolder>/InterOp/TileMetricsOut.bin).",
)
@click.option(
    "--paired/--single",
    default=None,
    help="Whether the run is paired-read (default: from RunInfo.xml).",
)
@click.option(
    "--multiplexed/--not-multiplexed",
    default=None,
    help=(
        "Whether the lane is indexed (default: from RunInfo.xml, where any index "
        "read marks every lane of the run as multiplexed; pass --not-multiplexed "
        "for an unindexed lane of an indexed run)."
    ),
)
@click.pass_context
def check(
    ctx: click.Context,
    id_run: int,
    position: int,
    runfolder_path: Path,
    qc_path: Path,
    bam_basecall_path: Optional[Path],
    interop_path: Optional[Path],
    paired: Optional[bool],
    multiplexed: Optional[bool],
) -> None:
    """Check that cluster counts for one lane are consistent.

    Compares raw and PF counts from the InterOp tile metrics with the
    spatial filter result and the BAM flagstats total. Exits with status 1
    if the counts disagree.

    \b
    Examples:
        $ clustercheck check --id_run 1234 --position 1 --runfolder_path run --qc_path run/archive/qc
        $ clustercheck check --id_run 1234 --position 2 --runfolder_path run --qc_path qc --paired --multiplexed
    """
    from clustercheck.io import InterOpError, InterOpFormatError
    from clustercheck.qc import (
        ClusterCountChecker,
        ClusterCountError,
        JsonQCStore,
        QCResultError,
        format_count,
    )
    from clustercheck.runfolder import RunFolder, RunInfoError

    config: Config = ctx.obj["config"]
    verbose = ctx.obj.get("verbose", False)
    quiet = ctx.obj.get("quiet", False)

    folder = RunFolder(runfolder_path, interop_relpath=config.interop.relative_path)

    if paired is None or multiplexed is None:
        if not folder.has_run_info:
            if paired is None:
                console.print(
                    "[red]Error:[/red] No RunInfo.xml in run folder; pass --paired or --single"
                )
                raise SystemExit(1)
            multiplexed = False
        else:
            try:
                run_info = folder.run_info
            except RunInfoError as e:
                console.print(f"[red]Error:[/red] {escape(str(e))}")
                raise SystemExit(1)
            if paired is None:
                paired = run_info.is_paired_read
            if multiplexed is None:
                multiplexed = run_info.is_indexed

    checker = ClusterCountChecker(
        id_run=id_run,
        position=position,
        interop_path=interop_path or folder.interop_path,
        qc_path=str(qc_path),
        store=JsonQCStore(pattern=config.qc.pattern),
        paired_read=paired,
        multiplexed=multiplexed,
        block_records=config.interop.block_records,
    )

    try:
        result = checker.run_cluster_count_check()
    except (ClusterCountError, QCResultError, InterOpError, InterOpFormatError) as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        if verbose:
            console.print_exception()
        raise SystemExit(1)

    if not quiet:
        console.print(
            f"[green]Run {id_run} lane {position}: cluster counts consistent[/green] "
            f"(bam {format_count(result.output_cluster_count)} matches {result.matched})"
        )


# =============================================================================
# jobs command
# =============================================================================


@main.command("jobs")
@click.option("--id_run", "id_run", type=int, required=True, help="Run identifier.")
@click.option(
    "--runfolder_path",
    "runfolder_path",
    type=click.Path(path_type=Path),
    required=True,
    help="Run folder directory.",
)
@click.option(
    "--qc_path",
    "qc_path",
    type=click.Path(path_type=Path),
    required=True,
    help="Directory holding autoqc results.",
)
@click.option(
    "--bam_basecall_path",
    "bam_basecall_path",
    type=click.Path(path_type=Path),
    required=True,
    help="BAM basecalls directory.",
)
@click.option(
    "--position",
    "positions",
    type=int,
    multiple=True,
    help="Lane to check; repeat for several (default: all lanes in RunInfo.xml).",
)
@click.option("--timestamp", help="Pipeline timestamp used in the job name (default: now).")
@click.option(
    "-o",
    "--output",
    type=click.Path(path_type=Path),
    required=True,
    help="Output task file, one command per line.",
)
@click.option(
    "--log-dir",
    type=click.Path(path_type=Path),
    help="Redirect each job's output to a log file in this directory.",
)
@click.option(
    "--definitions-json",
    type=click.Path(path_type=Path),
    help="Also write the job definitions as JSON.",
)
@click.pass_context
def jobs(
    ctx: click.Context,
    id_run: int,
    runfolder_path: Path,
    qc_path: Path,
    bam_basecall_path: Path,
    positions: tuple[int, ...],
    timestamp: Optional[str],
    output: Path,
    log_dir: Optional[Path],
    definitions_json: Optional[Path],
) -> None:
    """Generate one cluster count check job per lane.

    \b
    Examples:
        $ clustercheck jobs --id_run 1234 --runfolder_path run --qc_path qc \\
              --bam_basecall_path bam -o tasks.txt
        $ parallel -j 8 < tasks.txt
    """
    from clustercheck.parallel import TaskGenerator, create_definitions, write_definitions_json
    from clustercheck.runfolder import RunFolder, RunInfoError

    config: Config = ctx.obj["config"]
    quiet = ctx.obj.get("quiet", False)

    if not positions:
        folder = RunFolder(runfolder_path)
        if not folder.has_run_info:
            console.print("[red]Error:[/red] No RunInfo.xml in run folder; pass --position")
            raise SystemExit(1)
        try:
            positions = tuple(folder.run_info.positions)
        except RunInfoError as e:
            console.print(f"[red]Error:[/red] {escape(str(e))}")
            raise SystemExit(1)

    definitions = create_definitions(
        id_run=id_run,
        positions=positions,
        runfolder_path=runfolder_path,
        qc_path=qc_path,
        bam_basecall_path=bam_basecall_path,
        timestamp=timestamp,
        script_name=config.jobs.script_name,
    )
    task_file = TaskGenerator(definitions).generate(output, log_dir=log_dir)

    if definitions_json:
        write_definitions_json(definitions, definitions_json)

    if not quiet:
        console.print(f"[green]Wrote {task_file.n_tasks} jobs to:[/green] {task_file.path}")

        preview = task_file.preview(3)
        if preview:
            console.print("\n[bold]Preview (first 3 tasks):[/bold]")
            for i, line in enumerate(preview, 1):
                console.print(f"  {i}. {escape(line)}", soft_wrap=True)


# =============================================================================
# init-config command
# =============================================================================


@main.command("init-config")
@click.argument("output", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--force", is_flag=True, help="Overwrite an existing file.")
@click.pass_context
def init_config(ctx: click.Context, output: Path, force: bool) -> None:
    """Write the current configuration to a TOML file.

    The file holds the defaults, or the settings loaded with --config or
    $CLUSTERCHECK_CONFIG, and can be edited and passed back with --config.

    \b
    Examples:
        $ clustercheck init-config clustercheck.toml
        $ clustercheck --config clustercheck.toml check ...
    """
    config: Config = ctx.obj["config"]
    quiet = ctx.obj.get("quiet", False)

    if output.exists() and not force:
        console.print(f"[red]Error:[/red] {escape(str(output))} exists; pass --force to overwrite")
        raise SystemExit(1)

    config.save(output)

    if not quiet:
        console.print(f"[green]Wrote configuration to:[/green] {escape(str(output))}")


if __name__ == "__main__":
    main()
