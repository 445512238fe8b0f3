"""clustercheck: cluster count consistency checks for sequencing runs.

clustercheck decodes per-tile cluster counts from Illumina InterOp tile
metrics files, sums them per lane, and checks that they agree with the
spatial filter and final BAM output counts recorded by autoqc.

Example:
    >>> import clustercheck
    >>> clustercheck.__version__
    '0.1.0'

Modules:
    io: InterOp tile metrics decoding and lane aggregation
    qc: Autoqc result access and cluster count reconciliation
    parallel: Per-lane job definitions and task files
    runfolder: Run folder layout and RunInfo.xml
    config: Configuration
    utils: Logging utilities
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
