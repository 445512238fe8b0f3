"""Job generation for per-lane cluster count checks.

Lanes are checked independently, so each becomes one job. The
recommended approach is:
1. Create definitions with create_definitions
2. Write a task file with TaskGenerator
3. Execute with HyperShell or GNU Parallel

Example:
    >>> from clustercheck.parallel import TaskGenerator, create_definitions
    >>> definitions = create_definitions(1234, [1, 2, 3, 4], run, qc, bam)
    >>> TaskGenerator(definitions).generate("tasks.txt")
"""

from clustercheck.parallel.taskgen import (
    DEFAULT_SCRIPT_NAME,
    JobDefinition,
    TaskFile,
    TaskGenerator,
    create_definitions,
    format_command,
    write_definitions_json,
)

__all__ = [
    "DEFAULT_SCRIPT_NAME",
    "JobDefinition",
    "TaskFile",
    "TaskGenerator",
    "create_definitions",
    "format_command",
    "write_definitions_json",
]
