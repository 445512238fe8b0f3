"""Configuration management for clustercheck.

Configuration can come from:
- Default values
- A TOML configuration file
- The CLUSTERCHECK_CONFIG environment variable naming that file
- Command-line arguments (applied by the CLI on top of the loaded config)

Example:
    >>> from clustercheck.config import Config
    >>> config = Config.load("clustercheck.toml")
    >>> config.interop.relative_path
    'InterOp/TileMetricsOut.bin'

Example file::

    [interop]
    block_records = 8192

    [jobs]
    script_name = "clustercheck check"
"""

import os
import tomllib
from pathlib import Path
from typing import Any

import attrs
import toml

from clustercheck.io.interop import DEFAULT_BLOCK_RECORDS
from clustercheck.parallel.taskgen import DEFAULT_SCRIPT_NAME
from clustercheck.qc.results import DEFAULT_RESULT_PATTERN
from clustercheck.runfolder import DEFAULT_INTEROP_PATH

# =============================================================================
# Default Configuration Values
# =============================================================================

CONFIG_ENV_VAR = "CLUSTERCHECK_CONFIG"

DEFAULT_VERBOSITY = 1


# =============================================================================
# Configuration Classes
# =============================================================================


@attrs.define
class InterOpConfig:
    """Configuration for InterOp decoding.

    Attributes:
        relative_path: Tile metrics file relative to the run folder.
        block_records: Records decoded per read.
    """

    relative_path: str = DEFAULT_INTEROP_PATH
    block_records: int = DEFAULT_BLOCK_RECORDS


@attrs.define
class QCStoreConfig:
    """Configuration for loading autoqc results.

    Attributes:
        pattern: Glob pattern of result files in a QC directory.
    """

    pattern: str = DEFAULT_RESULT_PATTERN


@attrs.define
class JobConfig:
    """Configuration for job generation.

    Attributes:
        script_name: Executable named in generated commands.
    """

    script_name: str = DEFAULT_SCRIPT_NAME


@attrs.define
class LoggingConfig:
    """Configuration for logging.

    Attributes:
        verbosity: 0=warning, 1=info, 2=debug.
        log_file: Optional file receiving debug output.
    """

    verbosity: int = DEFAULT_VERBOSITY
    log_file: str | None = None


@attrs.define
class Config:
    """Main configuration container for clustercheck.

    Attributes:
        interop: InterOp decoding configuration.
        qc: QC result store configuration.
        jobs: Job generation configuration.
        logging: Logging configuration.
    """

    interop: InterOpConfig = attrs.Factory(InterOpConfig)
    qc: QCStoreConfig = attrs.Factory(QCStoreConfig)
    jobs: JobConfig = attrs.Factory(JobConfig)
    logging: LoggingConfig = attrs.Factory(LoggingConfig)

    @classmethod
    def load(cls, path: Path | str | None = None) -> "Config":
        """Load configuration from file.

        Args:
            path: Path to a TOML configuration file. If None, the file
                named by CLUSTERCHECK_CONFIG is used, or the defaults if
                that is unset.

        Returns:
            Loaded configuration object.

        Raises:
            FileNotFoundError: If configuration file doesn't exist.
            ValueError: If configuration file is invalid.
        """
        if path is None:
            path = os.environ.get(CONFIG_ENV_VAR) or None
        if path is None:
            return cls()

        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        try:
            with open(path, "rb") as fh:
                data = tomllib.load(fh)
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid configuration file {path}: {e}") from e

        config = cls.from_dict(data)
        config.validate()
        return config

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Build configuration from nested dictionaries.

        Raises:
            ValueError: If a section or key is unknown.
        """
        sections = {f.name: f.type for f in attrs.fields(cls)}
        kwargs = {}
        for name, values in data.items():
            if name not in sections:
                raise ValueError(f"Unknown configuration section: [{name}]")
            if not isinstance(values, dict):
                raise ValueError(f"Configuration section [{name}] must be a table")
            section_cls = sections[name]
            known = {f.name for f in attrs.fields(section_cls)}
            unknown = set(values) - known
            if unknown:
                raise ValueError(f"Unknown keys in [{name}]: {sorted(unknown)}")
            kwargs[name] = section_cls(**values)
        return cls(**kwargs)

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If any configuration value is invalid.
        """
        if self.interop.block_records < 1:
            raise ValueError(
                f"interop.block_records must be positive, got {self.interop.block_records}"
            )
        if not self.interop.relative_path:
            raise ValueError("interop.relative_path must not be empty")
        if not self.qc.pattern:
            raise ValueError("qc.pattern must not be empty")
        if not self.jobs.script_name.strip():
            raise ValueError("jobs.script_name must not be empty")
        if self.logging.verbosity < 0:
            raise ValueError(f"logging.verbosity must be >= 0, got {self.logging.verbosity}")

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary.

        Returns:
            Dictionary representation of configuration.
        """
        return attrs.asdict(self)

    def save(self, path: Path | str) -> Path:
        """Save configuration to a TOML file.

        Args:
            path: Path to save configuration file.
        """
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = attrs.asdict(self, filter=lambda _, value: value is not None)
        path.write_text(toml.dumps(data))
        return path
