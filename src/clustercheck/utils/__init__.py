"""Utility functions for clustercheck.

- Logging configuration and timing
"""

from clustercheck.utils.logging import Timer, setup_logging

__all__ = [
    "Timer",
    "setup_logging",
]
