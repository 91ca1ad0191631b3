"""Utility modules for dragonwsl.

This package contains shared utilities for logging, output formatting,
and retry logic.
"""

from dragonwsl.utils.logging import configure_logging, get_logger
from dragonwsl.utils.output import OutputFormatter, console
from dragonwsl.utils.retry import retry_with_backoff

__all__ = [
    "OutputFormatter",
    "configure_logging",
    "console",
    "get_logger",
    "retry_with_backoff",
]
