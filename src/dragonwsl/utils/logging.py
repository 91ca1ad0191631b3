"""Logging configuration for dragonwsl.

Console verbosity is controlled via CLI flags:
- No flag: WARNING only
- -v: INFO level
- -vv: DEBUG level
- -vvv: DEBUG level + full output of every external command
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ROOT_LOGGER = "dragonwsl"
COMMAND_OUTPUT_LOGGER = f"{ROOT_LOGGER}.commands.output"

_loggers: dict[str, logging.Logger] = {}


def get_log_level(verbosity: int) -> int:
    """Convert verbosity count to log level.

    Args:
        verbosity: Number of -v flags (0-3).

    Returns:
        Logging level constant.
    """
    levels = {
        0: logging.WARNING,
        1: logging.INFO,
        2: logging.DEBUG,
        3: logging.DEBUG,  # Same as 2, but enables command output logging
    }
    return levels.get(min(verbosity, 3), logging.WARNING)


def configure_logging(
    verbosity: int = 0,
    log_file: str | Path | None = None,
    log_level: str | None = None,
) -> None:
    """Configure logging for dragonwsl.

    Sets up a console (stderr) handler and an optional file handler.
    The console handler respects the verbosity level, while the file
    handler always logs at DEBUG level.

    Args:
        verbosity: Number of -v flags from CLI (0-3).
        log_file: Optional path to log file.
        log_level: Override log level (DEBUG, INFO, WARNING, ERROR).
    """
    if log_level and not verbosity:
        level = getattr(logging, log_level.upper(), logging.WARNING)
    else:
        level = get_log_level(verbosity)

    root_logger = logging.getLogger(ROOT_LOGGER)
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(logging.DEBUG)  # Always debug in file
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        root_logger.addHandler(file_handler)

    # Raw stdout/stderr of external tools only at -vvv
    output_logger = logging.getLogger(COMMAND_OUTPUT_LOGGER)
    output_logger.setLevel(logging.DEBUG if verbosity >= 3 else logging.INFO)


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a module.

    Creates child loggers under the 'dragonwsl' namespace.

    Args:
        name: Name of the module (e.g., 'store', 'engine').

    Returns:
        Configured logger instance.

    Example:
        >>> logger = get_logger("engine")
        >>> logger.info("Upgrading devbox")
    """
    full_name = name if name.startswith(f"{ROOT_LOGGER}.") else f"{ROOT_LOGGER}.{name}"

    if full_name not in _loggers:
        _loggers[full_name] = logging.getLogger(full_name)

    return _loggers[full_name]
