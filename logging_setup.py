"""Logging configuration for chart-mirror."""

import logging
import sys
from pathlib import Path

LOGGER_NAME = "chart_mirror"

BAR_WIDTH = 40


def setup_logging(
    verbosity: int = 0,
    log_file: Path | None = None,
) -> logging.Logger:
    """Configure and return the chart-mirror logger.

    Args:
        verbosity: -1 quiet (WARNING+), 0 normal (INFO), 1 verbose (DEBUG)
        log_file: Optional file that receives every record at DEBUG level

    Returns:
        The configured logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stdout)
    if verbosity < 0:
        console_handler.setLevel(logging.WARNING)
    elif verbosity > 0:
        console_handler.setLevel(logging.DEBUG)
    else:
        console_handler.setLevel(logging.INFO)

    # Level names only matter when debugging; warnings carry their own prefix
    if verbosity > 0:
        console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    else:
        console_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="a")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(file_handler)

    return logger


def get_logger() -> logging.Logger:
    """Get the chart_mirror logger instance."""
    return logging.getLogger(LOGGER_NAME)


def progress_bar(label: str, completed: int, total: int) -> str:
    """Format a fixed-width progress bar line."""
    percent = completed / total if total else 1.0
    filled = int(BAR_WIDTH * percent)
    bar = "█" * filled + "░" * (BAR_WIDTH - filled)
    return f"{label}: [{bar}] {completed}/{total}"


def write_progress(message: str) -> None:
    """Write a progress line straight to the terminal.

    Bypasses logging so the line can be redrawn in place with a carriage
    return.
    """
    sys.stdout.write(f"\r{message}")
    sys.stdout.flush()
