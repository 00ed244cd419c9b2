"""Logging configuration for the Hypothesis archive."""

import sys

from loguru import logger


def configure_logging(*, verbose: bool = False) -> None:
    """Send loguru output to stderr at INFO, or DEBUG when verbose."""
    logger.remove()
    level = "DEBUG" if verbose else "INFO"
    logger.add(sys.stderr, level=level, format="{level.icon} {message}")
