"""Logging configuration for pwrsys_ssa.

The package logs through a single named logger:
- Default: WARNING level only (quiet)
- Debug tracing: DEBUG level, useful to follow the initialization stages

Usage:
    from pwrsys_ssa.logging import logger, enable_debug_logging

    logger.warning("This will show")
    logger.info("This won't show")

    enable_debug_logging()
    logger.debug("Now this shows")
"""

import logging
import sys

logger = logging.getLogger("pwrsys_ssa")

# Default: WARNING level only (quiet operation)
logger.setLevel(logging.WARNING)

if not logger.handlers:
    _default_handler = logging.StreamHandler(sys.stdout)
    _default_handler.setLevel(logging.WARNING)
    _default_handler.setFormatter(logging.Formatter("%(levelname)s %(message)s"))
    logger.addHandler(_default_handler)


def set_log_level(level):
    """Set the logging level.

    Args:
        level: logging.DEBUG, logging.INFO, logging.WARNING, etc.
    """
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)


def enable_debug_logging():
    """Show every stage of the initialization pipeline."""
    set_log_level(logging.DEBUG)
