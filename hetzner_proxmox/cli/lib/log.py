"""
Logging setup for the CLI.

Library modules log through `logging.getLogger(__name__)`; this module only
attaches the shared setup log file to the package logger.
"""

import logging
import sys
from typing import Optional

LOG_FORMAT = "[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

PACKAGE_LOGGER = "hetzner_proxmox"


def setup_logging(log_file: Optional[str], level: str = "INFO") -> logging.Logger:
    """
    Configure the package logger.

    Args:
        log_file: Path of the log file, or None to skip file logging
        level: Log level name (e.g., "INFO", "DEBUG")

    Returns:
        The configured package logger
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if log_file:
        try:
            handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
        except OSError as e:
            sys.stderr.write(f"Warning: cannot write log file {log_file}: {e}\n")
            handler = logging.NullHandler()
    else:
        handler = logging.NullHandler()

    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)
    return logger
