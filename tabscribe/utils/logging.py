"""
Logging helpers for TabScribe.

Every context (coordinator, capture worker, CLI) configures logging once at
startup through setup_logging(); modules only call logging.getLogger(__name__).
"""

import logging
import os
import sys
from typing import Literal

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DEFAULT_DATEFMT = "%H:%M:%S"

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

# Third-party loggers that are too chatty at DEBUG
NOISY_LOGGERS = ("websockets", "asyncio")


def setup_logging(
    name: str | None = None,
    level: LogLevel | None = None,
    format: str = DEFAULT_FORMAT,
) -> logging.Logger:
    """
    Configure logging and return a logger.

    Args:
        name: Logger name (typically __name__). If None, returns root logger.
        level: Log level. Defaults to LOG_LEVEL env var or INFO.
        format: Log format string.

    Returns:
        Configured logger instance.
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO").upper()

    log_level = getattr(logging, level, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format=format,
        datefmt=DEFAULT_DATEFMT,
        stream=sys.stdout,
    )

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(max(log_level, logging.INFO))

    logger = logging.getLogger(name)
    logger.setLevel(log_level)
    return logger

