"""
Logging setup for the civic issues service.
"""

import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s"

NOISY_LOGGERS = ("httpx", "httpcore", "openai", "multipart", "passlib")


def setup_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Configure the root logger and return the application logger.

    Args:
        level: Log level name; defaults to the LOG_LEVEL environment variable

    Returns:
        The "civic_issues" logger
    """
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    numeric_level = getattr(logging, log_level, logging.INFO)

    logging.basicConfig(
        level=numeric_level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger = logging.getLogger("civic_issues")
    logger.setLevel(numeric_level)
    return logger
