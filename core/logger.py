"""
Logging setup shared by the API, the workers and the classification client.
"""
import logging
import os
import sys
from typing import Iterable, Optional

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Chatty third-party loggers, capped at WARNING unless running in DEBUG
NOISY_LOGGERS = ("urllib3", "httpx", "asyncio")


def _resolve_level(level: Optional[str]) -> int:
    name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    return getattr(logging, name, logging.INFO)


def setup_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a module logger writing to stdout.

    Args:
        name: Logger name (usually __name__)
        level: DEBUG, INFO, WARNING or ERROR; falls back to LOG_LEVEL, then INFO

    Returns:
        Configured logger instance
    """
    numeric_level = _resolve_level(level)
    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(numeric_level)
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(handler)
        logger.propagate = False

    return logger


def quiet_library_loggers(level: Optional[str] = None, names: Iterable[str] = NOISY_LOGGERS) -> None:
    """Raise third-party loggers to WARNING unless the service itself logs at DEBUG."""
    if _resolve_level(level) <= logging.DEBUG:
        return
    for name in names:
        logging.getLogger(name).setLevel(logging.WARNING)
