"""Logging configuration for the storefront service."""

import logging
import sys
from typing import Any

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
JSON_FORMAT = (
    '{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
    '"module": "%(name)s", "message": "%(message)s"}'
)


def setup_logging(level: str = "INFO", fmt: str = "text") -> None:
    """
    Configure the ``storefront`` package logger.

    Existing handlers are closed and replaced, so calling this again
    (e.g. on app reload) does not duplicate output.

    Args:
        level: Logging level name
        fmt: "text" or "json"
    """
    handler: logging.StreamHandler[Any] = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(JSON_FORMAT if fmt == "json" else TEXT_FORMAT))

    logger = logging.getLogger("storefront")
    logger.setLevel(level.upper())

    for old_handler in logger.handlers[:]:
        old_handler.close()
        logger.removeHandler(old_handler)

    logger.addHandler(handler)
    logger.propagate = False
