"""Logging setup for the ``meshquery`` namespace."""

from __future__ import annotations

import logging
import sys
from typing import Optional


def setup_logging(level: int | str = logging.WARNING, log_file: Optional[str] = None) -> logging.Logger:
    """Configure the ``meshquery`` logger.

    Args:
        level: Logging level, either numeric or a name such as ``"DEBUG"``.
        log_file: Optional path that receives a copy of every record.
    """
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"unknown log level: {level}")
        level = resolved

    logger = logging.getLogger("meshquery")
    logger.setLevel(level)

    # Re-running setup must not duplicate output.
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.debug("meshquery logging configured at level %s", logging.getLevelName(level))
    return logger
