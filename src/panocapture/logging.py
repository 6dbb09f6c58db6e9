"""Logging configuration helpers."""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from loguru import logger

CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"


def configure_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """Configure loguru with a console sink and, optionally, a log file.

    The file sink always records DEBUG so skipped capture slots and RANSAC
    details are available after a failed session.
    """
    logger.remove()
    logger.add(
        sink=lambda msg: print(msg, end=""),
        level=level.upper(),
        format=CONSOLE_FORMAT,
    )
    if log_file is not None:
        logger.add(
            str(log_file),
            level="DEBUG",
            format=FILE_FORMAT,
        )
