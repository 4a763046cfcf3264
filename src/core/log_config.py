"""
Loguru sink setup shared by the CLI and long-running callers.
"""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

from config import Settings

CONSOLE_FORMAT = "<dim>{time:HH:mm:ss}</dim> | <level>{level: <8}</level> | {message}"


def configure_logging(settings: Settings) -> None:
    """Replace the default loguru sink with stderr (and optionally a file)."""
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level, format=CONSOLE_FORMAT)

    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            level="DEBUG",
            rotation="10 MB",
            retention=5,
            enqueue=True,
        )
