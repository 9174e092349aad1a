# Author: PB & Claude
# Maintainer: PB
# Original date: 2026.09.14
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/greycrypt/system/logging_setup.py

import sys
from pathlib import Path
from typing import Optional

from loguru import logger


def setup_logging(local_log: Optional[Path] = None, debug: bool = False) -> None:
    """Setup loguru logging for the entire application.

    Configures:
    - Console output: WARNING+ only (DEBUG+ with debug=True)
    - File output: DEBUG+ if local_log is configured
    """
    logger.remove()

    logger.add(
        sys.stderr,
        level="DEBUG" if debug else "WARNING",
        format="<level>{level}</level>: {message}",
        colorize=True
    )

    if not local_log:
        return

    try:
        log_dir = Path(local_log)
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / "greycrypt.log"

        logger.add(
            log_file,
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}",
            rotation="10 MB",
            retention="30 days",
            compression="gz"
        )
        logger.debug(f"File logging enabled: {log_file}")

    except Exception as e:
        # Don't fail the entire application if logging setup fails
        logger.warning(f"Failed to setup file logging: {e}")


class SyncLog:
    """Logging context for one sync pass.

    Holds the set of messages already warned about, so a condition hit for
    every file in a large tree is reported once per pass rather than once per
    file. A fresh instance per pass keeps the set from leaking across runs.
    """

    def __init__(self) -> None:
        self.warned: set[str] = set()

    def warn_once(self, message: str) -> bool:
        """Log message at WARNING unless already logged; returns True if it was emitted."""
        if message in self.warned:
            logger.debug(f"(repeat) {message}")
            return False
        self.warned.add(message)
        logger.warning(message)
        return True

    def info(self, message: str) -> None:
        logger.info(message)

    def debug(self, message: str) -> None:
        logger.debug(message)

    def warning(self, message: str) -> None:
        logger.warning(message)
