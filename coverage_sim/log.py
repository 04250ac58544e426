"""Logging setup for the simulator and its scripts."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
ROOT_LOGGER = "coverage_sim"


def setup_logging(level: int = logging.INFO, path: Optional[str] = None) -> logging.Logger:
    """Attach a console handler (and optionally a file handler) to the package logger.

    Calling this more than once never stacks duplicate handlers.
    """

    logger = logging.getLogger(ROOT_LOGGER)
    formatter = logging.Formatter(LOG_FORMAT)
    if not any(getattr(h, "_coverage_sim", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(formatter)
        handler._coverage_sim = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    if path is not None:
        target = os.path.abspath(path)
        if not any(getattr(h, "baseFilename", None) == target for h in logger.handlers):
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(path, encoding="utf-8")
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
            logger.info("File logging enabled: %s", path)
    logger.setLevel(level)
    return logger


__all__ = ["setup_logging", "LOG_FORMAT"]
