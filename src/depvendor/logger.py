"""Functions for logging."""

from __future__ import annotations

import logging
from typing import TextIO

PROGRESS_LOGGER_NAME = "depvendor.progress"


def setup_logger(level: str, stream: TextIO | None = None) -> None:
    """Configure root logger for the application so all modules log to stderr.

    Progress lines emitted by the tree writers go through a separate logger that
    prints bare messages, so they read like the report they are.
    """
    level_name = level.upper()
    level_value = getattr(logging, level_name, logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level_value)
    # Remove all handlers associated with the root logger (avoid duplicate logs)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))
    root_logger.addHandler(handler)

    progress = logging.getLogger(PROGRESS_LOGGER_NAME)
    for handler in progress.handlers[:]:
        progress.removeHandler(handler)
    progress_handler = logging.StreamHandler(stream)
    progress_handler.setFormatter(logging.Formatter("%(message)s"))
    progress.addHandler(progress_handler)
    progress.setLevel(logging.INFO)
    progress.propagate = False


def progress_logger() -> logging.Logger:
    """Return the logger that receives per-project progress lines."""
    return logging.getLogger(PROGRESS_LOGGER_NAME)
