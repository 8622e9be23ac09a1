"""Logger setup shared by every module."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

LOG_FORMAT = "[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _log_file() -> Path | None:
    log_dir = os.getenv("WAKE_PROOF_LOG_DIR", "")
    if not log_dir:
        return None
    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)
    return path / "wake_proof.log"


def setup_logger(name: str) -> logging.Logger:
    """Return a named logger writing to stdout and, if WAKE_PROOF_LOG_DIR is set, to a file."""
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    logger.setLevel(logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    log_file = _log_file()
    if log_file is not None:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
