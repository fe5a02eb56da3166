"""Logging configuration for tour scan runs."""
import logging
import os
from logging.handlers import RotatingFileHandler


def configure_logging(log_dir: str = "logs") -> None:
    """
    Attach a rotating file handler to the campustour logger tree.

    Creates the log directory if it doesn't exist.
    File: logs/tour_scan.log (5 MB per file, 7 backups = ~40 MB max)
    Covers both campustour.scheduler (per-university progress) and
    campustour.tours (fetch/probe/AI diagnostics).
    """
    os.makedirs(log_dir, exist_ok=True)

    handler = RotatingFileHandler(
        os.path.join(log_dir, "tour_scan.log"),
        maxBytes=5 * 1024 * 1024,   # 5 MB
        backupCount=7,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s: %(message)s"
    ))

    logger = logging.getLogger("campustour")
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
