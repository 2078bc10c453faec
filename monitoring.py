"""
monitoring.py - Logging setup and run reporting for the ingest pipeline.
"""

import logging
import sys

from config import LOG_DIR, LOG_FILE


def setup_logging(level: int = logging.INFO, log_to_file: bool = True) -> logging.Logger:
    """
    Set up structured logging to both file and stdout.
    Returns the root logger for the application.
    """
    logger = logging.getLogger("opportunity_ingest")
    logger.setLevel(level)

    # Prevent duplicate handlers on re-init
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    if log_to_file:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(LOG_FILE), mode="a", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger for a specific module."""
    return logging.getLogger(f"opportunity_ingest.{name}")


def log_source_success(logger: logging.Logger, source: str, found: int, inserted: int, updated: int):
    logger.info(f"[{source}] found={found} inserted={inserted} updated={updated}")


def log_source_failure(logger: logging.Logger, source: str, error):
    """Log a source failure. Accepts an exception or a plain message."""
    if isinstance(error, BaseException):
        logger.error(f"[{source}] Source failed: {type(error).__name__}: {error}")
    else:
        logger.error(f"[{source}] Source failed: {error}")


def log_run_transition(logger: logging.Logger, run_id, source: str, status: str):
    logger.info(f"Run {run_id} ({source}) -> {status}")


def log_run_summary(logger: logging.Logger, summary, duration: float):
    """Log a complete aggregate run summary."""
    totals = summary.totals
    logger.info("=" * 60)
    logger.info("RUN SUMMARY")
    logger.info(f"  Status:            {summary.status.value}")
    logger.info(f"  Sources run:       {len(summary.results)}")
    logger.info(f"  Found:             {totals['found']}")
    logger.info(f"  Inserted:          {totals['inserted']}")
    logger.info(f"  Updated:           {totals['updated']}")
    logger.info(f"  Users notified:    {len(summary.notified_users)}")
    logger.info(f"  Duration:          {duration:.1f}s")

    if summary.failed_sources:
        logger.warning("FAILED SOURCES:")
        for result in summary.results:
            if not result.success:
                logger.warning(f"  - {result.source}: {result.error}")

    logger.info("=" * 60)
