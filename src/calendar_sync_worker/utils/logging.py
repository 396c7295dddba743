"""Logging configuration."""

import logging
import sys

from calendar_sync_worker.config import get_settings

LOGGER_NAME = "calendar_sync_worker"


def setup_logging() -> None:
    """Configure logging for the service."""
    settings = get_settings()

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(settings.log_level)

    # Worker and API server both call this at import time
    if any(getattr(h, "_calendar_sync_handler", False) for h in logger.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(settings.log_level)
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    handler._calendar_sync_handler = True
    logger.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    """Get logger instance."""
    return logging.getLogger(f"{LOGGER_NAME}.{name}")
