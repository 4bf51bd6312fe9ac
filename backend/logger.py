"""Logging setup for the orders dashboard."""

from __future__ import annotations

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

LOGGER_NAME = "orders_dashboard"


def setup_logger(log_dir: str = "data/logs", level: str = "INFO") -> logging.Logger:
    """
    Configure the shared ``orders_dashboard`` logger.

    Writes to a daily rotating file (seven days kept) and to the console.
    Calling it again returns the already configured logger untouched.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level.upper())

    if logger.handlers:
        return logger

    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    file_handler = TimedRotatingFileHandler(
        filename=directory / "orders.log",
        when="midnight",
        interval=1,
        backupCount=7,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    logger.info("Logger initialized (daily rotation enabled)")
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return a child of the dashboard logger, e.g. ``orders_dashboard.client``."""
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


__all__ = ["LOGGER_NAME", "setup_logger", "get_logger"]
