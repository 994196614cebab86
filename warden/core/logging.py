"""Centralized logging configuration for warden."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from warden.core.config import get_settings

_configured = False


def setup_logging() -> logging.Logger:
    """Configure the warden logger with console + rotating file handlers. Idempotent."""
    global _configured
    if _configured:
        return logging.getLogger("warden")

    settings = get_settings()
    logger = logging.getLogger("warden")
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    logger.propagate = False

    fmt = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Console goes to stderr so `warden audit` output stays pipeable
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(fmt)
    logger.addHandler(console)

    # File handler (rotating, 5 MB × 3 backups)
    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
        )
        file_handler.setFormatter(fmt)
        logger.addHandler(file_handler)

    _configured = True
    logger.info("Logging initialised (level=%s, file=%s)", settings.log_level, settings.log_file or "-")
    return logger


def get_logger(name: str = "warden") -> logging.Logger:
    """Get a child of the warden logger. Call setup_logging() at startup first."""
    if name == "warden" or name.startswith("warden."):
        return logging.getLogger(name)
    return logging.getLogger(f"warden.{name}")
