"""
Project-wide logging setup for tmplink.

Provides a simple, consistent console logger with optional JSON output.
Controlled via environment variables:
- TMPLINK_LOG_LEVEL: DEBUG|INFO|WARNING|ERROR|CRITICAL (default: INFO)
- TMPLINK_LOG_FORMAT: text|json (default: text)
"""
from __future__ import annotations

import logging
import os
from typing import Optional

from pythonjsonlogger import jsonlogger

TEXT_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"


def _get_level() -> int:
    level = os.getenv("TMPLINK_LOG_LEVEL", "INFO").upper()
    return getattr(logging, level, logging.INFO)


def _get_formatter() -> logging.Formatter:
    fmt = os.getenv("TMPLINK_LOG_FORMAT", "text").lower()
    if fmt == "json":
        return jsonlogger.JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "name": "logger"},
        )
    return logging.Formatter(fmt=TEXT_FORMAT, datefmt=DATE_FORMAT)


def setup_logging(force: bool = False, *, logger: Optional[logging.Logger] = None) -> None:
    """Configure logging for console output.

    If a handler is already present and force is False, this is a no-op.
    """
    target_logger = logger or logging.getLogger()
    if target_logger.handlers and not force:
        return

    # Clear existing handlers when forcing
    if force:
        for h in list(target_logger.handlers):
            target_logger.removeHandler(h)

    target_logger.setLevel(_get_level())

    handler = logging.StreamHandler()
    handler.setFormatter(_get_formatter())
    target_logger.addHandler(handler)
