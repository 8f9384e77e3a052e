"""Structured logging utilities."""

from __future__ import annotations

import logging
import sys
from typing import Any, Optional

from admission_engine.utils.config import get_settings


_LOGGER_INITIALIZED = False


def configure_logging(level: Optional[str] = None) -> None:
    """Configure process-wide logging once.

    Admission decisions, rejections and reconciliation runs all go through
    this single stdout handler so the pipe-delimited format is shared by
    every layer.
    """

    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    settings = get_settings()
    resolved_level = (level or settings.log_level).upper()

    logging.basicConfig(
        level=resolved_level,
        format=(
            "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
        ),
        stream=sys.stdout,
    )
    _LOGGER_INITIALIZED = True


def get_logger(name: str) -> logging.Logger:
    """Return a configured logger for the requested module."""
    configure_logging()
    return logging.getLogger(name)


def format_fields(**fields: Any) -> str:
    """Render keyword fields as ``key=value | key=value`` in argument order."""
    return " | ".join(f"{key}={value}" for key, value in fields.items())
