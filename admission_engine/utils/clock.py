"""Calendar-day clock pinned to the deployment's reference timezone."""

from __future__ import annotations

from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from admission_engine.utils.config import Settings, get_settings


def today(settings: Optional[Settings] = None) -> date:
    resolved = settings or get_settings()
    return datetime.now(ZoneInfo(resolved.reference_timezone)).date()


def utc_timestamp() -> str:
    """ISO timestamp with microseconds, sortable as text."""
    return datetime.now(ZoneInfo("UTC")).strftime("%Y-%m-%dT%H:%M:%S.%f")
