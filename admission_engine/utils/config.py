"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str = "Resource Admission Engine"
    app_version: str = "1.0.0"
    log_level: str = "INFO"

    database_path: Path = Path("data/admission.db")
    reference_timezone: str = "UTC"
    seed_demo_data: bool = True

    # Apartment stays
    stay_minimum_days: int = 30
    stay_partial_threshold_days: int = 14
    stay_max_split_segments: int = 3
    stay_next_available_horizon_days: int = 180

    # Coworking passes
    pass_next_available_horizon_days: int = 60
    pass_default_booking_status: str = "confirmed"

    # Bounded wait for per-key locks and the SQLite write lock
    admission_lock_timeout_seconds: float = 5.0

    # Longest calendar or capacity window a single read may span
    max_query_days: int = 731


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process from ADMISSION_* environment variables."""
    defaults = Settings()
    return Settings(
        app_name=_env_str("ADMISSION_APP_NAME", defaults.app_name),
        app_version=_env_str("ADMISSION_APP_VERSION", defaults.app_version),
        log_level=_env_str("ADMISSION_LOG_LEVEL", defaults.log_level),
        database_path=Path(
            _env_str("ADMISSION_DATABASE_PATH", str(defaults.database_path))
        ),
        reference_timezone=_env_str(
            "ADMISSION_REFERENCE_TIMEZONE", defaults.reference_timezone
        ),
        seed_demo_data=_env_bool("ADMISSION_SEED_DEMO_DATA", defaults.seed_demo_data),
        stay_minimum_days=_env_int("ADMISSION_STAY_MINIMUM_DAYS", defaults.stay_minimum_days),
        stay_partial_threshold_days=_env_int(
            "ADMISSION_STAY_PARTIAL_THRESHOLD_DAYS",
            defaults.stay_partial_threshold_days,
        ),
        stay_max_split_segments=_env_int(
            "ADMISSION_STAY_MAX_SPLIT_SEGMENTS",
            defaults.stay_max_split_segments,
        ),
        stay_next_available_horizon_days=_env_int(
            "ADMISSION_STAY_NEXT_AVAILABLE_HORIZON_DAYS",
            defaults.stay_next_available_horizon_days,
        ),
        pass_next_available_horizon_days=_env_int(
            "ADMISSION_PASS_NEXT_AVAILABLE_HORIZON_DAYS",
            defaults.pass_next_available_horizon_days,
        ),
        pass_default_booking_status=_env_str(
            "ADMISSION_PASS_DEFAULT_BOOKING_STATUS",
            defaults.pass_default_booking_status,
        ),
        admission_lock_timeout_seconds=_env_float(
            "ADMISSION_LOCK_TIMEOUT_SECONDS",
            defaults.admission_lock_timeout_seconds,
        ),
        max_query_days=_env_int("ADMISSION_MAX_QUERY_DAYS", defaults.max_query_days),
    )
