"""Domain-level validation rules for admission policy."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from admission_engine.domain.errors import InvalidTransitionError
from admission_engine.domain.models import PASS_BOOKING_ADMISSION_STATUSES
from admission_engine.utils.config import Settings


@dataclass(frozen=True)
class AdmissionConfig:
    minimum_stay_days: int
    partial_threshold_days: int
    max_split_segments: int
    stay_next_available_horizon_days: int
    pass_next_available_horizon_days: int
    pass_default_booking_status: str
    lock_timeout_seconds: float
    max_query_days: int


def admission_config_from_settings(settings: Settings) -> AdmissionConfig:
    config = AdmissionConfig(
        minimum_stay_days=settings.stay_minimum_days,
        partial_threshold_days=settings.stay_partial_threshold_days,
        max_split_segments=settings.stay_max_split_segments,
        stay_next_available_horizon_days=settings.stay_next_available_horizon_days,
        pass_next_available_horizon_days=settings.pass_next_available_horizon_days,
        pass_default_booking_status=settings.pass_default_booking_status,
        lock_timeout_seconds=settings.admission_lock_timeout_seconds,
        max_query_days=settings.max_query_days,
    )
    validate_admission_config(config)
    return config


def validate_admission_config(config: AdmissionConfig) -> None:
    if config.minimum_stay_days < 1:
        raise ValueError("minimum_stay_days must be >= 1")
    if config.partial_threshold_days < 1:
        raise ValueError("partial_threshold_days must be >= 1")
    if config.max_split_segments < 2:
        raise ValueError("max_split_segments must be >= 2")
    if config.stay_next_available_horizon_days <= 0:
        raise ValueError("stay_next_available_horizon_days must be > 0")
    if config.pass_next_available_horizon_days <= 0:
        raise ValueError("pass_next_available_horizon_days must be > 0")
    if config.pass_default_booking_status not in PASS_BOOKING_ADMISSION_STATUSES:
        raise ValueError(
            "pass_default_booking_status must be one of "
            f"{', '.join(PASS_BOOKING_ADMISSION_STATUSES)}"
        )
    if config.lock_timeout_seconds <= 0:
        raise ValueError("lock_timeout_seconds must be > 0")
    if config.max_query_days <= 0:
        raise ValueError("max_query_days must be > 0")


def ensure_transition(
    transitions: Mapping[str, frozenset[str]],
    current: str,
    requested: str,
    *,
    subject: str,
) -> None:
    """Raise InvalidTransitionError unless ``current -> requested`` is allowed."""
    if requested not in transitions:
        raise InvalidTransitionError(f"Unknown {subject} state: {requested}")
    if requested not in transitions.get(current, frozenset()):
        raise InvalidTransitionError(
            f"Cannot move {subject} from {current} to {requested}"
        )
