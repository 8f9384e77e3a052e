"""Effective per-day capacity for coworking passes.

Resolution order for a pass on a day:

1. an inactive pass is not offered (``pass_inactive``);
2. a date-restricted pass outside ``[available_from, available_until]`` is
   not offered (``not_yet_available`` / ``no_longer_available``);
3. among active overrides containing the day, the authoritative one wins:
   highest priority, then narrowest span, then most recently created;
4. with no override, the base ceiling applies, unlimited when the pass is not
   capacity limited.

Everything here is pure so the gate can resolve inside its locks.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional

from admission_engine.domain.intervals import contains
from admission_engine.domain.models import CoworkingPass, ScheduleOverride


REASON_PASS_INACTIVE = "pass_inactive"
REASON_NOT_YET_AVAILABLE = "not_yet_available"
REASON_NO_LONGER_AVAILABLE = "no_longer_available"
REASON_AT_CAPACITY = "at_capacity"

SOURCE_BASE = "base"


@dataclass(frozen=True)
class CeilingResolution:
    offered: bool
    ceiling: Optional[int]
    reason: Optional[str] = None
    override_id: Optional[int] = None
    next_available_date: Optional[date] = None

    @property
    def is_unlimited(self) -> bool:
        return self.offered and self.ceiling is None

    @property
    def source(self) -> str:
        if self.override_id is None:
            return SOURCE_BASE
        return f"override:{self.override_id}"

    def admits(self, demand: int) -> bool:
        if not self.offered:
            return False
        return self.ceiling is None or demand < self.ceiling

    def remaining(self, demand: int) -> Optional[int]:
        if self.ceiling is None:
            return None
        return max(0, self.ceiling - demand)


def base_ceiling(coworking_pass: CoworkingPass) -> Optional[int]:
    """None means unlimited."""
    if not coworking_pass.is_capacity_limited or coworking_pass.base_max_capacity is None:
        return None
    return coworking_pass.base_max_capacity


def select_authoritative_override(
    overrides: Iterable[ScheduleOverride],
    day: date,
) -> Optional[ScheduleOverride]:
    candidates = [
        override
        for override in overrides
        if override.is_active and contains(override.dates, day)
    ]
    if not candidates:
        return None
    # created_at is a sortable timestamp; id settles same-instant inserts.
    return max(
        candidates,
        key=lambda item: (item.priority, -item.span_days, item.created_at, item.override_id),
    )


def resolve_ceiling(
    coworking_pass: CoworkingPass,
    overrides: Iterable[ScheduleOverride],
    day: date,
) -> CeilingResolution:
    """Ceiling for ``day`` ignoring the offering window and the active flag.

    Used for the later days a multi-day pass covers: the window governs the
    start date only.
    """
    override = select_authoritative_override(
        (item for item in overrides if item.pass_id == coworking_pass.pass_id),
        day,
    )
    if override is None:
        return CeilingResolution(offered=True, ceiling=base_ceiling(coworking_pass))
    ceiling = override.max_capacity
    if ceiling is None:
        ceiling = base_ceiling(coworking_pass)
    return CeilingResolution(offered=True, ceiling=ceiling, override_id=override.override_id)


def offering_window_reason(
    coworking_pass: CoworkingPass,
    day: date,
) -> Optional[tuple[str, Optional[date]]]:
    """Return ``(reason, next_available_date)`` when the pass is not offered."""
    if not coworking_pass.is_active:
        return REASON_PASS_INACTIVE, None
    if not coworking_pass.is_date_restricted:
        return None
    if coworking_pass.available_from is not None and day < coworking_pass.available_from:
        return REASON_NOT_YET_AVAILABLE, coworking_pass.available_from
    if coworking_pass.available_until is not None and day > coworking_pass.available_until:
        return REASON_NO_LONGER_AVAILABLE, None
    return None


def resolve(
    coworking_pass: CoworkingPass,
    overrides: Iterable[ScheduleOverride],
    day: date,
) -> CeilingResolution:
    blocked = offering_window_reason(coworking_pass, day)
    if blocked is not None:
        reason, next_date = blocked
        return CeilingResolution(
            offered=False,
            ceiling=None,
            reason=reason,
            next_available_date=next_date,
        )
    return resolve_ceiling(coworking_pass, overrides, day)
