"""Capacity-checked admission of coworking pass bookings.

Every admission runs as compare-and-insert: the live demand for each covered
day is recounted and the booking inserted inside one storage write
transaction, while per ``(pass_id, day)`` locks keep same-process callers for
the same day in line. The cached ``current_capacity`` counter on a pass is
never consulted here.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, timedelta
from typing import Optional, Sequence

from admission_engine.domain.constraints import (
    AdmissionConfig,
    admission_config_from_settings,
    ensure_transition,
)
from admission_engine.domain.errors import (
    AdmissionTimeoutError,
    AtCapacityError,
    BookingNotFoundError,
    InvalidRangeError,
    NotAvailableError,
    OverrideNotFoundError,
    PassNotFoundError,
)
from admission_engine.domain.intervals import DateRange, days_in, iter_days
from admission_engine.domain.models import (
    PASS_BOOKING_ADMISSION_STATUSES,
    PASS_BOOKING_TRANSITIONS,
    CoworkingPass,
    PassBooking,
    ScheduleOverride,
)
from admission_engine.repository.data_repository import DataRepository
from admission_engine.services.capacity_resolver import (
    REASON_AT_CAPACITY,
    REASON_NO_LONGER_AVAILABLE,
    CeilingResolution,
    resolve,
    resolve_ceiling,
)
from admission_engine.services.notification_service import NotificationService, dispatch
from admission_engine.utils.config import Settings, get_settings
from admission_engine.utils.locks import KeyedLockRegistry, LockTimeoutError
from admission_engine.utils.logger import format_fields, get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class PassAvailability:
    pass_id: int
    target_date: date
    available: bool
    reason: Optional[str] = None
    next_available_date: Optional[date] = None
    ceiling: Optional[int] = None
    demand: int = 0
    source: str = "base"


@dataclass(frozen=True)
class AdmissionDecision:
    pass_id: int
    target_date: date
    admitted: bool
    booking_id: Optional[int] = None
    reason: Optional[str] = None
    next_available_date: Optional[date] = None


@dataclass(frozen=True)
class DayCapacity:
    day: date
    offered: bool
    reason: Optional[str]
    ceiling: Optional[int]
    demand: int
    remaining: Optional[int]
    source: str


@dataclass(frozen=True)
class PassCapacityInfo:
    pass_id: int
    name: str
    days: list[DayCapacity]


def coverage_for(coworking_pass: CoworkingPass, start: date) -> DateRange:
    return DateRange(start, start + timedelta(days=coworking_pass.duration_days))


def evaluate_admission(
    coworking_pass: CoworkingPass,
    overrides: Sequence[ScheduleOverride],
    demand: dict[date, int],
    start: date,
) -> tuple[CeilingResolution, Optional[date]]:
    """Resolve ``start`` and check every covered day against its ceiling.

    Returns the start-day resolution and the first covered day whose demand
    already meets its ceiling (None when the booking fits). The offering
    window applies to the start day only.
    """
    opening = resolve(coworking_pass, overrides, start)
    if not opening.offered:
        return opening, None
    for day in iter_days(coverage_for(coworking_pass, start)):
        resolution = opening if day == start else resolve_ceiling(coworking_pass, overrides, day)
        if not resolution.admits(demand.get(day, 0)):
            return opening, day
    return opening, None


class AdmissionGate:
    """Admits pass bookings so that demand never exceeds any day's ceiling."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        locks: Optional[KeyedLockRegistry] = None,
        notifier: Optional[NotificationService] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._locks = locks or KeyedLockRegistry()
        self._notifier = notifier or NotificationService()
        self._config: AdmissionConfig = admission_config_from_settings(self._settings)

    def _require_pass(self, pass_id: int) -> CoworkingPass:
        coworking_pass = self._repository.get_pass(pass_id)
        if coworking_pass is None:
            raise PassNotFoundError(f"Pass {pass_id} not found")
        return coworking_pass

    def _overrides(self, pass_id: int, window: DateRange) -> list[ScheduleOverride]:
        return self._repository.list_overrides(pass_id, active_only=True, window=window)

    def next_available_date(
        self,
        coworking_pass: CoworkingPass,
        after: date,
        horizon_days: Optional[int] = None,
    ) -> Optional[date]:
        """First start date after ``after`` on which the pass would be admitted.

        Best effort: a read snapshot, not a reservation of the date.
        """
        horizon = horizon_days or self._config.pass_next_available_horizon_days
        first = after + timedelta(days=1)
        last = after + timedelta(days=horizon)
        window = DateRange(first, last + timedelta(days=coworking_pass.duration_days))
        overrides = self._overrides(coworking_pass.pass_id, window)
        demand = self._repository.demand_by_day(coworking_pass.pass_id, window)
        for candidate in iter_days(DateRange.inclusive(first, last)):
            opening, blocking_day = evaluate_admission(coworking_pass, overrides, demand, candidate)
            if not opening.offered:
                if opening.reason == REASON_NO_LONGER_AVAILABLE:
                    return None
                continue
            if blocking_day is None:
                return candidate
        return None

    def check_pass_availability(self, pass_id: int, target_date: date) -> PassAvailability:
        """Lock-free display check; ``admit_pass`` re-validates."""
        coworking_pass = self._require_pass(pass_id)
        coverage = coverage_for(coworking_pass, target_date)
        overrides = self._overrides(pass_id, coverage)
        demand = self._repository.demand_by_day(pass_id, coverage)
        opening, blocking_day = evaluate_admission(coworking_pass, overrides, demand, target_date)

        if not opening.offered:
            return PassAvailability(
                pass_id=pass_id,
                target_date=target_date,
                available=False,
                reason=opening.reason,
                next_available_date=opening.next_available_date,
            )
        if blocking_day is not None:
            return PassAvailability(
                pass_id=pass_id,
                target_date=target_date,
                available=False,
                reason=REASON_AT_CAPACITY,
                next_available_date=self.next_available_date(coworking_pass, target_date),
                ceiling=opening.ceiling,
                demand=demand.get(target_date, 0),
                source=opening.source,
            )
        return PassAvailability(
            pass_id=pass_id,
            target_date=target_date,
            available=True,
            ceiling=opening.ceiling,
            demand=demand.get(target_date, 0),
            source=opening.source,
        )

    def try_admit(
        self,
        pass_id: int,
        target_date: date,
        *,
        customer_name: str = "",
        status: Optional[str] = None,
    ) -> AdmissionDecision:
        coworking_pass = self._require_pass(pass_id)
        booking_status = status or self._config.pass_default_booking_status
        if booking_status not in PASS_BOOKING_ADMISSION_STATUSES:
            raise InvalidRangeError(
                f"New bookings must start as one of {', '.join(PASS_BOOKING_ADMISSION_STATUSES)}"
            )
        coverage = coverage_for(coworking_pass, target_date)
        lock_keys = [("pass", pass_id, day.isoformat()) for day in iter_days(coverage)]

        booking_id: Optional[int] = None
        try:
            with self._locks.hold(lock_keys, self._config.lock_timeout_seconds):
                overrides = self._overrides(pass_id, coverage)
                with self._repository.write_transaction() as tx:
                    demand = tx.demand_by_day(pass_id, coverage)
                    opening, blocking_day = evaluate_admission(
                        coworking_pass, overrides, demand, target_date
                    )
                    if opening.offered and blocking_day is None:
                        booking_id = tx.insert_pass_booking(
                            pass_id=pass_id,
                            dates=coverage,
                            status=booking_status,
                            customer_name=customer_name,
                        )
        except LockTimeoutError as exc:
            logger.warning(
                "Pass admission timed out | %s",
                format_fields(pass_id=pass_id, target_date=target_date, key=exc.key),
            )
            raise AdmissionTimeoutError(str(exc)) from exc

        if booking_id is not None:
            logger.info(
                "Pass admitted | %s",
                format_fields(
                    pass_id=pass_id,
                    target_date=target_date,
                    booking_id=booking_id,
                    demand=demand.get(target_date, 0) + 1,
                    ceiling=opening.ceiling,
                    source=opening.source,
                ),
            )
            dispatch(self._notifier.pass_admitted, booking_id, pass_id, coverage)
            return AdmissionDecision(
                pass_id=pass_id,
                target_date=target_date,
                admitted=True,
                booking_id=booking_id,
            )

        if not opening.offered:
            reason = opening.reason
            next_date = opening.next_available_date
        else:
            reason = REASON_AT_CAPACITY
            next_date = self.next_available_date(coworking_pass, target_date)
        logger.info(
            "Pass rejected | %s",
            format_fields(
                pass_id=pass_id,
                target_date=target_date,
                reason=reason,
                blocking_day=blocking_day,
                next_available_date=next_date,
            ),
        )
        return AdmissionDecision(
            pass_id=pass_id,
            target_date=target_date,
            admitted=False,
            reason=reason,
            next_available_date=next_date,
        )

    def admit_pass(
        self,
        pass_id: int,
        target_date: date,
        *,
        customer_name: str = "",
        status: Optional[str] = None,
    ) -> int:
        """Admit or raise; returns the new booking id."""
        decision = self.try_admit(
            pass_id,
            target_date,
            customer_name=customer_name,
            status=status,
        )
        if decision.admitted and decision.booking_id is not None:
            return decision.booking_id
        if decision.reason == REASON_AT_CAPACITY:
            raise AtCapacityError(
                f"Pass {pass_id} is at capacity on {target_date}",
                pass_id=pass_id,
                target_date=target_date,
                next_available_date=decision.next_available_date,
            )
        raise NotAvailableError(
            f"Pass {pass_id} is not offered on {target_date} ({decision.reason})",
            pass_id=pass_id,
            target_date=target_date,
            reason=decision.reason or "",
            next_available_date=decision.next_available_date,
        )

    def update_booking_status(self, booking_id: int, status: str) -> PassBooking:
        booking = self._repository.get_pass_booking(booking_id)
        if booking is None:
            raise BookingNotFoundError(f"Pass booking {booking_id} not found")
        ensure_transition(PASS_BOOKING_TRANSITIONS, booking.status, status, subject="pass booking")
        if not self._repository.update_pass_booking_status(
            booking_id, status, expected_status=booking.status
        ):
            # Someone else moved it first; re-read and re-check.
            return self.update_booking_status(booking_id, status)
        logger.info(
            "Pass booking status changed | %s",
            format_fields(booking_id=booking_id, previous=booking.status, status=status),
        )
        return replace(booking, status=status)

    def get_capacity_info(self, pass_id: int, start: date, end: date) -> PassCapacityInfo:
        """Per-day ceiling, demand and remaining capacity over ``[start, end]``."""
        if end < start:
            raise InvalidRangeError(f"End ({end}) must not be before start ({start})")
        coworking_pass = self._require_pass(pass_id)
        window = DateRange.inclusive(start, end)
        if days_in(window) > self._config.max_query_days:
            raise InvalidRangeError(
                f"Capacity window spans {days_in(window)} days; "
                f"at most {self._config.max_query_days} are allowed"
            )
        overrides = self._overrides(pass_id, window)
        demand = self._repository.demand_by_day(pass_id, window)
        days: list[DayCapacity] = []
        for day in iter_days(window):
            resolution = resolve(coworking_pass, overrides, day)
            count = demand.get(day, 0)
            days.append(
                DayCapacity(
                    day=day,
                    offered=resolution.offered,
                    reason=resolution.reason,
                    ceiling=resolution.ceiling,
                    demand=count,
                    remaining=resolution.remaining(count) if resolution.offered else 0,
                    source=resolution.source,
                )
            )
        return PassCapacityInfo(pass_id=pass_id, name=coworking_pass.name, days=days)

    # ------------------------------------------------------------------
    # Schedule overrides
    # ------------------------------------------------------------------

    def create_override(
        self,
        pass_id: int,
        *,
        start_date: date,
        end_date: date,
        max_capacity: Optional[int] = None,
        priority: int = 0,
        name: str = "",
    ) -> ScheduleOverride:
        self._require_pass(pass_id)
        if end_date < start_date:
            raise InvalidRangeError(
                f"Override end ({end_date}) must not be before start ({start_date})"
            )
        if max_capacity is not None and max_capacity < 0:
            raise InvalidRangeError("Override max_capacity must be >= 0")
        override_id = self._repository.create_override(
            pass_id=pass_id,
            start_date=start_date,
            end_date=end_date,
            max_capacity=max_capacity,
            priority=priority,
            name=name,
        )
        logger.info(
            "Schedule override created | %s",
            format_fields(
                override_id=override_id,
                pass_id=pass_id,
                start_date=start_date,
                end_date=end_date,
                max_capacity=max_capacity,
                priority=priority,
            ),
        )
        return self._require_override(override_id)

    def _require_override(self, override_id: int) -> ScheduleOverride:
        override = self._repository.get_override(override_id)
        if override is None:
            raise OverrideNotFoundError(f"Schedule override {override_id} not found")
        return override

    def list_overrides(self, pass_id: int, *, active_only: bool = False) -> list[ScheduleOverride]:
        self._require_pass(pass_id)
        return self._repository.list_overrides(pass_id, active_only=active_only)

    def set_override_active(self, override_id: int, is_active: bool) -> ScheduleOverride:
        if not self._repository.set_override_active(override_id, is_active):
            raise OverrideNotFoundError(f"Schedule override {override_id} not found")
        logger.info(
            "Schedule override toggled | %s",
            format_fields(override_id=override_id, is_active=is_active),
        )
        return self._require_override(override_id)
