"""Domain models for apartment stays and coworking pass capacity."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional

from admission_engine.domain.intervals import DateRange


RESOURCE_AVAILABLE = "available"
RESOURCE_UNAVAILABLE = "unavailable"
RESOURCE_STATUSES = (RESOURCE_AVAILABLE, RESOURCE_UNAVAILABLE)

RESERVATION_CONFIRMED = "confirmed"
RESERVATION_CHECKED_IN = "checked_in"
RESERVATION_CHECKED_OUT = "checked_out"
RESERVATION_CANCELLED = "cancelled"
RESERVATION_STATES = (
    RESERVATION_CONFIRMED,
    RESERVATION_CHECKED_IN,
    RESERVATION_CHECKED_OUT,
    RESERVATION_CANCELLED,
)
# Only these states hold days on a resource.
OCCUPYING_RESERVATION_STATES = (RESERVATION_CONFIRMED, RESERVATION_CHECKED_IN)

PASS_BOOKING_PENDING = "pending"
PASS_BOOKING_CONFIRMED = "confirmed"
PASS_BOOKING_ACTIVE = "active"
PASS_BOOKING_COMPLETED = "completed"
PASS_BOOKING_CANCELLED = "cancelled"
PASS_BOOKING_STATUSES = (
    PASS_BOOKING_PENDING,
    PASS_BOOKING_CONFIRMED,
    PASS_BOOKING_ACTIVE,
    PASS_BOOKING_COMPLETED,
    PASS_BOOKING_CANCELLED,
)
PASS_BOOKING_ADMISSION_STATUSES = (PASS_BOOKING_PENDING, PASS_BOOKING_CONFIRMED)

RESERVATION_TRANSITIONS: dict[str, frozenset[str]] = {
    RESERVATION_CONFIRMED: frozenset({RESERVATION_CHECKED_IN, RESERVATION_CANCELLED}),
    RESERVATION_CHECKED_IN: frozenset({RESERVATION_CHECKED_OUT, RESERVATION_CANCELLED}),
    RESERVATION_CHECKED_OUT: frozenset(),
    RESERVATION_CANCELLED: frozenset(),
}

# Cancelled is terminal: reviving a booking would skip the capacity check.
PASS_BOOKING_TRANSITIONS: dict[str, frozenset[str]] = {
    PASS_BOOKING_PENDING: frozenset({PASS_BOOKING_CONFIRMED, PASS_BOOKING_CANCELLED}),
    PASS_BOOKING_CONFIRMED: frozenset({PASS_BOOKING_ACTIVE, PASS_BOOKING_CANCELLED}),
    PASS_BOOKING_ACTIVE: frozenset({PASS_BOOKING_COMPLETED, PASS_BOOKING_CANCELLED}),
    PASS_BOOKING_COMPLETED: frozenset(),
    PASS_BOOKING_CANCELLED: frozenset(),
}


@dataclass(frozen=True)
class Resource:
    resource_id: int
    title: str
    price: float
    capacity: int
    status: str = RESOURCE_AVAILABLE

    @property
    def is_offerable(self) -> bool:
        return self.status == RESOURCE_AVAILABLE


@dataclass(frozen=True)
class Reservation:
    reservation_id: int
    resource_id: int
    stay_id: str
    start_date: date
    end_date: date
    state: str
    guest_name: str = ""

    @property
    def dates(self) -> DateRange:
        return DateRange(self.start_date, self.end_date)

    @property
    def is_occupying(self) -> bool:
        return self.state in OCCUPYING_RESERVATION_STATES


@dataclass(frozen=True)
class ResourceBlock:
    """Operator-entered closure (maintenance, external calendar import)."""

    block_id: int
    resource_id: int
    start_date: date
    end_date: date
    reason: str

    @property
    def dates(self) -> DateRange:
        return DateRange(self.start_date, self.end_date)


@dataclass(frozen=True)
class CoworkingPass:
    pass_id: int
    name: str
    duration_days: int = 1
    base_max_capacity: Optional[int] = None
    is_capacity_limited: bool = False
    is_date_restricted: bool = False
    available_from: Optional[date] = None
    available_until: Optional[date] = None
    is_active: bool = True
    current_capacity: int = 0


@dataclass(frozen=True)
class ScheduleOverride:
    """Date-scoped capacity exception; ``start_date``/``end_date`` are inclusive."""

    override_id: int
    pass_id: int
    name: str
    start_date: date
    end_date: date
    max_capacity: Optional[int]
    priority: int
    is_active: bool
    created_at: str

    @property
    def dates(self) -> DateRange:
        return DateRange.inclusive(self.start_date, self.end_date)

    @property
    def span_days(self) -> int:
        return (self.end_date - self.start_date).days + 1


@dataclass(frozen=True)
class PassBooking:
    booking_id: int
    pass_id: int
    start_date: date
    end_date: date
    status: str
    customer_name: str = ""

    @property
    def dates(self) -> DateRange:
        return DateRange(self.start_date, self.end_date)


@dataclass(frozen=True)
class StaySegment:
    """One apartment leg of a stay."""

    resource_id: int
    dates: DateRange
