"""Errors surfaced to admission callers.

Each error carries enough structure for the caller to render a specific
message; none of them is retried automatically.
"""

from __future__ import annotations

from datetime import date
from typing import Optional


class AdmissionError(Exception):
    """Base exception for admission workflow failures."""

    code = "admission_error"

    def to_detail(self) -> dict[str, object]:
        return {"code": self.code, "message": str(self)}


class InvalidRangeError(AdmissionError):
    """Departure not after arrival, broken segment chain, or stay too short."""

    code = "invalid_range"


class ConflictError(AdmissionError):
    """A candidate reservation intersects an occupying reservation or block."""

    code = "conflict"

    def __init__(
        self,
        message: str,
        *,
        resource_id: int,
        start_date: date,
        end_date: date,
        blocking_kind: str,
        blocking_id: int,
    ) -> None:
        super().__init__(message)
        self.resource_id = resource_id
        self.start_date = start_date
        self.end_date = end_date
        self.blocking_kind = blocking_kind
        self.blocking_id = blocking_id

    def to_detail(self) -> dict[str, object]:
        detail = super().to_detail()
        detail.update(
            {
                "resource_id": self.resource_id,
                "start_date": self.start_date.isoformat(),
                "end_date": self.end_date.isoformat(),
                "blocking_kind": self.blocking_kind,
                "blocking_id": self.blocking_id,
            }
        )
        return detail


class AtCapacityError(AdmissionError):
    """Demand already meets the ceiling; callers may offer the hinted date."""

    code = "at_capacity"

    def __init__(
        self,
        message: str,
        *,
        pass_id: int,
        target_date: date,
        next_available_date: Optional[date] = None,
    ) -> None:
        super().__init__(message)
        self.pass_id = pass_id
        self.target_date = target_date
        self.next_available_date = next_available_date

    def to_detail(self) -> dict[str, object]:
        detail = super().to_detail()
        detail.update(
            {
                "pass_id": self.pass_id,
                "target_date": self.target_date.isoformat(),
                "next_available_date": (
                    self.next_available_date.isoformat()
                    if self.next_available_date is not None
                    else None
                ),
            }
        )
        return detail


class NotAvailableError(AdmissionError):
    """The pass is not offered on the date at all (window or inactive pass)."""

    code = "not_available"

    def __init__(
        self,
        message: str,
        *,
        pass_id: int,
        target_date: date,
        reason: str,
        next_available_date: Optional[date] = None,
    ) -> None:
        super().__init__(message)
        self.pass_id = pass_id
        self.target_date = target_date
        self.reason = reason
        self.next_available_date = next_available_date

    def to_detail(self) -> dict[str, object]:
        detail = super().to_detail()
        detail.update(
            {
                "pass_id": self.pass_id,
                "target_date": self.target_date.isoformat(),
                "reason": self.reason,
                "next_available_date": (
                    self.next_available_date.isoformat()
                    if self.next_available_date is not None
                    else None
                ),
            }
        )
        return detail


class AdmissionTimeoutError(AdmissionError):
    """Lock or write transaction not obtained in time; admission rejected."""

    code = "admission_timeout"


class ResourceNotFoundError(AdmissionError):
    code = "resource_not_found"


class PassNotFoundError(AdmissionError):
    code = "pass_not_found"


class BookingNotFoundError(AdmissionError):
    code = "booking_not_found"


class ReservationNotFoundError(AdmissionError):
    code = "reservation_not_found"


class OverrideNotFoundError(AdmissionError):
    code = "override_not_found"


class InvalidTransitionError(AdmissionError):
    """Requested lifecycle change is not allowed from the current state."""

    code = "invalid_transition"
