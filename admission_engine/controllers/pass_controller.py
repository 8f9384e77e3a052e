"""HTTP controller layer for coworking pass capacity and bookings."""

from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator

from admission_engine.controllers.dependencies import (
    get_admission_gate,
    get_reconciliation_service,
    to_http_exception,
)
from admission_engine.domain.errors import AdmissionError
from admission_engine.domain.models import (
    PASS_BOOKING_ADMISSION_STATUSES,
    PASS_BOOKING_STATUSES,
    ScheduleOverride,
)
from admission_engine.services.admission_gate import AdmissionGate
from admission_engine.services.reconciliation_service import ReconciliationService
from admission_engine.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["passes"])


class PassAvailabilityResponse(BaseModel):
    pass_id: int = Field(gt=0)
    target_date: date
    available: bool
    reason: str | None = None
    next_available_date: date | None = None
    ceiling: int | None = Field(default=None, ge=0)
    demand: int = Field(ge=0)
    source: str


class AdmitPassRequest(BaseModel):
    """Input DTO validated before entering service layer."""

    target_date: date
    customer_name: str = Field(default="", max_length=200)
    status: str | None = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is not None and value not in PASS_BOOKING_ADMISSION_STATUSES:
            raise ValueError(
                f"status must be one of {', '.join(PASS_BOOKING_ADMISSION_STATUSES)}"
            )
        return value


class AdmitPassResponse(BaseModel):
    booking_id: int = Field(gt=0)
    pass_id: int = Field(gt=0)
    target_date: date


class BookingStatusRequest(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: str) -> str:
        if value not in PASS_BOOKING_STATUSES:
            raise ValueError(f"status must be one of {', '.join(PASS_BOOKING_STATUSES)}")
        return value


class PassBookingResponse(BaseModel):
    booking_id: int = Field(gt=0)
    pass_id: int = Field(gt=0)
    start_date: date
    end_date: date
    status: str


class DayCapacityResponse(BaseModel):
    day: date
    offered: bool
    reason: str | None = None
    ceiling: int | None = Field(default=None, ge=0)
    demand: int = Field(ge=0)
    remaining: int | None = Field(default=None, ge=0)
    source: str


class PassCapacityResponse(BaseModel):
    pass_id: int = Field(gt=0)
    name: str
    days: list[DayCapacityResponse]


class CreateOverrideRequest(BaseModel):
    start_date: date
    end_date: date
    max_capacity: int | None = Field(default=None, ge=0)
    priority: int = 0
    name: str = Field(default="", max_length=200)

    @model_validator(mode="after")
    def validate_order(self) -> "CreateOverrideRequest":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class OverrideResponse(BaseModel):
    override_id: int = Field(gt=0)
    pass_id: int = Field(gt=0)
    name: str
    start_date: date
    end_date: date
    max_capacity: int | None = None
    priority: int
    is_active: bool
    created_at: str


class OverrideActiveRequest(BaseModel):
    is_active: bool


class ReconcileRequest(BaseModel):
    as_of: date | None = None


class ReconcileResponse(BaseModel):
    as_of: date
    updated: dict[int, int]
    failed: dict[int, str]


def _override_response(override: ScheduleOverride) -> OverrideResponse:
    return OverrideResponse(
        override_id=override.override_id,
        pass_id=override.pass_id,
        name=override.name,
        start_date=override.start_date,
        end_date=override.end_date,
        max_capacity=override.max_capacity,
        priority=override.priority,
        is_active=override.is_active,
        created_at=override.created_at,
    )


@router.get(
    "/passes/{pass_id}/availability",
    response_model=PassAvailabilityResponse,
    status_code=status.HTTP_200_OK,
)
def check_pass_availability(
    pass_id: int,
    target_date: date = Query(...),
    gate: AdmissionGate = Depends(get_admission_gate),
) -> PassAvailabilityResponse:
    """Display check only; booking re-validates under the gate."""
    try:
        result = gate.check_pass_availability(pass_id, target_date)
    except AdmissionError as exc:
        raise to_http_exception(exc) from exc
    return PassAvailabilityResponse(
        pass_id=result.pass_id,
        target_date=result.target_date,
        available=result.available,
        reason=result.reason,
        next_available_date=result.next_available_date,
        ceiling=result.ceiling,
        demand=result.demand,
        source=result.source,
    )


@router.post(
    "/passes/{pass_id}/bookings",
    response_model=AdmitPassResponse,
    status_code=status.HTTP_201_CREATED,
)
def admit_pass(
    pass_id: int,
    payload: AdmitPassRequest,
    gate: AdmissionGate = Depends(get_admission_gate),
) -> AdmitPassResponse:
    try:
        booking_id = gate.admit_pass(
            pass_id,
            payload.target_date,
            customer_name=payload.customer_name.strip(),
            status=payload.status,
        )
    except AdmissionError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected pass admission failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to admit pass booking",
        ) from exc
    return AdmitPassResponse(booking_id=booking_id, pass_id=pass_id, target_date=payload.target_date)


@router.post(
    "/pass_bookings/{booking_id}/status",
    response_model=PassBookingResponse,
    status_code=status.HTTP_200_OK,
)
def update_booking_status(
    booking_id: int,
    payload: BookingStatusRequest,
    gate: AdmissionGate = Depends(get_admission_gate),
) -> PassBookingResponse:
    try:
        booking = gate.update_booking_status(booking_id, payload.status)
    except AdmissionError as exc:
        raise to_http_exception(exc) from exc
    return PassBookingResponse(
        booking_id=booking.booking_id,
        pass_id=booking.pass_id,
        start_date=booking.start_date,
        end_date=booking.end_date,
        status=booking.status,
    )


@router.get(
    "/passes/{pass_id}/capacity",
    response_model=PassCapacityResponse,
    status_code=status.HTTP_200_OK,
)
def pass_capacity(
    pass_id: int,
    start: date = Query(...),
    end: date = Query(..., description="Inclusive end date"),
    gate: AdmissionGate = Depends(get_admission_gate),
) -> PassCapacityResponse:
    try:
        info = gate.get_capacity_info(pass_id, start, end)
    except AdmissionError as exc:
        raise to_http_exception(exc) from exc
    return PassCapacityResponse(
        pass_id=info.pass_id,
        name=info.name,
        days=[
            DayCapacityResponse(
                day=item.day,
                offered=item.offered,
                reason=item.reason,
                ceiling=item.ceiling,
                demand=item.demand,
                remaining=item.remaining,
                source=item.source,
            )
            for item in info.days
        ],
    )


@router.post(
    "/passes/{pass_id}/overrides",
    response_model=OverrideResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_override(
    pass_id: int,
    payload: CreateOverrideRequest,
    gate: AdmissionGate = Depends(get_admission_gate),
) -> OverrideResponse:
    try:
        override = gate.create_override(
            pass_id,
            start_date=payload.start_date,
            end_date=payload.end_date,
            max_capacity=payload.max_capacity,
            priority=payload.priority,
            name=payload.name.strip(),
        )
    except AdmissionError as exc:
        raise to_http_exception(exc) from exc
    return _override_response(override)


@router.get(
    "/passes/{pass_id}/overrides",
    response_model=list[OverrideResponse],
    status_code=status.HTTP_200_OK,
)
def list_overrides(
    pass_id: int,
    active_only: bool = Query(default=False),
    gate: AdmissionGate = Depends(get_admission_gate),
) -> list[OverrideResponse]:
    try:
        overrides = gate.list_overrides(pass_id, active_only=active_only)
    except AdmissionError as exc:
        raise to_http_exception(exc) from exc
    return [_override_response(item) for item in overrides]


@router.post(
    "/overrides/{override_id}/active",
    response_model=OverrideResponse,
    status_code=status.HTTP_200_OK,
)
def set_override_active(
    override_id: int,
    payload: OverrideActiveRequest,
    gate: AdmissionGate = Depends(get_admission_gate),
) -> OverrideResponse:
    try:
        override = gate.set_override_active(override_id, payload.is_active)
    except AdmissionError as exc:
        raise to_http_exception(exc) from exc
    return _override_response(override)


@router.post(
    "/passes/reconcile",
    response_model=ReconcileResponse,
    status_code=status.HTTP_200_OK,
)
def reconcile_pass_capacities(
    payload: ReconcileRequest,
    service: ReconciliationService = Depends(get_reconciliation_service),
) -> ReconcileResponse:
    """Refresh cached pass counters; failures are reported, not retried."""
    report = service.recalculate_pass_capacities(payload.as_of)
    return ReconcileResponse(as_of=report.as_of, updated=report.updated, failed=report.failed)
