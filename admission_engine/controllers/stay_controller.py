"""HTTP controller layer for apartment stays, reservations and blocks."""

from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator

from admission_engine.controllers.dependencies import (
    get_occupancy_ledger,
    get_stay_admission_service,
    get_stay_planner,
    to_http_exception,
)
from admission_engine.domain.errors import AdmissionError
from admission_engine.domain.intervals import DateRange, InvalidIntervalError
from admission_engine.domain.models import RESOURCE_STATUSES, Reservation, StaySegment
from admission_engine.services.occupancy_ledger import OccupancyLedger
from admission_engine.services.stay_admission_service import StayAdmissionService
from admission_engine.services.stay_planner import (
    ResourceAvailability,
    SplitStayProposal,
    StayAdmissionPlanner,
)
from admission_engine.utils.clock import today
from admission_engine.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["stays"])


class StayAvailabilityRequest(BaseModel):
    """Input DTO validated before entering service layer."""

    arrival: date
    departure: date
    partial_threshold_days: int | None = Field(default=None, ge=1)

    @model_validator(mode="after")
    def validate_order(self) -> "StayAvailabilityRequest":
        if self.departure <= self.arrival:
            raise ValueError("departure must be after arrival")
        return self


class DateRangeResponse(BaseModel):
    start_date: date
    end_date: date


class UnavailablePeriodResponse(DateRangeResponse):
    kind: str
    ref_id: int
    state: str
    reason: str


class ResourceAvailabilityResponse(BaseModel):
    resource_id: int = Field(gt=0)
    title: str
    price: float = Field(ge=0.0)
    status: str
    classification: str
    total_days: int = Field(ge=0)
    available_days: int = Field(ge=0)
    is_fully_available: bool
    free_windows: list[DateRangeResponse]
    unavailable_periods: list[UnavailablePeriodResponse]


class SplitSegmentResponse(DateRangeResponse):
    resource_id: int = Field(gt=0)
    title: str
    price: float = Field(ge=0.0)


class SplitStayProposalResponse(BaseModel):
    found: bool
    segments: list[SplitSegmentResponse]
    total_price: float = Field(ge=0.0)
    reason: str | None = None


class StayAvailabilityResponse(BaseModel):
    arrival: date
    departure: date
    options: list[ResourceAvailabilityResponse]
    excluded: list[ResourceAvailabilityResponse]
    split_stay_proposal: SplitStayProposalResponse | None = None
    split_stay_options: list[SplitStayProposalResponse] = Field(default_factory=list)


class StaySegmentRequest(BaseModel):
    resource_id: int = Field(gt=0)
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def validate_order(self) -> "StaySegmentRequest":
        if self.end_date <= self.start_date:
            raise ValueError("segment end_date must be after start_date")
        return self


class AdmitStayRequest(BaseModel):
    arrival: date
    departure: date
    resource_id: int | None = Field(default=None, gt=0)
    segments: list[StaySegmentRequest] | None = None
    guest_name: str = Field(default="", max_length=200)

    @field_validator("guest_name")
    @classmethod
    def strip_guest_name(cls, value: str) -> str:
        return value.strip()

    @model_validator(mode="after")
    def validate_target(self) -> "AdmitStayRequest":
        if (self.resource_id is None) == (self.segments is None):
            raise ValueError("provide exactly one of resource_id or segments")
        return self


class AdmitStayResponse(BaseModel):
    stay_id: str
    reservation_ids: list[int]


class CancelStayResponse(BaseModel):
    stay_id: str
    cancelled_segments: int = Field(ge=0)


class ReservationResponse(BaseModel):
    reservation_id: int = Field(gt=0)
    resource_id: int = Field(gt=0)
    stay_id: str
    start_date: date
    end_date: date
    state: str


class NextAvailableResponse(BaseModel):
    resource_id: int = Field(gt=0)
    from_date: date
    next_available_date: date | None = None


class CalendarDayResponse(BaseModel):
    day: date
    status: str


class CalendarResponse(BaseModel):
    resource_id: int = Field(gt=0)
    days: list[CalendarDayResponse]


class ResourceStatusRequest(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in RESOURCE_STATUSES:
            raise ValueError(f"status must be one of {', '.join(RESOURCE_STATUSES)}")
        return normalized


class ResourceResponse(BaseModel):
    resource_id: int = Field(gt=0)
    title: str
    price: float = Field(ge=0.0)
    capacity: int = Field(ge=0)
    status: str


class CreateBlockRequest(BaseModel):
    start_date: date
    end_date: date
    reason: str = Field(default="blocked", min_length=1, max_length=200)


class CreateBlockResponse(BaseModel):
    block_id: int = Field(gt=0)
    resource_id: int = Field(gt=0)


def _range_response(dates: DateRange) -> dict[str, date]:
    return {"start_date": dates.start, "end_date": dates.end}


def _availability_response(item: ResourceAvailability) -> ResourceAvailabilityResponse:
    return ResourceAvailabilityResponse(
        resource_id=item.resource.resource_id,
        title=item.resource.title,
        price=item.resource.price,
        status=item.resource.status,
        classification=item.classification,
        total_days=item.total_days,
        available_days=item.available_days,
        is_fully_available=item.is_fully_available,
        free_windows=[DateRangeResponse(**_range_response(window)) for window in item.free_windows],
        unavailable_periods=[
            UnavailablePeriodResponse(
                **_range_response(period.dates),
                kind=period.kind,
                ref_id=period.ref_id,
                state=period.state,
                reason=period.reason,
            )
            for period in item.unavailable_periods
        ],
    )


def _proposal_response(proposal: SplitStayProposal) -> SplitStayProposalResponse:
    return SplitStayProposalResponse(
        found=proposal.found,
        segments=[
            SplitSegmentResponse(
                **_range_response(segment.dates),
                resource_id=segment.resource_id,
                title=segment.title,
                price=segment.price,
            )
            for segment in proposal.segments
        ],
        total_price=proposal.total_price,
        reason=proposal.reason,
    )


def _reservation_response(reservation: Reservation) -> ReservationResponse:
    return ReservationResponse(
        reservation_id=reservation.reservation_id,
        resource_id=reservation.resource_id,
        stay_id=reservation.stay_id,
        start_date=reservation.start_date,
        end_date=reservation.end_date,
        state=reservation.state,
    )


@router.post(
    "/stays/availability",
    response_model=StayAvailabilityResponse,
    status_code=status.HTTP_200_OK,
)
def check_stay_availability(
    payload: StayAvailabilityRequest,
    planner: StayAdmissionPlanner = Depends(get_stay_planner),
) -> StayAvailabilityResponse:
    """Rank apartments for the requested stay; never reserves anything."""
    try:
        report = planner.check_stay_availability(
            payload.arrival,
            payload.departure,
            partial_threshold_days=payload.partial_threshold_days,
        )
    except AdmissionError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected stay availability failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to check stay availability",
        ) from exc

    proposal: Optional[SplitStayProposalResponse] = None
    if report.split_stay_proposal is not None:
        proposal = _proposal_response(report.split_stay_proposal)
    return StayAvailabilityResponse(
        arrival=report.query.start,
        departure=report.query.end,
        options=[_availability_response(item) for item in report.options],
        excluded=[_availability_response(item) for item in report.excluded],
        split_stay_proposal=proposal,
        split_stay_options=[_proposal_response(item) for item in report.split_stay_options],
    )


@router.post(
    "/stays",
    response_model=AdmitStayResponse,
    status_code=status.HTTP_201_CREATED,
)
def admit_stay(
    payload: AdmitStayRequest,
    service: StayAdmissionService = Depends(get_stay_admission_service),
) -> AdmitStayResponse:
    segments = None
    if payload.segments is not None:
        segments = [
            StaySegment(
                resource_id=item.resource_id,
                dates=DateRange(item.start_date, item.end_date),
            )
            for item in payload.segments
        ]
    try:
        admission = service.admit_stay(
            payload.arrival,
            payload.departure,
            resource_id=payload.resource_id,
            segments=segments,
            guest_name=payload.guest_name,
        )
    except AdmissionError as exc:
        raise to_http_exception(exc) from exc
    except Exception as exc:  # pragma: no cover - defensive fallback
        logger.exception("Unexpected stay admission failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to admit stay",
        ) from exc
    return AdmitStayResponse(stay_id=admission.stay_id, reservation_ids=admission.reservation_ids)


@router.post(
    "/stays/{stay_id}/cancel",
    response_model=CancelStayResponse,
    status_code=status.HTTP_200_OK,
)
def cancel_stay(
    stay_id: str,
    service: StayAdmissionService = Depends(get_stay_admission_service),
) -> CancelStayResponse:
    try:
        cancelled = service.cancel_stay(stay_id)
    except AdmissionError as exc:
        raise to_http_exception(exc) from exc
    return CancelStayResponse(stay_id=stay_id, cancelled_segments=cancelled)


@router.post(
    "/reservations/{reservation_id}/{action}",
    response_model=ReservationResponse,
    status_code=status.HTTP_200_OK,
)
def transition_reservation(
    reservation_id: int,
    action: str,
    service: StayAdmissionService = Depends(get_stay_admission_service),
) -> ReservationResponse:
    """Lifecycle actions: ``check_in``, ``check_out`` and ``cancel``."""
    handlers = {
        "check_in": service.check_in,
        "check_out": service.check_out,
        "cancel": service.cancel_reservation,
    }
    handler = handlers.get(action)
    if handler is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown reservation action: {action}",
        )
    try:
        reservation = handler(reservation_id)
    except AdmissionError as exc:
        raise to_http_exception(exc) from exc
    return _reservation_response(reservation)


@router.get(
    "/resources/{resource_id}/next_available",
    response_model=NextAvailableResponse,
    status_code=status.HTTP_200_OK,
)
def next_available(
    resource_id: int,
    from_date: date | None = Query(default=None),
    ledger: OccupancyLedger = Depends(get_occupancy_ledger),
) -> NextAvailableResponse:
    start = from_date or today()
    try:
        next_date = ledger.next_available_date(resource_id, start)
    except AdmissionError as exc:
        raise to_http_exception(exc) from exc
    return NextAvailableResponse(
        resource_id=resource_id,
        from_date=start,
        next_available_date=next_date,
    )


@router.get(
    "/resources/{resource_id}/calendar",
    response_model=CalendarResponse,
    status_code=status.HTTP_200_OK,
)
def resource_calendar(
    resource_id: int,
    start: date = Query(...),
    end: date = Query(..., description="Exclusive end date"),
    ledger: OccupancyLedger = Depends(get_occupancy_ledger),
) -> CalendarResponse:
    try:
        days = ledger.calendar(resource_id, DateRange(start, end))
    except InvalidIntervalError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except AdmissionError as exc:
        raise to_http_exception(exc) from exc
    return CalendarResponse(
        resource_id=resource_id,
        days=[CalendarDayResponse(day=day, status=day_status) for day, day_status in days],
    )


@router.post(
    "/resources/{resource_id}/blocks",
    response_model=CreateBlockResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_block(
    resource_id: int,
    payload: CreateBlockRequest,
    service: StayAdmissionService = Depends(get_stay_admission_service),
) -> CreateBlockResponse:
    try:
        block_id = service.create_block(
            resource_id,
            payload.start_date,
            payload.end_date,
            payload.reason,
        )
    except AdmissionError as exc:
        raise to_http_exception(exc) from exc
    return CreateBlockResponse(block_id=block_id, resource_id=resource_id)


@router.post(
    "/resources/{resource_id}/status",
    response_model=ResourceResponse,
    status_code=status.HTTP_200_OK,
)
def set_resource_status(
    resource_id: int,
    payload: ResourceStatusRequest,
    service: StayAdmissionService = Depends(get_stay_admission_service),
) -> ResourceResponse:
    try:
        resource = service.set_resource_status(resource_id, payload.status)
    except AdmissionError as exc:
        raise to_http_exception(exc) from exc
    return ResourceResponse(
        resource_id=resource.resource_id,
        title=resource.title,
        price=resource.price,
        capacity=resource.capacity,
        status=resource.status,
    )
