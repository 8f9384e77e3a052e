"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from admission_engine.domain.errors import (
    AdmissionError,
    AdmissionTimeoutError,
    AtCapacityError,
    BookingNotFoundError,
    ConflictError,
    InvalidRangeError,
    InvalidTransitionError,
    NotAvailableError,
    OverrideNotFoundError,
    PassNotFoundError,
    ReservationNotFoundError,
    ResourceNotFoundError,
)
from admission_engine.services.admission_gate import AdmissionGate
from admission_engine.services.occupancy_ledger import OccupancyLedger
from admission_engine.services.reconciliation_service import ReconciliationService
from admission_engine.services.stay_admission_service import StayAdmissionService
from admission_engine.services.stay_planner import StayAdmissionPlanner


_STATUS_BY_ERROR: tuple[tuple[type[AdmissionError], int], ...] = (
    (InvalidRangeError, status.HTTP_400_BAD_REQUEST),
    (ResourceNotFoundError, status.HTTP_404_NOT_FOUND),
    (PassNotFoundError, status.HTTP_404_NOT_FOUND),
    (BookingNotFoundError, status.HTTP_404_NOT_FOUND),
    (ReservationNotFoundError, status.HTTP_404_NOT_FOUND),
    (OverrideNotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (AtCapacityError, status.HTTP_409_CONFLICT),
    (NotAvailableError, status.HTTP_409_CONFLICT),
    (AdmissionTimeoutError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def to_http_exception(exc: AdmissionError) -> HTTPException:
    """Map a service error to its HTTP status, keeping the structured detail."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=exc.to_detail())
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.to_detail())


def _from_state(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_occupancy_ledger(request: Request) -> OccupancyLedger:
    return _from_state(request, "occupancy_ledger", "Occupancy ledger")


def get_stay_planner(request: Request) -> StayAdmissionPlanner:
    return _from_state(request, "stay_planner", "Stay planner")


def get_stay_admission_service(request: Request) -> StayAdmissionService:
    return _from_state(request, "stay_admission_service", "Stay admission service")


def get_admission_gate(request: Request) -> AdmissionGate:
    return _from_state(request, "admission_gate", "Admission gate")


def get_reconciliation_service(request: Request) -> ReconciliationService:
    return _from_state(request, "reconciliation_service", "Reconciliation service")
