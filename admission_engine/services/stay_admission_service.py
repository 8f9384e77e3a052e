"""Atomic admission of apartment stays, single-resource or split."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from typing import Optional, Sequence
from uuid import uuid4

from admission_engine.domain.constraints import (
    AdmissionConfig,
    admission_config_from_settings,
    ensure_transition,
)
from admission_engine.domain.errors import (
    AdmissionTimeoutError,
    ConflictError,
    InvalidRangeError,
    ReservationNotFoundError,
    ResourceNotFoundError,
)
from admission_engine.domain.intervals import DateRange, merge
from admission_engine.domain.models import (
    RESERVATION_CANCELLED,
    RESERVATION_CHECKED_IN,
    RESERVATION_CHECKED_OUT,
    RESERVATION_CONFIRMED,
    RESERVATION_TRANSITIONS,
    RESOURCE_STATUSES,
    Reservation,
    Resource,
    StaySegment,
)
from admission_engine.repository.data_repository import DataRepository
from admission_engine.services.notification_service import NotificationService, dispatch
from admission_engine.services.occupancy_ledger import find_conflict
from admission_engine.services.stay_planner import validate_stay_range
from admission_engine.utils.config import Settings, get_settings
from admission_engine.utils.locks import KeyedLockRegistry, LockTimeoutError
from admission_engine.utils.logger import format_fields, get_logger


logger = get_logger(__name__)


@dataclass(frozen=True)
class StayAdmission:
    stay_id: str
    reservation_ids: list[int]
    segments: list[StaySegment]


def chain_segments(
    segments: Sequence[StaySegment],
    stay: DateRange,
    max_segments: int,
) -> list[StaySegment]:
    """Order segments and check they tile ``stay`` exactly.

    Each segment must start on the day the previous one ends (same-day
    turnover), the first on arrival and the last ending on departure.
    """
    if not segments:
        raise InvalidRangeError("A stay needs at least one segment")
    if len(segments) > max_segments:
        raise InvalidRangeError(
            f"Stay has {len(segments)} segments; at most {max_segments} are allowed"
        )
    ordered = sorted(segments, key=lambda item: (item.dates.start, item.dates.end))
    if ordered[0].dates.start != stay.start:
        raise InvalidRangeError(
            f"First segment starts on {ordered[0].dates.start.isoformat()}, "
            f"not on arrival {stay.start.isoformat()}"
        )
    for previous, current in zip(ordered, ordered[1:]):
        if current.dates.start != previous.dates.end:
            raise InvalidRangeError(
                f"Segment {current.dates} does not continue from {previous.dates.end.isoformat()}"
            )
    if merge(segment.dates for segment in ordered) != [stay]:
        raise InvalidRangeError(
            f"Segments end on {ordered[-1].dates.end.isoformat()} but departure is "
            f"{stay.end.isoformat()}"
        )
    return ordered


def _require_offerable(resource: Resource, segment: StaySegment) -> None:
    if not resource.is_offerable:
        raise ConflictError(
            f"Resource {resource.resource_id} is {resource.status}",
            resource_id=resource.resource_id,
            start_date=segment.dates.start,
            end_date=segment.dates.end,
            blocking_kind="resource_status",
            blocking_id=resource.resource_id,
        )


class StayAdmissionService:
    """Commits every segment of a stay or none of them."""

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

    def _require_resource(self, resource_id: int) -> Resource:
        resource = self._repository.get_resource(resource_id)
        if resource is None:
            raise ResourceNotFoundError(f"Resource {resource_id} not found")
        return resource

    def _require_reservation(self, reservation_id: int) -> Reservation:
        reservation = self._repository.get_reservation(reservation_id)
        if reservation is None:
            raise ReservationNotFoundError(f"Reservation {reservation_id} not found")
        return reservation

    def admit_stay(
        self,
        arrival: date,
        departure: date,
        *,
        resource_id: Optional[int] = None,
        segments: Optional[Sequence[StaySegment]] = None,
        guest_name: str = "",
    ) -> StayAdmission:
        """Reserve one resource for the whole stay, or a chain of segments.

        Raises ConflictError naming the first segment that intersects an
        occupying reservation or block; nothing is written in that case.
        """
        stay = validate_stay_range(arrival, departure, self._config.minimum_stay_days)
        if (resource_id is None) == (segments is None):
            raise InvalidRangeError("Provide exactly one of resource_id or segments")
        if resource_id is not None:
            planned = [StaySegment(resource_id=resource_id, dates=stay)]
        else:
            planned = chain_segments(segments or [], stay, self._config.max_split_segments)

        for segment in planned:
            _require_offerable(self._require_resource(segment.resource_id), segment)

        stay_id = uuid4().hex
        lock_keys = [("resource", segment.resource_id) for segment in planned]
        reservation_ids: list[int] = []
        try:
            with self._locks.hold(lock_keys, self._config.lock_timeout_seconds):
                with self._repository.write_transaction() as tx:
                    for segment in planned:
                        current = tx.get_resource(segment.resource_id)
                        if current is None:
                            raise ResourceNotFoundError(f"Resource {segment.resource_id} not found")
                        _require_offerable(current, segment)
                        occupant = find_conflict(
                            segment.resource_id,
                            segment.dates,
                            tx.list_occupying_reservations(segment.resource_id, segment.dates),
                            tx.list_blocks(segment.resource_id, segment.dates),
                        )
                        if occupant is not None:
                            raise ConflictError(
                                f"Resource {segment.resource_id} is occupied during "
                                f"{occupant.dates} ({occupant.kind} {occupant.ref_id})",
                                resource_id=segment.resource_id,
                                start_date=segment.dates.start,
                                end_date=segment.dates.end,
                                blocking_kind=occupant.kind,
                                blocking_id=occupant.ref_id,
                            )
                        reservation_ids.append(
                            tx.insert_reservation(
                                resource_id=segment.resource_id,
                                stay_id=stay_id,
                                dates=segment.dates,
                                state=RESERVATION_CONFIRMED,
                                guest_name=guest_name,
                            )
                        )
        except LockTimeoutError as exc:
            logger.warning(
                "Stay admission timed out | %s",
                format_fields(stay=stay, key=exc.key),
            )
            raise AdmissionTimeoutError(str(exc)) from exc
        except ConflictError as exc:
            logger.info(
                "Stay rejected | %s",
                format_fields(
                    stay=stay,
                    resource_id=exc.resource_id,
                    blocking_kind=exc.blocking_kind,
                    blocking_id=exc.blocking_id,
                ),
            )
            raise

        logger.info(
            "Stay admitted | %s",
            format_fields(
                stay_id=stay_id,
                stay=stay,
                segments=len(planned),
                reservation_ids=reservation_ids,
            ),
        )
        dispatch(
            self._notifier.stay_admitted,
            stay_id,
            self._repository.list_stay_reservations(stay_id),
        )
        return StayAdmission(stay_id=stay_id, reservation_ids=reservation_ids, segments=planned)

    def cancel_stay(self, stay_id: str) -> int:
        """Cancel every occupying segment of a stay; freed days show up at once."""
        if not self._repository.list_stay_reservations(stay_id):
            raise ReservationNotFoundError(f"Stay {stay_id} not found")
        cancelled = self._repository.cancel_stay_reservations(stay_id)
        logger.info(
            "Stay cancelled | %s",
            format_fields(stay_id=stay_id, cancelled_segments=cancelled),
        )
        dispatch(self._notifier.stay_cancelled, stay_id, cancelled)
        return cancelled

    def _transition(self, reservation_id: int, state: str) -> Reservation:
        reservation = self._require_reservation(reservation_id)
        ensure_transition(RESERVATION_TRANSITIONS, reservation.state, state, subject="reservation")
        if not self._repository.update_reservation_state(
            reservation_id, state, expected_state=reservation.state
        ):
            return self._transition(reservation_id, state)
        logger.info(
            "Reservation state changed | %s",
            format_fields(reservation_id=reservation_id, previous=reservation.state, state=state),
        )
        return replace(reservation, state=state)

    def check_in(self, reservation_id: int) -> Reservation:
        return self._transition(reservation_id, RESERVATION_CHECKED_IN)

    def check_out(self, reservation_id: int) -> Reservation:
        return self._transition(reservation_id, RESERVATION_CHECKED_OUT)

    def cancel_reservation(self, reservation_id: int) -> Reservation:
        return self._transition(reservation_id, RESERVATION_CANCELLED)

    def set_resource_status(self, resource_id: int, status: str) -> Resource:
        """Open or close a resource for new stays; existing reservations stay put."""
        if status not in RESOURCE_STATUSES:
            raise InvalidRangeError(
                f"Unknown resource status {status!r}; expected one of {', '.join(RESOURCE_STATUSES)}"
            )
        previous = self._require_resource(resource_id)
        try:
            with self._locks.hold([("resource", resource_id)], self._config.lock_timeout_seconds):
                with self._repository.write_transaction() as tx:
                    tx.update_resource_status(resource_id, status)
                    updated = tx.get_resource(resource_id)
        except LockTimeoutError as exc:
            raise AdmissionTimeoutError(str(exc)) from exc
        if updated is None:
            raise ResourceNotFoundError(f"Resource {resource_id} not found")
        logger.info(
            "Resource status changed | %s",
            format_fields(resource_id=resource_id, previous=previous.status, status=status),
        )
        return updated

    def create_block(
        self,
        resource_id: int,
        start_date: date,
        end_date: date,
        reason: str = "blocked",
    ) -> int:
        """Close ``[start_date, end_date)`` on a resource; rejects booked days."""
        if end_date <= start_date:
            raise InvalidRangeError(f"Block end ({end_date}) must be after start ({start_date})")
        self._require_resource(resource_id)
        dates = DateRange(start_date, end_date)
        try:
            with self._locks.hold([("resource", resource_id)], self._config.lock_timeout_seconds):
                with self._repository.write_transaction() as tx:
                    occupant = find_conflict(
                        resource_id,
                        dates,
                        tx.list_occupying_reservations(resource_id, dates),
                    )
                    if occupant is not None:
                        raise ConflictError(
                            f"Resource {resource_id} is reserved during {occupant.dates}",
                            resource_id=resource_id,
                            start_date=start_date,
                            end_date=end_date,
                            blocking_kind=occupant.kind,
                            blocking_id=occupant.ref_id,
                        )
                    block_id = tx.insert_block(resource_id=resource_id, dates=dates, reason=reason)
        except LockTimeoutError as exc:
            raise AdmissionTimeoutError(str(exc)) from exc
        logger.info(
            "Resource blocked | %s",
            format_fields(resource_id=resource_id, block_id=block_id, dates=dates, reason=reason),
        )
        return block_id
