from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import date, timedelta

import pytest

from admission_engine.domain.errors import (
    ConflictError,
    InvalidRangeError,
    InvalidTransitionError,
    ReservationNotFoundError,
    ResourceNotFoundError,
)
from admission_engine.domain.intervals import DateRange
from admission_engine.domain.models import Resource, StaySegment
from admission_engine.repository.data_repository import DataRepository
from admission_engine.services.notification_service import NotificationService
from admission_engine.services.stay_admission_service import StayAdmissionService
from admission_engine.services.stay_planner import FULLY_AVAILABLE, StayAdmissionPlanner
from admission_engine.utils.config import get_settings


JUNE_1 = date(2025, 6, 1)
JUNE_15 = date(2025, 6, 15)
JULY_1 = date(2025, 7, 1)


def _build_test_settings(tmp_path, filename: str, **overrides):
    get_settings.cache_clear()
    base = get_settings()
    fields = {"database_path": tmp_path / filename, "seed_demo_data": False}
    fields.update(overrides)
    return replace(base, **fields)


def _setup(tmp_path, filename: str, notifier=None, **overrides):
    settings = _build_test_settings(tmp_path, filename, **overrides)
    repository = DataRepository(settings)
    repository.initialize_database()
    service = StayAdmissionService(repository=repository, settings=settings, notifier=notifier)
    return settings, repository, service


class RecordingNotifier(NotificationService):
    def __init__(self) -> None:
        self.admitted: list[tuple[str, int]] = []
        self.cancelled: list[tuple[str, int]] = []

    def stay_admitted(self, stay_id, reservations) -> None:
        self.admitted.append((stay_id, len(reservations)))

    def stay_cancelled(self, stay_id, cancelled_segments) -> None:
        self.cancelled.append((stay_id, cancelled_segments))


class BrokenNotifier(NotificationService):
    def stay_admitted(self, stay_id, reservations) -> None:
        raise RuntimeError("mail server down")


def test_admit_single_resource_stay(tmp_path) -> None:
    notifier = RecordingNotifier()
    _, repository, service = _setup(tmp_path, "stay_single.db", notifier=notifier)
    resource_id = repository.create_resource("Loft", 1200.0, 2)

    admission = service.admit_stay(JUNE_1, JULY_1, resource_id=resource_id, guest_name="Ada")

    assert len(admission.reservation_ids) == 1
    reservation = repository.get_reservation(admission.reservation_ids[0])
    assert reservation is not None
    assert reservation.stay_id == admission.stay_id
    assert reservation.dates == DateRange(JUNE_1, JULY_1)
    assert reservation.state == "confirmed"
    assert reservation.guest_name == "Ada"
    assert notifier.admitted == [(admission.stay_id, 1)]


def test_overlapping_stay_is_rejected_with_details(tmp_path) -> None:
    _, repository, service = _setup(tmp_path, "stay_conflict.db")
    resource_id = repository.create_resource("Loft", 1200.0, 2)
    first = service.admit_stay(JUNE_1, JULY_1, resource_id=resource_id)

    with pytest.raises(ConflictError) as exc_info:
        service.admit_stay(JUNE_15, date(2025, 7, 20), resource_id=resource_id)

    error = exc_info.value
    assert error.resource_id == resource_id
    assert error.blocking_kind == "reservation"
    assert error.blocking_id == first.reservation_ids[0]
    assert error.to_detail()["code"] == "conflict"
    assert repository.count_reservations() == 1


def test_same_day_turnover_is_allowed(tmp_path) -> None:
    _, repository, service = _setup(tmp_path, "stay_turnover.db")
    resource_id = repository.create_resource("Loft", 1200.0, 2)
    service.admit_stay(JUNE_1, JULY_1, resource_id=resource_id)

    service.admit_stay(JULY_1, date(2025, 7, 31), resource_id=resource_id)

    assert repository.count_reservations() == 2


def test_split_stay_is_admitted_atomically(tmp_path) -> None:
    settings, repository, service = _setup(tmp_path, "stay_split.db")
    resource_a = repository.create_resource("A", 900.0, 2)
    resource_b = repository.create_resource("B", 1500.0, 2)
    setup_service = StayAdmissionService(
        repository=repository,
        settings=replace(settings, stay_minimum_days=1),
    )
    blocker = setup_service.admit_stay(date(2025, 6, 20), date(2025, 6, 22), resource_id=resource_b)

    segments = [
        StaySegment(resource_id=resource_a, dates=DateRange(JUNE_1, JUNE_15)),
        StaySegment(resource_id=resource_b, dates=DateRange(JUNE_15, JULY_1)),
    ]
    with pytest.raises(ConflictError) as exc_info:
        service.admit_stay(JUNE_1, JULY_1, segments=segments)

    assert exc_info.value.resource_id == resource_b
    assert exc_info.value.blocking_id == blocker.reservation_ids[0]
    # The first segment was rolled back with the second.
    assert repository.list_occupying_reservations(resource_a) == []
    assert repository.count_reservations() == 1

    setup_service.cancel_stay(blocker.stay_id)
    admission = service.admit_stay(JUNE_1, JULY_1, segments=list(reversed(segments)))
    reservations = repository.list_stay_reservations(admission.stay_id)
    assert [(item.resource_id, item.dates) for item in reservations] == [
        (resource_a, DateRange(JUNE_1, JUNE_15)),
        (resource_b, DateRange(JUNE_15, JULY_1)),
    ]


def test_broken_segment_chains_are_rejected(tmp_path) -> None:
    _, repository, service = _setup(tmp_path, "stay_chain.db")
    resource_a = repository.create_resource("A", 900.0, 2)
    resource_b = repository.create_resource("B", 900.0, 2)

    with_gap = [
        StaySegment(resource_id=resource_a, dates=DateRange(JUNE_1, date(2025, 6, 14))),
        StaySegment(resource_id=resource_b, dates=DateRange(JUNE_15, JULY_1)),
    ]
    short = [
        StaySegment(resource_id=resource_a, dates=DateRange(JUNE_1, JUNE_15)),
        StaySegment(resource_id=resource_b, dates=DateRange(JUNE_15, date(2025, 6, 30))),
    ]
    too_many = [
        StaySegment(resource_id=resource_a, dates=DateRange(JUNE_1, date(2025, 6, 8))),
        StaySegment(resource_id=resource_b, dates=DateRange(date(2025, 6, 8), JUNE_15)),
        StaySegment(resource_id=resource_a, dates=DateRange(JUNE_15, date(2025, 6, 22))),
        StaySegment(resource_id=resource_b, dates=DateRange(date(2025, 6, 22), JULY_1)),
    ]
    for segments in (with_gap, short, too_many, []):
        with pytest.raises(InvalidRangeError):
            service.admit_stay(JUNE_1, JULY_1, segments=segments)
    assert repository.count_reservations() == 0


def test_stay_validation(tmp_path) -> None:
    _, repository, service = _setup(tmp_path, "stay_validation.db")
    resource_id = repository.create_resource("Loft", 1200.0, 2)
    closed_id = repository.create_resource("Closed", 800.0, 1, status="unavailable")

    with pytest.raises(InvalidRangeError):
        service.admit_stay(JULY_1, JUNE_1, resource_id=resource_id)
    with pytest.raises(InvalidRangeError):
        service.admit_stay(JUNE_1, JUNE_15, resource_id=resource_id)
    with pytest.raises(InvalidRangeError):
        service.admit_stay(JUNE_1, JULY_1)
    with pytest.raises(ResourceNotFoundError):
        service.admit_stay(JUNE_1, JULY_1, resource_id=999)
    with pytest.raises(ConflictError) as exc_info:
        service.admit_stay(JUNE_1, JULY_1, resource_id=closed_id)
    assert exc_info.value.blocking_kind == "resource_status"


def test_blocks_and_reservations_exclude_each_other(tmp_path) -> None:
    _, repository, service = _setup(tmp_path, "stay_blocks.db")
    resource_id = repository.create_resource("Loft", 1200.0, 2)
    block_id = service.create_block(resource_id, date(2025, 6, 10), date(2025, 6, 12), "boiler")

    with pytest.raises(ConflictError) as exc_info:
        service.admit_stay(JUNE_1, JULY_1, resource_id=resource_id)
    assert exc_info.value.blocking_kind == "block"
    assert exc_info.value.blocking_id == block_id

    service.admit_stay(JULY_1, date(2025, 7, 31), resource_id=resource_id)
    with pytest.raises(ConflictError):
        service.create_block(resource_id, date(2025, 7, 5), date(2025, 7, 6), "inspection")
    with pytest.raises(InvalidRangeError):
        service.create_block(resource_id, date(2025, 7, 5), date(2025, 7, 5))


def test_storage_trigger_rejects_unchecked_overlap(tmp_path) -> None:
    _, repository, service = _setup(tmp_path, "stay_trigger.db")
    resource_id = repository.create_resource("Loft", 1200.0, 2)
    service.admit_stay(JUNE_1, JULY_1, resource_id=resource_id)

    with pytest.raises(ConflictError) as exc_info:
        with repository.write_transaction() as tx:
            tx.insert_reservation(
                resource_id=resource_id,
                stay_id="manual",
                dates=DateRange(JUNE_15, date(2025, 6, 20)),
                state="confirmed",
                guest_name="",
            )
    assert exc_info.value.blocking_kind == "storage_constraint"
    assert repository.count_reservations() == 1


def test_cancel_stay_frees_days_immediately(tmp_path) -> None:
    notifier = RecordingNotifier()
    settings, repository, service = _setup(tmp_path, "stay_cancel.db", notifier=notifier)
    resource_id = repository.create_resource("Loft", 1200.0, 2)
    planner = StayAdmissionPlanner(repository=repository, settings=settings)
    admission = service.admit_stay(JUNE_1, JULY_1, resource_id=resource_id)
    assert not planner.check_stay_availability(JUNE_1, JULY_1).has_full_match

    assert service.cancel_stay(admission.stay_id) == 1

    report = planner.check_stay_availability(JUNE_1, JULY_1)
    assert report.options[0].classification == FULLY_AVAILABLE
    assert notifier.cancelled == [(admission.stay_id, 1)]
    assert service.cancel_stay(admission.stay_id) == 0
    with pytest.raises(ReservationNotFoundError):
        service.cancel_stay("no-such-stay")


def test_reservation_lifecycle(tmp_path) -> None:
    _, repository, service = _setup(tmp_path, "stay_lifecycle.db")
    resource_id = repository.create_resource("Loft", 1200.0, 2)
    reservation_id = service.admit_stay(JUNE_1, JULY_1, resource_id=resource_id).reservation_ids[0]

    assert service.check_in(reservation_id).state == "checked_in"
    # Checked-in guests still hold the resource.
    with pytest.raises(ConflictError):
        service.admit_stay(JUNE_1, JULY_1, resource_id=resource_id)

    assert service.check_out(reservation_id).state == "checked_out"
    with pytest.raises(InvalidTransitionError):
        service.cancel_reservation(reservation_id)
    with pytest.raises(ReservationNotFoundError):
        service.check_in(999)

    # Checked-out reservations no longer occupy.
    service.admit_stay(JUNE_1, JULY_1, resource_id=resource_id)


def test_notification_failure_does_not_undo_admission(tmp_path) -> None:
    _, repository, service = _setup(tmp_path, "stay_notify.db", notifier=BrokenNotifier())
    resource_id = repository.create_resource("Loft", 1200.0, 2)

    admission = service.admit_stay(JUNE_1, JULY_1, resource_id=resource_id)

    assert repository.get_reservation(admission.reservation_ids[0]) is not None
    assert repository.count_reservations() == 1


def test_separate_services_admit_only_one_overlapping_stay(tmp_path) -> None:
    """Two services with independent in-process locks still admit one stay."""
    settings, repository, _ = _setup(
        tmp_path,
        "stay_stress_storage.db",
        admission_lock_timeout_seconds=30.0,
    )
    resource_id = repository.create_resource("Loft", 1200.0, 2)
    services = [
        StayAdmissionService(repository=DataRepository(settings), settings=settings),
        StayAdmissionService(repository=DataRepository(settings), settings=settings),
    ]
    attempts = 16
    start = threading.Barrier(attempts)

    def attempt(index: int) -> bool:
        arrival = JUNE_1 + timedelta(days=index)
        start.wait(timeout=10)
        try:
            services[index % 2].admit_stay(
                arrival,
                arrival + timedelta(days=30),
                resource_id=resource_id,
            )
        except ConflictError:
            return False
        return True

    with ThreadPoolExecutor(max_workers=attempts) as pool:
        outcomes = list(pool.map(attempt, range(attempts)))

    assert outcomes.count(True) == 1
    assert outcomes.count(False) == attempts - 1
    assert repository.count_reservations() == 1


def test_resource_status_is_rechecked_inside_the_write(tmp_path, monkeypatch) -> None:
    _, repository, service = _setup(tmp_path, "stay_status_recheck.db")
    resource_id = repository.create_resource("Loft", 1200.0, 2)
    stale = repository.get_resource(resource_id)
    assert stale is not None and stale.is_offerable

    closed = service.set_resource_status(resource_id, "unavailable")
    assert closed.status == "unavailable"
    # The pre-check sees the resource as it was before it closed.
    monkeypatch.setattr(repository, "get_resource", lambda _: stale)

    with pytest.raises(ConflictError) as exc_info:
        service.admit_stay(JUNE_1, JULY_1, resource_id=resource_id)

    assert exc_info.value.blocking_kind == "resource_status"
    assert exc_info.value.blocking_id == resource_id
    assert repository.count_reservations() == 0


def test_set_resource_status(tmp_path) -> None:
    _, repository, service = _setup(tmp_path, "stay_status.db")
    resource_id = repository.create_resource("Loft", 1200.0, 2, status="unavailable")

    opened = service.set_resource_status(resource_id, "available")

    assert opened == Resource(resource_id, "Loft", 1200.0, 2, "available")
    assert repository.get_resource(resource_id) == opened
    service.admit_stay(JUNE_1, JULY_1, resource_id=resource_id)

    service.set_resource_status(resource_id, "unavailable")
    # Closing a resource leaves its existing reservations in place.
    assert repository.count_reservations() == 1
    with pytest.raises(InvalidRangeError):
        service.set_resource_status(resource_id, "demolished")
    with pytest.raises(ResourceNotFoundError):
        service.set_resource_status(999, "available")
