from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import date, timedelta

import pytest

from admission_engine.domain.errors import (
    AtCapacityError,
    BookingNotFoundError,
    InvalidRangeError,
    InvalidTransitionError,
    NotAvailableError,
    OverrideNotFoundError,
    PassNotFoundError,
)
from admission_engine.repository.data_repository import DataRepository
from admission_engine.services.admission_gate import AdmissionGate
from admission_engine.utils.config import get_settings


D = date(2025, 9, 10)


def _build_test_settings(tmp_path, filename: str, **overrides):
    get_settings.cache_clear()
    base = get_settings()
    fields = {"database_path": tmp_path / filename, "seed_demo_data": False}
    fields.update(overrides)
    return replace(base, **fields)


def _setup(tmp_path, filename: str, **overrides):
    settings = _build_test_settings(tmp_path, filename, **overrides)
    repository = DataRepository(settings)
    repository.initialize_database()
    gate = AdmissionGate(repository=repository, settings=settings)
    return settings, repository, gate


def test_capacity_exhaustion_scenario(tmp_path) -> None:
    _, repository, gate = _setup(tmp_path, "gate_exhaustion.db")
    pass_id = repository.create_pass("Day Pass", base_max_capacity=2, is_capacity_limited=True)
    gate.admit_pass(pass_id, D)
    gate.admit_pass(pass_id, D)

    with pytest.raises(AtCapacityError) as exc_info:
        gate.admit_pass(pass_id, D)

    assert exc_info.value.pass_id == pass_id
    assert exc_info.value.target_date == D
    assert exc_info.value.next_available_date == D + timedelta(days=1)
    assert repository.count_demand(pass_id, D) == 2
    assert repository.count_pass_bookings(pass_id) == 2


def test_date_restricted_not_yet_available_scenario(tmp_path) -> None:
    _, repository, gate = _setup(tmp_path, "gate_restricted.db")
    pass_id = repository.create_pass(
        "Summer Pass",
        base_max_capacity=5,
        is_capacity_limited=True,
        is_date_restricted=True,
        available_from=date(2025, 8, 1),
        available_until=date(2025, 8, 31),
    )

    result = gate.check_pass_availability(pass_id, date(2025, 7, 15))
    assert not result.available
    assert result.reason == "not_yet_available"
    assert result.next_available_date == date(2025, 8, 1)

    with pytest.raises(NotAvailableError) as exc_info:
        gate.admit_pass(pass_id, date(2025, 7, 15))
    assert exc_info.value.reason == "not_yet_available"
    assert exc_info.value.next_available_date == date(2025, 8, 1)

    late = gate.check_pass_availability(pass_id, date(2025, 9, 1))
    assert late.reason == "no_longer_available"
    assert late.next_available_date is None
    assert repository.count_pass_bookings(pass_id) == 0


def test_inactive_pass_is_not_available(tmp_path) -> None:
    _, repository, gate = _setup(tmp_path, "gate_inactive.db")
    pass_id = repository.create_pass("Retired", is_active=False)
    with pytest.raises(NotAvailableError) as exc_info:
        gate.admit_pass(pass_id, D)
    assert exc_info.value.reason == "pass_inactive"


def test_unknown_pass(tmp_path) -> None:
    _, _, gate = _setup(tmp_path, "gate_unknown.db")
    with pytest.raises(PassNotFoundError):
        gate.check_pass_availability(42, D)
    with pytest.raises(PassNotFoundError):
        gate.admit_pass(42, D)


def test_cancel_then_recheck_frees_exactly_one(tmp_path) -> None:
    _, repository, gate = _setup(tmp_path, "gate_roundtrip.db")
    pass_id = repository.create_pass("Day Pass", base_max_capacity=2, is_capacity_limited=True)
    first = gate.admit_pass(pass_id, D)
    gate.admit_pass(pass_id, D)
    before = gate.check_pass_availability(pass_id, D)
    assert not before.available
    assert before.demand == 2

    cancelled = gate.update_booking_status(first, "cancelled")

    after = gate.check_pass_availability(pass_id, D)
    assert cancelled.status == "cancelled"
    assert after.available
    assert after.demand == before.demand - 1
    gate.admit_pass(pass_id, D)


def test_cached_counter_is_not_used_for_admission(tmp_path) -> None:
    _, repository, gate = _setup(tmp_path, "gate_cache.db")
    pass_id = repository.create_pass("Day Pass", base_max_capacity=1, is_capacity_limited=True)
    repository.update_current_capacity(pass_id, 1)

    gate.admit_pass(pass_id, D)

    repository.update_current_capacity(pass_id, 0)
    with pytest.raises(AtCapacityError):
        gate.admit_pass(pass_id, D)


def test_unlimited_pass_admits_everyone(tmp_path) -> None:
    _, repository, gate = _setup(tmp_path, "gate_unlimited.db")
    pass_id = repository.create_pass("Month Pass", duration_days=30)
    for _ in range(25):
        gate.admit_pass(pass_id, D)
    assert repository.count_demand(pass_id, D + timedelta(days=29)) == 25
    assert repository.count_demand(pass_id, D + timedelta(days=30)) == 0


def test_multi_day_pass_needs_room_on_every_covered_day(tmp_path) -> None:
    _, repository, gate = _setup(tmp_path, "gate_multiday.db")
    pass_id = repository.create_pass(
        "Week Pass",
        duration_days=7,
        base_max_capacity=1,
        is_capacity_limited=True,
    )
    booking_id = gate.admit_pass(pass_id, D)
    booking = repository.get_pass_booking(booking_id)
    assert booking is not None
    assert booking.end_date == D + timedelta(days=7)

    decision = gate.try_admit(pass_id, D + timedelta(days=3))
    assert not decision.admitted
    assert decision.reason == "at_capacity"
    assert decision.next_available_date == D + timedelta(days=7)

    gate.admit_pass(pass_id, D + timedelta(days=7))


def test_override_lowers_and_restores_ceiling(tmp_path) -> None:
    _, repository, gate = _setup(tmp_path, "gate_override.db")
    pass_id = repository.create_pass("Day Pass", base_max_capacity=5, is_capacity_limited=True)
    override = gate.create_override(
        pass_id,
        start_date=D,
        end_date=D,
        max_capacity=1,
        priority=10,
        name="Team offsite",
    )
    gate.admit_pass(pass_id, D)

    with pytest.raises(AtCapacityError):
        gate.admit_pass(pass_id, D)

    gate.set_override_active(override.override_id, False)
    gate.admit_pass(pass_id, D)
    assert repository.count_demand(pass_id, D) == 2

    listed = gate.list_overrides(pass_id)
    assert [item.override_id for item in listed] == [override.override_id]
    assert not listed[0].is_active
    assert gate.list_overrides(pass_id, active_only=True) == []


def test_override_validation(tmp_path) -> None:
    _, repository, gate = _setup(tmp_path, "gate_override_validation.db")
    pass_id = repository.create_pass("Day Pass", base_max_capacity=5, is_capacity_limited=True)
    with pytest.raises(InvalidRangeError):
        gate.create_override(pass_id, start_date=D, end_date=D - timedelta(days=1), max_capacity=1)
    with pytest.raises(InvalidRangeError):
        gate.create_override(pass_id, start_date=D, end_date=D, max_capacity=-1)
    with pytest.raises(PassNotFoundError):
        gate.create_override(99, start_date=D, end_date=D, max_capacity=1)
    with pytest.raises(OverrideNotFoundError):
        gate.set_override_active(99, True)


def test_capacity_info_reports_each_day(tmp_path) -> None:
    _, repository, gate = _setup(tmp_path, "gate_capacity_info.db")
    pass_id = repository.create_pass("Day Pass", base_max_capacity=4, is_capacity_limited=True)
    override = gate.create_override(
        pass_id,
        start_date=D + timedelta(days=1),
        end_date=D + timedelta(days=1),
        max_capacity=2,
        priority=1,
    )
    gate.admit_pass(pass_id, D)
    gate.admit_pass(pass_id, D + timedelta(days=1))

    info = gate.get_capacity_info(pass_id, D, D + timedelta(days=2))

    assert info.name == "Day Pass"
    assert [(item.day, item.ceiling, item.demand, item.remaining, item.source) for item in info.days] == [
        (D, 4, 1, 3, "base"),
        (D + timedelta(days=1), 2, 1, 1, f"override:{override.override_id}"),
        (D + timedelta(days=2), 4, 0, 4, "base"),
    ]
    with pytest.raises(InvalidRangeError):
        gate.get_capacity_info(pass_id, D, D - timedelta(days=1))


def test_capacity_info_rejects_windows_longer_than_the_limit(tmp_path) -> None:
    _, repository, gate = _setup(tmp_path, "gate_capacity_limit.db", max_query_days=7)
    pass_id = repository.create_pass("Day Pass", base_max_capacity=4, is_capacity_limited=True)

    # The end day is inclusive, so D..D+6 is exactly seven days.
    assert len(gate.get_capacity_info(pass_id, D, D + timedelta(days=6)).days) == 7
    with pytest.raises(InvalidRangeError):
        gate.get_capacity_info(pass_id, D, D + timedelta(days=7))


def test_booking_status_transitions(tmp_path) -> None:
    _, repository, gate = _setup(tmp_path, "gate_status.db")
    pass_id = repository.create_pass("Day Pass", base_max_capacity=3, is_capacity_limited=True)
    booking_id = gate.admit_pass(pass_id, D, status="pending", customer_name="Grace")

    assert repository.count_demand(pass_id, D) == 1
    assert gate.update_booking_status(booking_id, "confirmed").status == "confirmed"
    assert gate.update_booking_status(booking_id, "active").status == "active"
    assert gate.update_booking_status(booking_id, "completed").status == "completed"
    # Completed bookings still used the day.
    assert repository.count_demand(pass_id, D) == 1

    with pytest.raises(InvalidTransitionError):
        gate.update_booking_status(booking_id, "cancelled")
    with pytest.raises(BookingNotFoundError):
        gate.update_booking_status(999, "cancelled")
    with pytest.raises(InvalidRangeError):
        gate.admit_pass(pass_id, D, status="active")


def test_parallel_admissions_never_exceed_ceiling(tmp_path) -> None:
    _, repository, gate = _setup(
        tmp_path,
        "gate_stress.db",
        admission_lock_timeout_seconds=30.0,
    )
    ceiling = 5
    attempts = 24
    pass_id = repository.create_pass(
        "Day Pass",
        base_max_capacity=ceiling,
        is_capacity_limited=True,
    )
    start = threading.Barrier(attempts)

    def attempt(_: int) -> bool:
        start.wait(timeout=10)
        return gate.try_admit(pass_id, D).admitted

    with ThreadPoolExecutor(max_workers=attempts) as pool:
        outcomes = list(pool.map(attempt, range(attempts)))

    assert outcomes.count(True) == ceiling
    assert outcomes.count(False) == attempts - ceiling
    assert repository.count_demand(pass_id, D) == ceiling


def test_separate_gates_share_storage_serialization(tmp_path) -> None:
    """Two gates with independent in-process locks still respect the ceiling."""
    settings, repository, _ = _setup(
        tmp_path,
        "gate_stress_storage.db",
        admission_lock_timeout_seconds=30.0,
    )
    ceiling = 3
    attempts = 12
    pass_id = repository.create_pass(
        "Day Pass",
        base_max_capacity=ceiling,
        is_capacity_limited=True,
    )
    gates = [
        AdmissionGate(repository=DataRepository(settings), settings=settings),
        AdmissionGate(repository=DataRepository(settings), settings=settings),
    ]
    start = threading.Barrier(attempts)

    def attempt(index: int) -> bool:
        start.wait(timeout=10)
        return gates[index % 2].try_admit(pass_id, D).admitted

    with ThreadPoolExecutor(max_workers=attempts) as pool:
        outcomes = list(pool.map(attempt, range(attempts)))

    assert outcomes.count(True) == ceiling
    assert repository.count_demand(pass_id, D) == ceiling
