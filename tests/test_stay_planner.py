from __future__ import annotations

from dataclasses import replace
from datetime import date

import pytest

from admission_engine.domain.errors import InvalidRangeError
from admission_engine.domain.intervals import DateRange
from admission_engine.repository.data_repository import DataRepository
from admission_engine.services.stay_admission_service import StayAdmissionService
from admission_engine.services.stay_planner import (
    FULLY_AVAILABLE,
    NO_FULL_COVER,
    PARTIAL,
    SPLIT_OPTION_LIMIT,
    TOO_MANY_SEGMENTS,
    UNAVAILABLE,
    StayAdmissionPlanner,
    segment_price,
)
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


def _setup(tmp_path, filename: str, **overrides):
    settings = _build_test_settings(tmp_path, filename, **overrides)
    repository = DataRepository(settings)
    repository.initialize_database()
    planner = StayAdmissionPlanner(repository=repository, settings=settings)
    return settings, repository, planner


def _by_id(items):
    return {item.resource.resource_id: item for item in items}


def test_full_availability_scenario(tmp_path) -> None:
    _, repository, planner = _setup(tmp_path, "planner_full.db")
    resource_a = repository.create_resource("Apartment A", 1200.0, 2)

    report = planner.check_stay_availability(JUNE_1, JULY_1)

    option = _by_id(report.options)[resource_a]
    assert option.classification == FULLY_AVAILABLE
    assert option.available_days == 30
    assert option.is_fully_available
    assert option.unavailable_periods == []
    assert report.split_stay_proposal is None


def test_partial_and_split_scenario(tmp_path) -> None:
    settings, repository, planner = _setup(tmp_path, "planner_split.db")
    resource_a = repository.create_resource("Apartment A", 900.0, 2)
    resource_b = repository.create_resource("Apartment B", 1500.0, 2)
    service = StayAdmissionService(
        repository=repository,
        settings=replace(settings, stay_minimum_days=1),
    )
    service.admit_stay(JUNE_15, JULY_1, resource_id=resource_a, guest_name="Earlier guest")
    service.admit_stay(JUNE_1, JUNE_15, resource_id=resource_b, guest_name="Other guest")

    report = planner.check_stay_availability(JUNE_1, JULY_1)

    assert not report.has_full_match
    options = _by_id(report.options)
    assert options[resource_a].classification == PARTIAL
    assert options[resource_a].free_windows == [DateRange(JUNE_1, JUNE_15)]
    assert options[resource_b].classification == PARTIAL
    assert options[resource_b].free_windows == [DateRange(JUNE_15, JULY_1)]
    # More free days ranks first among partial options.
    assert [item.resource.resource_id for item in report.options] == [resource_b, resource_a]

    period = options[resource_a].unavailable_periods[0]
    assert period.dates == DateRange(JUNE_15, JULY_1)
    assert period.kind == "reservation"
    assert period.state == "confirmed"

    proposal = report.split_stay_proposal
    assert proposal is not None and proposal.found
    assert [(segment.resource_id, segment.dates) for segment in proposal.segments] == [
        (resource_a, DateRange(JUNE_1, JUNE_15)),
        (resource_b, DateRange(JUNE_15, JULY_1)),
    ]
    assert proposal.segments[0].price == segment_price(900.0, 14) == 420.0
    assert proposal.segments[1].price == segment_price(1500.0, 16) == 800.0
    assert proposal.total_price == 1220.0


def test_classification_is_idempotent(tmp_path) -> None:
    settings, repository, planner = _setup(tmp_path, "planner_idempotent.db")
    first_id = repository.create_resource("One", 1000.0, 1)
    repository.create_resource("Two", 800.0, 1)
    StayAdmissionService(
        repository=repository,
        settings=replace(settings, stay_minimum_days=1),
    ).admit_stay(date(2025, 6, 10), date(2025, 6, 20), resource_id=first_id)

    assert planner.check_stay_availability(JUNE_1, JULY_1) == planner.check_stay_availability(
        JUNE_1, JULY_1
    )


def test_fully_available_ranked_by_price_then_id(tmp_path) -> None:
    _, repository, planner = _setup(tmp_path, "planner_rank.db")
    expensive = repository.create_resource("Penthouse", 3000.0, 4)
    cheap_first = repository.create_resource("Studio 1", 800.0, 1)
    cheap_second = repository.create_resource("Studio 2", 800.0, 1)

    report = planner.check_stay_availability(JUNE_1, JULY_1)

    assert [item.resource.resource_id for item in report.options] == [
        cheap_first,
        cheap_second,
        expensive,
    ]


def test_unavailable_status_and_short_windows_are_excluded(tmp_path) -> None:
    settings, repository, planner = _setup(tmp_path, "planner_excluded.db")
    closed = repository.create_resource("Closed", 700.0, 1, status="unavailable")
    busy = repository.create_resource("Busy", 900.0, 1)
    open_id = repository.create_resource("Open", 1100.0, 1)
    StayAdmissionService(
        repository=repository,
        settings=replace(settings, stay_minimum_days=1),
    ).admit_stay(date(2025, 6, 5), date(2025, 6, 28), resource_id=busy)

    report = planner.check_stay_availability(JUNE_1, JULY_1)

    assert [item.resource.resource_id for item in report.options] == [open_id]
    excluded = _by_id(report.excluded)
    assert excluded[closed].classification == UNAVAILABLE
    assert not excluded[closed].is_fully_available
    assert excluded[closed].available_days == 30
    assert excluded[busy].classification == UNAVAILABLE
    assert excluded[busy].available_days == 7


def test_custom_partial_threshold(tmp_path) -> None:
    settings, repository, planner = _setup(tmp_path, "planner_threshold.db")
    busy = repository.create_resource("Busy", 900.0, 1)
    StayAdmissionService(
        repository=repository,
        settings=replace(settings, stay_minimum_days=1),
    ).admit_stay(date(2025, 6, 5), date(2025, 6, 28), resource_id=busy)

    report = planner.check_stay_availability(JUNE_1, JULY_1, partial_threshold_days=7)

    assert _by_id(report.options)[busy].classification == PARTIAL


def test_split_reports_gap(tmp_path) -> None:
    settings, repository, planner = _setup(tmp_path, "planner_gap.db")
    first = repository.create_resource("First", 900.0, 1)
    second = repository.create_resource("Second", 900.0, 1)
    service = StayAdmissionService(repository=repository, settings=replace(settings, stay_minimum_days=1))
    # Both units are taken on 06-15, so no chain can cross that day.
    service.admit_stay(date(2025, 6, 15), date(2025, 6, 16), resource_id=first)
    service.admit_stay(date(2025, 6, 14), date(2025, 6, 17), resource_id=second)

    proposal = planner.check_stay_availability(JUNE_1, JULY_1).split_stay_proposal

    assert proposal is not None
    assert not proposal.found
    assert proposal.reason == NO_FULL_COVER
    assert proposal.segments == []


def test_split_respects_segment_limit(tmp_path) -> None:
    settings, repository, planner = _setup(
        tmp_path,
        "planner_segments.db",
        stay_max_split_segments=2,
        stay_partial_threshold_days=5,
    )
    ids = [repository.create_resource(f"Unit {index}", 900.0, 1) for index in range(3)]
    service = StayAdmissionService(repository=repository, settings=replace(settings, stay_minimum_days=1))
    # Unit 0 free 06-01..06-11, unit 1 free 06-11..06-21, unit 2 free 06-21..07-01.
    service.admit_stay(date(2025, 6, 11), JULY_1, resource_id=ids[0])
    service.admit_stay(JUNE_1, date(2025, 6, 11), resource_id=ids[1])
    service.admit_stay(date(2025, 6, 21), JULY_1, resource_id=ids[1])
    service.admit_stay(JUNE_1, date(2025, 6, 21), resource_id=ids[2])

    proposal = planner.check_stay_availability(JUNE_1, JULY_1).split_stay_proposal

    assert proposal is not None
    assert not proposal.found
    assert proposal.reason == TOO_MANY_SEGMENTS


def test_stay_shorter_than_minimum_is_rejected(tmp_path) -> None:
    _, _, planner = _setup(tmp_path, "planner_minimum.db")
    with pytest.raises(InvalidRangeError):
        planner.check_stay_availability(JUNE_1, date(2025, 6, 20))
    with pytest.raises(InvalidRangeError):
        planner.check_stay_availability(JULY_1, JUNE_1)


def _split_fixture(tmp_path, filename: str, **overrides):
    settings, repository, planner = _setup(tmp_path, filename, **overrides)
    ids = {
        "A": repository.create_resource("Apartment A", 900.0, 2),
        "B": repository.create_resource("Apartment B", 1500.0, 2),
        "C": repository.create_resource("Studio C", 300.0, 1),
        "D": repository.create_resource("Studio D", 300.0, 1),
    }
    service = StayAdmissionService(repository=repository, settings=replace(settings, stay_minimum_days=1))
    # Free windows: A 06-01..06-15, B 06-15..07-01, C 06-01..06-10, D 06-10..06-15.
    service.admit_stay(JUNE_15, JULY_1, resource_id=ids["A"])
    service.admit_stay(JUNE_1, JUNE_15, resource_id=ids["B"])
    service.admit_stay(date(2025, 6, 10), JULY_1, resource_id=ids["C"])
    service.admit_stay(JUNE_1, date(2025, 6, 10), resource_id=ids["D"])
    service.admit_stay(JUNE_15, JULY_1, resource_id=ids["D"])
    return ids, repository, planner


def _chain(option):
    return [(segment.resource_id, segment.dates, segment.price) for segment in option.segments]


def test_split_options_list_every_cover_fewest_segments_first(tmp_path) -> None:
    ids, _, planner = _split_fixture(tmp_path, "planner_options.db")

    report = planner.check_stay_availability(JUNE_1, JULY_1, partial_threshold_days=5)

    june_10 = date(2025, 6, 10)
    assert [_chain(option) for option in report.split_stay_options] == [
        [
            (ids["A"], DateRange(JUNE_1, JUNE_15), 420.0),
            (ids["B"], DateRange(JUNE_15, JULY_1), 800.0),
        ],
        [
            (ids["C"], DateRange(JUNE_1, june_10), 90.0),
            (ids["D"], DateRange(june_10, JUNE_15), 50.0),
            (ids["B"], DateRange(JUNE_15, JULY_1), 800.0),
        ],
        [
            (ids["C"], DateRange(JUNE_1, june_10), 90.0),
            (ids["A"], DateRange(june_10, JUNE_15), 150.0),
            (ids["B"], DateRange(JUNE_15, JULY_1), 800.0),
        ],
    ]
    assert [option.total_price for option in report.split_stay_options] == [1220.0, 940.0, 1040.0]
    assert all(option.found for option in report.split_stay_options)
    # The greedy proposal stays the furthest-reaching chain.
    assert report.split_stay_proposal is not None
    assert _chain(report.split_stay_proposal) == _chain(report.split_stay_options[0])


def test_split_options_respect_segment_limit(tmp_path) -> None:
    ids, _, planner = _split_fixture(tmp_path, "planner_options_limit.db", stay_max_split_segments=2)

    report = planner.check_stay_availability(JUNE_1, JULY_1, partial_threshold_days=5)

    assert [[segment.resource_id for segment in option.segments] for option in report.split_stay_options] == [
        [ids["A"], ids["B"]]
    ]


def test_split_options_are_capped(tmp_path) -> None:
    settings, repository, planner = _setup(
        tmp_path,
        "planner_options_cap.db",
        stay_partial_threshold_days=5,
    )
    service = StayAdmissionService(repository=repository, settings=replace(settings, stay_minimum_days=1))
    # Four units free for the first half and four for the second: sixteen two-leg covers.
    for index in range(4):
        early = repository.create_resource(f"Early {index}", 900.0 + index, 1)
        service.admit_stay(JUNE_15, JULY_1, resource_id=early)
        late = repository.create_resource(f"Late {index}", 900.0 + index, 1)
        service.admit_stay(JUNE_1, JUNE_15, resource_id=late)

    options = planner.check_stay_availability(JUNE_1, JULY_1).split_stay_options

    assert len(options) == SPLIT_OPTION_LIMIT
    totals = [option.total_price for option in options]
    assert totals == sorted(totals)
    assert len({tuple(_chain(option)) for option in options}) == SPLIT_OPTION_LIMIT


def test_split_options_empty_when_a_resource_is_fully_available(tmp_path) -> None:
    _, repository, planner = _split_fixture(tmp_path, "planner_options_full.db")
    repository.create_resource("Free", 2000.0, 2)

    report = planner.check_stay_availability(JUNE_1, JULY_1, partial_threshold_days=5)

    assert report.has_full_match
    assert report.split_stay_proposal is None
    assert report.split_stay_options == []
