"""Stay availability classification, ranking and split-stay proposals."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Sequence

from admission_engine.domain.constraints import AdmissionConfig, admission_config_from_settings
from admission_engine.domain.errors import InvalidRangeError
from admission_engine.domain.intervals import DateRange, contains, days_in
from admission_engine.domain.models import Resource
from admission_engine.repository.data_repository import DataRepository
from admission_engine.services.occupancy_ledger import (
    LedgerSegment,
    OccupancyLedger,
    available_days,
    free_windows,
    occupied_segments,
)
from admission_engine.utils.config import Settings, get_settings
from admission_engine.utils.logger import format_fields, get_logger


logger = get_logger(__name__)

FULLY_AVAILABLE = "fully_available"
PARTIAL = "partial"
UNAVAILABLE = "unavailable"

NO_FULL_COVER = "no_full_cover_found"
TOO_MANY_SEGMENTS = "too_many_segments"
SPLIT_OPTION_LIMIT = 10

# Apartment prices are monthly rates; segments are prorated per day.
DAYS_PER_PRICE_PERIOD = 30


@dataclass(frozen=True)
class UnavailablePeriod:
    dates: DateRange
    kind: str
    ref_id: int
    state: str
    reason: str


@dataclass(frozen=True)
class ResourceAvailability:
    resource: Resource
    classification: str
    total_days: int
    available_days: int
    is_fully_available: bool
    free_windows: list[DateRange] = field(default_factory=list)
    unavailable_periods: list[UnavailablePeriod] = field(default_factory=list)


@dataclass(frozen=True)
class SplitStaySegment:
    resource_id: int
    title: str
    dates: DateRange
    price: float


@dataclass(frozen=True)
class SplitStayProposal:
    found: bool
    segments: list[SplitStaySegment]
    total_price: float
    reason: Optional[str] = None


@dataclass(frozen=True)
class StayAvailabilityReport:
    query: DateRange
    options: list[ResourceAvailability]
    excluded: list[ResourceAvailability]
    split_stay_proposal: Optional[SplitStayProposal]
    split_stay_options: list[SplitStayProposal] = field(default_factory=list)

    @property
    def has_full_match(self) -> bool:
        return any(option.is_fully_available for option in self.options)


def validate_stay_range(arrival: date, departure: date, minimum_days: int) -> DateRange:
    if departure <= arrival:
        raise InvalidRangeError(
            f"Departure ({departure}) must be after arrival ({arrival})"
        )
    stay = DateRange(arrival, departure)
    if days_in(stay) < minimum_days:
        raise InvalidRangeError(
            f"Stay of {days_in(stay)} days is shorter than the {minimum_days}-day minimum"
        )
    return stay


def segment_price(monthly_price: float, days: int) -> float:
    return round(monthly_price / DAYS_PER_PRICE_PERIOD * days, 2)


def classify_resource(
    resource: Resource,
    partition: Sequence[LedgerSegment],
    query: DateRange,
    partial_threshold_days: int,
) -> ResourceAvailability:
    total = days_in(query)
    free = available_days(partition)
    fully = free == total and resource.is_offerable
    if fully:
        classification = FULLY_AVAILABLE
    elif resource.is_offerable and free >= partial_threshold_days:
        classification = PARTIAL
    else:
        classification = UNAVAILABLE

    periods = [
        UnavailablePeriod(
            dates=segment.dates,
            kind=segment.occupant.kind,
            ref_id=segment.occupant.ref_id,
            state=segment.occupant.state,
            reason=segment.occupant.reason,
        )
        for segment in occupied_segments(partition)
        if segment.occupant is not None
    ]
    return ResourceAvailability(
        resource=resource,
        classification=classification,
        total_days=total,
        available_days=free,
        is_fully_available=fully,
        free_windows=free_windows(partition),
        unavailable_periods=periods,
    )


def rank_options(
    availabilities: Sequence[ResourceAvailability],
) -> tuple[list[ResourceAvailability], list[ResourceAvailability]]:
    """Return (ranked, excluded).

    Fully available resources lead, cheapest first. Partial resources follow
    with the most free days first, then price. Everything else is excluded
    from the ranking but kept for diagnostics. Resource id breaks every
    remaining tie.
    """
    fully = sorted(
        (item for item in availabilities if item.classification == FULLY_AVAILABLE),
        key=lambda item: (item.resource.price, item.resource.resource_id),
    )
    partial = sorted(
        (item for item in availabilities if item.classification == PARTIAL),
        key=lambda item: (-item.available_days, item.resource.price, item.resource.resource_id),
    )
    excluded = sorted(
        (item for item in availabilities if item.classification == UNAVAILABLE),
        key=lambda item: item.resource.resource_id,
    )
    return fully + partial, excluded


def _split_windows(candidates: Sequence[ResourceAvailability]) -> list[tuple[DateRange, Resource]]:
    return sorted(
        (
            (window, item.resource)
            for item in candidates
            if item.classification == PARTIAL and item.resource.is_offerable
            for window in item.free_windows
        ),
        key=lambda pair: (pair[0].start, pair[0].end, pair[1].price, pair[1].resource_id),
    )


def _segment_from(
    resource: Resource,
    cursor: date,
    window: DateRange,
    query: DateRange,
) -> SplitStaySegment:
    dates = DateRange(cursor, min(window.end, query.end))
    return SplitStaySegment(
        resource_id=resource.resource_id,
        title=resource.title,
        dates=dates,
        price=segment_price(resource.price, days_in(dates)),
    )


def _found(segments: Sequence[SplitStaySegment]) -> SplitStayProposal:
    return SplitStayProposal(
        found=True,
        segments=list(segments),
        total_price=round(sum(segment.price for segment in segments), 2),
    )


def propose_split_stay(
    candidates: Sequence[ResourceAvailability],
    query: DateRange,
    max_segments: int,
) -> SplitStayProposal:
    """Greedy interval cover of ``query`` from partial resources' free windows.

    From the current coverage point, take the window that contains it and
    reaches furthest (cheaper, then lower id, on ties). Windows must chain
    with no gap: the next segment starts exactly where the previous ends.
    """
    windows = _split_windows(candidates)

    segments: list[SplitStaySegment] = []
    cursor = query.start
    while cursor < query.end:
        reachable = [(window, resource) for window, resource in windows if contains(window, cursor)]
        if not reachable:
            return SplitStayProposal(found=False, segments=[], total_price=0.0, reason=NO_FULL_COVER)
        window, resource = min(
            reachable,
            key=lambda pair: (-pair[0].end.toordinal(), pair[1].price, pair[1].resource_id),
        )
        segments.append(_segment_from(resource, cursor, window, query))
        if len(segments) > max_segments:
            return SplitStayProposal(
                found=False, segments=[], total_price=0.0, reason=TOO_MANY_SEGMENTS
            )
        cursor = segments[-1].dates.end

    return _found(segments)


def enumerate_split_options(
    candidates: Sequence[ResourceAvailability],
    query: DateRange,
    max_segments: int,
    limit: int = SPLIT_OPTION_LIMIT,
) -> list[SplitStayProposal]:
    """Every distinct chain of free windows covering ``query``.

    Each segment runs from the coverage point to the end of a window that
    contains it. Chains longer than ``max_segments`` are dropped. Results
    are ordered by fewest segments, then lowest total price, and capped at
    ``limit``.
    """
    windows = _split_windows(candidates)
    covers: dict[tuple[tuple[int, DateRange], ...], SplitStayProposal] = {}

    def extend(cursor: date, chosen: list[SplitStaySegment]) -> None:
        if cursor >= query.end:
            key = tuple((segment.resource_id, segment.dates) for segment in chosen)
            covers.setdefault(key, _found(chosen))
            return
        if len(chosen) >= max_segments:
            return
        for window, resource in windows:
            if not contains(window, cursor):
                continue
            chosen.append(_segment_from(resource, cursor, window, query))
            extend(chosen[-1].dates.end, chosen)
            chosen.pop()

    extend(query.start, [])
    ranked = sorted(
        covers.values(),
        key=lambda option: (
            len(option.segments),
            option.total_price,
            [(segment.dates.start, segment.resource_id) for segment in option.segments],
        ),
    )
    return ranked[:limit]


class StayAdmissionPlanner:
    """Read-only availability view across every apartment."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
        ledger: Optional[OccupancyLedger] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)
        self._ledger = ledger or OccupancyLedger(
            repository=self._repository,
            settings=self._settings,
        )
        self._config: AdmissionConfig = admission_config_from_settings(self._settings)

    def check_stay_availability(
        self,
        arrival: date,
        departure: date,
        *,
        partial_threshold_days: Optional[int] = None,
    ) -> StayAvailabilityReport:
        query = validate_stay_range(arrival, departure, self._config.minimum_stay_days)
        threshold = (
            partial_threshold_days
            if partial_threshold_days is not None
            else self._config.partial_threshold_days
        )

        resources = self._repository.list_resources()
        partitions = self._ledger.partitions_for(
            [resource.resource_id for resource in resources],
            query,
        )
        availabilities = [
            classify_resource(resource, partitions[resource.resource_id], query, threshold)
            for resource in resources
        ]
        options, excluded = rank_options(availabilities)

        proposal: Optional[SplitStayProposal] = None
        split_options: list[SplitStayProposal] = []
        if not any(option.is_fully_available for option in options):
            proposal = propose_split_stay(options, query, self._config.max_split_segments)
            split_options = enumerate_split_options(options, query, self._config.max_split_segments)

        logger.info(
            "Stay availability checked | %s",
            format_fields(
                query=query,
                resources=len(resources),
                fully_available=sum(1 for item in options if item.is_fully_available),
                partial=sum(1 for item in options if item.classification == PARTIAL),
                excluded=len(excluded),
                split_found=proposal.found if proposal is not None else None,
                split_options=len(split_options),
            ),
        )
        return StayAvailabilityReport(
            query=query,
            options=options,
            excluded=excluded,
            split_stay_proposal=proposal,
            split_stay_options=split_options,
        )
