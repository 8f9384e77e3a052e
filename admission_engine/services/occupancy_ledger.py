"""Per-resource occupancy partitions and the exclusivity rule."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Optional, Sequence

from admission_engine.domain.errors import InvalidRangeError, ResourceNotFoundError
from admission_engine.domain.intervals import DateRange, days_in, intersect, iter_days
from admission_engine.domain.models import Reservation, ResourceBlock
from admission_engine.repository.data_repository import DataRepository
from admission_engine.utils.config import Settings, get_settings


FREE = "free"
OCCUPIED = "occupied"

OCCUPANT_RESERVATION = "reservation"
OCCUPANT_BLOCK = "block"

CALENDAR_AVAILABLE = "available"
CALENDAR_BOOKED = "booked"
CALENDAR_BLOCKED = "blocked"


@dataclass(frozen=True)
class Occupant:
    """What holds an occupied stretch of days, kept for diagnostics."""

    kind: str
    ref_id: int
    state: str
    reason: str
    dates: DateRange


@dataclass(frozen=True)
class LedgerSegment:
    dates: DateRange
    status: str
    occupant: Optional[Occupant] = None

    @property
    def is_free(self) -> bool:
        return self.status == FREE


def _occupants(
    resource_id: int,
    reservations: Iterable[Reservation],
    blocks: Iterable[ResourceBlock],
) -> list[Occupant]:
    occupants: list[Occupant] = []
    for reservation in reservations:
        if reservation.resource_id != resource_id or not reservation.is_occupying:
            continue
        occupants.append(
            Occupant(
                kind=OCCUPANT_RESERVATION,
                ref_id=reservation.reservation_id,
                state=reservation.state,
                reason=f"stay {reservation.stay_id}",
                dates=reservation.dates,
            )
        )
    for block in blocks:
        if block.resource_id != resource_id:
            continue
        occupants.append(
            Occupant(
                kind=OCCUPANT_BLOCK,
                ref_id=block.block_id,
                state=CALENDAR_BLOCKED,
                reason=block.reason,
                dates=block.dates,
            )
        )
    occupants.sort(key=lambda item: (item.dates.start, item.dates.end, item.kind, item.ref_id))
    return occupants


def build_partition(
    resource_id: int,
    reservations: Iterable[Reservation],
    query: DateRange,
    blocks: Iterable[ResourceBlock] = (),
) -> list[LedgerSegment]:
    """Split ``query`` into ordered free/occupied segments for one resource.

    Occupants are sorted before the walk, so the output depends only on the
    set of inputs and never on their order. Where two occupants overlap, the
    one that sorts first owns the shared days.
    """
    segments: list[LedgerSegment] = []
    cursor = query.start
    for occupant in _occupants(resource_id, reservations, blocks):
        clipped = intersect(occupant.dates, query)
        if clipped is None or clipped.end <= cursor:
            continue
        start = max(clipped.start, cursor)
        if start > cursor:
            segments.append(LedgerSegment(DateRange(cursor, start), FREE))
        segments.append(LedgerSegment(DateRange(start, clipped.end), OCCUPIED, occupant))
        cursor = clipped.end
    if cursor < query.end:
        segments.append(LedgerSegment(DateRange(cursor, query.end), FREE))
    return segments


def free_windows(partition: Sequence[LedgerSegment]) -> list[DateRange]:
    return [segment.dates for segment in partition if segment.is_free]


def occupied_segments(partition: Sequence[LedgerSegment]) -> list[LedgerSegment]:
    return [segment for segment in partition if not segment.is_free]


def available_days(partition: Sequence[LedgerSegment]) -> int:
    return sum(days_in(segment.dates) for segment in partition if segment.is_free)


def find_conflict(
    resource_id: int,
    candidate: DateRange,
    reservations: Iterable[Reservation],
    blocks: Iterable[ResourceBlock] = (),
) -> Optional[Occupant]:
    """Return the first occupant intersecting ``candidate``, if any."""
    for occupant in _occupants(resource_id, reservations, blocks):
        if intersect(occupant.dates, candidate) is not None:
            return occupant
    return None


def is_admissible(
    resource_id: int,
    candidate: DateRange,
    reservations: Iterable[Reservation],
    blocks: Iterable[ResourceBlock] = (),
) -> bool:
    return find_conflict(resource_id, candidate, reservations, blocks) is None


class OccupancyLedger:
    """Fetches occupancy from storage and answers read-only questions.

    Nothing here takes a lock: results are display snapshots. Writes
    re-validate with :func:`find_conflict` inside the write transaction.
    """

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def partition(self, resource_id: int, query: DateRange) -> list[LedgerSegment]:
        reservations = self._repository.list_occupying_reservations(resource_id, query)
        blocks = self._repository.list_blocks(resource_id, query)
        return build_partition(resource_id, reservations, query, blocks)

    def partitions_for(
        self,
        resource_ids: Sequence[int],
        query: DateRange,
    ) -> dict[int, list[LedgerSegment]]:
        """Bulk variant: two queries regardless of how many resources."""
        reservations_by_resource: dict[int, list[Reservation]] = defaultdict(list)
        for reservation in self._repository.list_occupying_reservations(window=query):
            reservations_by_resource[reservation.resource_id].append(reservation)
        blocks_by_resource: dict[int, list[ResourceBlock]] = defaultdict(list)
        for block in self._repository.list_blocks(window=query):
            blocks_by_resource[block.resource_id].append(block)
        return {
            resource_id: build_partition(
                resource_id,
                reservations_by_resource.get(resource_id, []),
                query,
                blocks_by_resource.get(resource_id, []),
            )
            for resource_id in resource_ids
        }

    def _require_resource(self, resource_id: int) -> None:
        if self._repository.get_resource(resource_id) is None:
            raise ResourceNotFoundError(f"Resource {resource_id} not found")

    def calendar(self, resource_id: int, query: DateRange) -> list[tuple[date, str]]:
        """Day-by-day status: available, booked (reservation) or blocked."""
        if days_in(query) > self._settings.max_query_days:
            raise InvalidRangeError(
                f"Calendar spans {days_in(query)} days; "
                f"at most {self._settings.max_query_days} are allowed"
            )
        self._require_resource(resource_id)
        days: list[tuple[date, str]] = []
        for segment in self.partition(resource_id, query):
            if segment.is_free:
                status = CALENDAR_AVAILABLE
            elif segment.occupant is not None and segment.occupant.kind == OCCUPANT_BLOCK:
                status = CALENDAR_BLOCKED
            else:
                status = CALENDAR_BOOKED
            days.extend((day, status) for day in iter_days(segment.dates))
        return days

    def next_available_date(
        self,
        resource_id: int,
        from_date: date,
        horizon_days: Optional[int] = None,
    ) -> Optional[date]:
        self._require_resource(resource_id)
        horizon = horizon_days or self._settings.stay_next_available_horizon_days
        window = DateRange(from_date, from_date + timedelta(days=horizon))
        for segment in self.partition(resource_id, window):
            if segment.is_free:
                return segment.dates.start
        return None
