"""Half-open calendar-day interval arithmetic.

A ``DateRange`` covers ``[start, end)``: the start day is included, the end
day is not. A single day ``d`` is ``DateRange(d, d + 1 day)``. Ranges that
only touch at a boundary do not overlap, so a checkout on the same day as the
next check-in is never a conflict.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, Iterator, Optional


ONE_DAY = timedelta(days=1)


class InvalidIntervalError(ValueError):
    """Raised when a range would be empty or inverted."""


@dataclass(frozen=True, order=True)
class DateRange:
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise InvalidIntervalError(
                f"Range start ({self.start}) must be before end ({self.end})"
            )

    @classmethod
    def single_day(cls, day: date) -> "DateRange":
        return cls(day, day + ONE_DAY)

    @classmethod
    def inclusive(cls, first_day: date, last_day: date) -> "DateRange":
        """Build from a closed ``[first_day, last_day]`` range."""
        return cls(first_day, last_day + ONE_DAY)

    @property
    def last_day(self) -> date:
        return self.end - ONE_DAY

    def __len__(self) -> int:
        return days_in(self)

    def __str__(self) -> str:
        return f"[{self.start.isoformat()}, {self.end.isoformat()})"


def overlaps(a: DateRange, b: DateRange) -> bool:
    return a.start < b.end and b.start < a.end


def days_in(range_: DateRange) -> int:
    return (range_.end - range_.start).days


def contains(range_: DateRange, day: date) -> bool:
    return range_.start <= day < range_.end


def intersect(a: DateRange, b: DateRange) -> Optional[DateRange]:
    start = max(a.start, b.start)
    end = min(a.end, b.end)
    if start >= end:
        return None
    return DateRange(start, end)


def subtract(a: DateRange, b: DateRange) -> list[DateRange]:
    """Return the parts of ``a`` not covered by ``b`` (zero, one or two ranges)."""
    if not overlaps(a, b):
        return [a]
    pieces: list[DateRange] = []
    if a.start < b.start:
        pieces.append(DateRange(a.start, b.start))
    if b.end < a.end:
        pieces.append(DateRange(b.end, a.end))
    return pieces


def subtract_all(a: DateRange, others: Iterable[DateRange]) -> list[DateRange]:
    remaining = [a]
    for other in sorted(others):
        next_remaining: list[DateRange] = []
        for piece in remaining:
            next_remaining.extend(subtract(piece, other))
        remaining = next_remaining
        if not remaining:
            break
    return remaining


def merge(ranges: Iterable[DateRange]) -> list[DateRange]:
    """Union of ranges; touching ranges are joined into one."""
    merged: list[DateRange] = []
    for current in sorted(ranges):
        if merged and current.start <= merged[-1].end:
            last = merged[-1]
            if current.end > last.end:
                merged[-1] = DateRange(last.start, current.end)
            continue
        merged.append(current)
    return merged


def iter_days(range_: DateRange) -> Iterator[date]:
    day = range_.start
    while day < range_.end:
        yield day
        day += ONE_DAY
