"""Calendar helpers for report partitioning.

Dates are compared as calendar dates. A ``datetime`` is reduced to its date
component as stored, with no timezone conversion.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterator, Tuple, Union

DateLike = Union[date, datetime]


def as_calendar_date(value: DateLike) -> date:
    """Calendar date of a date or datetime."""
    if isinstance(value, datetime):
        return value.date()
    return value


def week_of(value: DateLike) -> Tuple[int, int]:
    """ISO 8601 week of a date.

    Week 1 is the week containing the year's first Thursday; weeks run
    Monday to Sunday, so early January can belong to the previous ISO year.

    Returns:
        ``(iso_year, week_number)``
    """
    iso = as_calendar_date(value).isocalendar()
    return iso[0], iso[1]


def month_bucket(year: int, month: int) -> date:
    """Aggregation key for a calendar month: its first day."""
    return date(year, month, 1)


@dataclass(frozen=True)
class DateInterval:
    """Closed date interval; both ``start`` and ``end`` are included."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(f"Interval end {self.end} is before start {self.start}")

    def __contains__(self, value: DateLike) -> bool:
        return self.contains(value)

    def contains(self, value: DateLike) -> bool:
        return self.start <= as_calendar_date(value) <= self.end

    def weeks(self) -> Iterator[Tuple[int, int]]:
        """Distinct ISO weeks touched by the interval, in order."""
        current = self.start
        last = None
        while current <= self.end:
            week = week_of(current)
            if week != last:
                yield week
                last = week
            current = date.fromordinal(current.toordinal() + 1)


def in_interval(value: DateLike, start: DateLike, end: DateLike) -> bool:
    """Whether a date falls inside the closed interval ``[start, end]``."""
    return as_calendar_date(start) <= as_calendar_date(value) <= as_calendar_date(end)
