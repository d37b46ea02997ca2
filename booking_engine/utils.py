"""Time-of-day and interval helpers shared across the booking engine.

Times are handled as integer minutes since midnight. Intervals are
half-open: ``[start, end)``.
"""

import re
from datetime import date, datetime
from typing import Iterable, NamedTuple

MINUTES_PER_DAY = 24 * 60

_HHMM_RE = re.compile(r"^([01]?[0-9]|2[0-3]):([0-5][0-9])$")


class Interval(NamedTuple):
    """A half-open span of minutes within one day."""

    start: int
    end: int

    @property
    def duration(self) -> int:
        return self.end - self.start

    def overlaps(self, other: "Interval") -> bool:
        return self.start < other.end and other.start < self.end

    def contains(self, other: "Interval") -> bool:
        return self.start <= other.start and other.end <= self.end

    def expand(self, before: int, after: int) -> "Interval":
        return Interval(self.start - before, self.end + after)

    def label(self) -> str:
        return f"{format_minutes(self.start)}-{format_minutes(self.end)}"


def parse_hhmm(value: str, allow_end_of_day: bool = False) -> int:
    """Convert an ``HH:MM`` string to minutes since midnight.

    ``24:00`` is accepted only when ``allow_end_of_day`` is set, so a slot
    may run until midnight.

    Examples:
        >>> parse_hhmm("09:30")
        570
        >>> parse_hhmm("24:00", allow_end_of_day=True)
        1440
    """
    value = value.strip()
    if allow_end_of_day and value == "24:00":
        return MINUTES_PER_DAY
    match = _HHMM_RE.match(value)
    if not match:
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    return int(match.group(1)) * 60 + int(match.group(2))


def format_minutes(minutes: int) -> str:
    """Convert minutes since midnight back to ``HH:MM``.

    Examples:
        >>> format_minutes(570)
        '09:30'
    """
    hours, mins = divmod(minutes, 60)
    return f"{hours:02d}:{mins:02d}"


def parse_date(value: str) -> date:
    """Parse a ``YYYY-MM-DD`` calendar date."""
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except (ValueError, AttributeError):
        raise ValueError(f"Invalid date {value!r}, expected YYYY-MM-DD") from None


def merge_intervals(intervals: Iterable[Interval]) -> list[Interval]:
    """Sort and merge overlapping intervals. Touching intervals stay separate."""
    merged: list[Interval] = []
    for current in sorted(intervals):
        if merged and current.start < merged[-1].end:
            last = merged[-1]
            merged[-1] = Interval(last.start, max(last.end, current.end))
        else:
            merged.append(current)
    return merged


def intervals_overlap_with_buffer(a: Interval, b: Interval, buffer_minutes: int) -> bool:
    """Overlap test after padding ``b`` by ``buffer_minutes`` on both sides.

    Equivalent to ``a.start < b.end + buffer and a.end + buffer > b.start``.
    """
    return a.overlaps(b.expand(buffer_minutes, buffer_minutes))
