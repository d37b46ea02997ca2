"""
Conflict detection between a requested interval and existing bookings.

A request is accepted only when it fits entirely inside one open window
and clears every non-terminal booking by the buffer on both sides. The
first accepted booking wins; there is no preemption.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol, Union

from booking_engine.schemas.booking_schema import ACTIVE_STATUSES, BookingStatus
from booking_engine.utils import Interval, format_minutes, intervals_overlap_with_buffer

logger = logging.getLogger(__name__)

OUTSIDE_OPEN_HOURS = "outside_open_hours"
BOOKING_CONFLICT = "booking_conflict"


class ScheduledBooking(Protocol):
    """Anything with a booking number, a status, and a same-day interval."""

    @property
    def booking_number(self) -> str: ...

    @property
    def status(self) -> BookingStatus: ...

    @property
    def interval(self) -> Interval: ...


@dataclass(frozen=True)
class Accepted:
    interval: Interval
    accepted: bool = True


@dataclass(frozen=True)
class Rejected:
    reason: str
    message: str
    conflicting_booking_number: Optional[str] = None
    suggestions: list[str] = field(default_factory=list)
    accepted: bool = False


CheckResult = Union[Accepted, Rejected]


class ConflictChecker:
    """Accept/reject decisions for requested intervals."""

    def __init__(self, suggestion_step_minutes: int = 30) -> None:
        self._step = suggestion_step_minutes

    def check_request(
        self,
        open_windows: list[Interval],
        existing_bookings: Iterable[ScheduledBooking],
        requested_start: int,
        duration: int,
        buffer_minutes: int,
        earliest_start: int = 0,
    ) -> CheckResult:
        """
        Decide whether ``[requested_start, requested_start + duration)`` can be booked.

        Args:
            open_windows: Resolved windows for the day.
            existing_bookings: The provider's bookings for the same date.
            requested_start: Start in minutes of day.
            duration: Length in minutes.
            buffer_minutes: Padding applied on both sides of each existing booking.
            earliest_start: Suggestions before this minute are dropped
                (used for same-day requests).

        Returns:
            Accepted, or Rejected carrying the reason and retry suggestions.
        """
        bookings = [b for b in existing_bookings if b.status in ACTIVE_STATUSES]
        requested = Interval(requested_start, requested_start + duration)

        if not any(window.contains(requested) for window in open_windows):
            return Rejected(
                reason=OUTSIDE_OPEN_HOURS,
                message=f"Provider is not available at {requested.label()}",
                suggestions=self.suggest_start_times(
                    open_windows, bookings, duration, buffer_minutes, earliest_start
                ),
            )

        conflicts = self.find_conflicts(requested, bookings, buffer_minutes)
        if conflicts:
            first = conflicts[0]
            logger.debug(
                "Requested %s conflicts with booking %s", requested.label(), first.booking_number
            )
            return Rejected(
                reason=BOOKING_CONFLICT,
                message=f"Time slot {requested.label()} is already booked",
                conflicting_booking_number=first.booking_number,
                suggestions=self.suggest_start_times(
                    open_windows, bookings, duration, buffer_minutes, earliest_start
                ),
            )

        return Accepted(interval=requested)

    def find_conflicts(
        self,
        requested: Interval,
        existing_bookings: Iterable[ScheduledBooking],
        buffer_minutes: int,
    ) -> list[ScheduledBooking]:
        """Return every non-terminal booking whose buffered interval overlaps ``requested``."""
        return sorted(
            (
                b for b in existing_bookings
                if b.status in ACTIVE_STATUSES
                and intervals_overlap_with_buffer(requested, b.interval, buffer_minutes)
            ),
            key=lambda b: b.interval.start,
        )

    def suggest_start_times(
        self,
        open_windows: list[Interval],
        existing_bookings: Iterable[ScheduledBooking],
        duration: int,
        buffer_minutes: int,
        earliest_start: int = 0,
    ) -> list[str]:
        """All step-aligned start times that fit a window and clear every booking."""
        bookings = [b for b in existing_bookings if b.status in ACTIVE_STATUSES]
        suggestions: list[str] = []
        for window in open_windows:
            start = max(window.start, earliest_start)
            start = -(-start // self._step) * self._step
            while start + duration <= window.end:
                candidate = Interval(start, start + duration)
                if not self.find_conflicts(candidate, bookings, buffer_minutes):
                    suggestions.append(format_minutes(start))
                start += self._step
        return suggestions
