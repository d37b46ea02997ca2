"""
Effective availability for a provider on a given date.

Precedence, strongest first:
1. Blocked periods: blackout, wins over everything
2. Date overrides: replace the weekly pattern for one date
3. Weekly schedule: default recurring hours

Declared hours are absolute: buffers are applied by the conflict checker
against existing bookings, never here.
"""

import logging
from datetime import date, timedelta

from booking_engine.schemas.availability_schema import ProviderAvailability, TimeSlot
from booking_engine.utils import Interval, merge_intervals

logger = logging.getLogger(__name__)


class AvailabilityResolver:
    """Pure resolver from availability configuration to open windows."""

    def resolve_open_windows(
        self, availability: ProviderAvailability, day: date
    ) -> list[Interval]:
        """
        Compute the open windows for ``day``.

        Returns:
            Ascending, pairwise non-overlapping intervals in minutes of day.
            Empty when the provider is closed that day.
        """
        blocked = availability.blocked_period_for(day)
        if blocked is not None:
            logger.debug(
                "Provider %s blocked on %s (%s)", availability.provider_id, day, blocked.title
            )
            return []

        override = availability.override_for(day)
        if override is not None:
            if not override.is_available:
                return []
            return self._windows_from_slots(override.time_slots)

        schedule = availability.day_schedule(day)
        if not schedule.is_available or not schedule.time_slots:
            return []
        return self._windows_from_slots(schedule.time_slots)

    def resolve_range(
        self, availability: ProviderAvailability, start: date, end: date
    ) -> dict[date, list[Interval]]:
        """Resolve every date in the inclusive range ``[start, end]``."""
        result: dict[date, list[Interval]] = {}
        current = start
        while current <= end:
            result[current] = self.resolve_open_windows(availability, current)
            current += timedelta(days=1)
        return result

    def is_within_booking_horizon(
        self, availability: ProviderAvailability, day: date, today: date
    ) -> bool:
        """True if ``day`` is neither in the past nor beyond the advance limit."""
        if day < today:
            return False
        return (day - today).days <= availability.max_advance_booking_days

    @staticmethod
    def _windows_from_slots(slots: list[TimeSlot]) -> list[Interval]:
        return merge_intervals(slot.to_interval() for slot in slots if slot.is_active)
