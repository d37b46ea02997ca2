"""
Provider availability storage.

Availability is read-mostly: readers get an immutable snapshot without
locking, and every write builds a new ProviderAvailability and swaps it in
under a lock (copy-on-write). Writes validate that a day's slots do not
overlap before they are accepted.
"""

import logging
import threading
import uuid
from datetime import date
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError

from booking_engine.errors import AvailabilityError, ValidationError
from booking_engine.schemas.availability_schema import (
    BlockedPeriod,
    DateOverride,
    DaySchedule,
    ProviderAvailability,
    TimeSlot,
    Weekday,
)

logger = logging.getLogger(__name__)


def validate_day_slots(slots: list[TimeSlot], label: str) -> None:
    """Raise ValidationError if any two slots of one day overlap."""
    intervals = sorted(slot.to_interval() for slot in slots)
    for previous, current in zip(intervals, intervals[1:]):
        if current.start < previous.end:
            raise ValidationError(
                f"Overlapping time slots on {label}: {previous.label()} and {current.label()}",
                day=label,
            )


class AvailabilityStore:
    """In-memory availability keyed by provider ID."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, ProviderAvailability] = {}

    def get(self, provider_id: str) -> Optional[ProviderAvailability]:
        """Return the current snapshot. Callers must not mutate it."""
        return self._records.get(provider_id)

    def save(self, availability: ProviderAvailability) -> ProviderAvailability:
        for day, schedule in availability.weekly_schedule.items():
            validate_day_slots(schedule.time_slots, day.value)
        for override in availability.date_overrides:
            validate_day_slots(override.time_slots, override.date.isoformat())
        with self._lock:
            self._records[availability.provider_id] = availability
        logger.info("Availability saved for provider %s", availability.provider_id)
        return availability

    def set_weekly_schedule(
        self, provider_id: str, schedule: dict[Weekday, DaySchedule]
    ) -> ProviderAvailability:
        for day, day_schedule in schedule.items():
            validate_day_slots(day_schedule.time_slots, day.value)

        def apply(record: ProviderAvailability) -> None:
            record.weekly_schedule = {
                day: schedule.get(day, DaySchedule()) for day in Weekday
            }

        return self._update(provider_id, apply, create=True)

    def add_date_override(
        self, provider_id: str, override: DateOverride
    ) -> ProviderAvailability:
        """Add or replace the override for ``override.date``."""
        validate_day_slots(override.time_slots, override.date.isoformat())

        def apply(record: ProviderAvailability) -> None:
            record.date_overrides = [
                o for o in record.date_overrides if o.date != override.date
            ] + [override]

        return self._update(provider_id, apply)

    def remove_date_override(self, provider_id: str, day: date) -> ProviderAvailability:
        def apply(record: ProviderAvailability) -> None:
            record.date_overrides = [o for o in record.date_overrides if o.date != day]

        return self._update(provider_id, apply)

    def block_period(
        self,
        provider_id: str,
        start_date: date,
        end_date: date,
        created_by: str,
        reason: str = "Blocked period",
        title: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> BlockedPeriod:
        try:
            period = BlockedPeriod(
                block_id=f"BLK-{uuid.uuid4().hex[:8].upper()}",
                start_date=start_date,
                end_date=end_date,
                title=title or reason,
                reason=reason,
                notes=notes,
                created_by=created_by,
            )
        except PydanticValidationError as exc:
            raise ValidationError(
                "Invalid blocked period", errors=[e["msg"] for e in exc.errors()]
            ) from None

        def apply(record: ProviderAvailability) -> None:
            record.blocked_periods = record.blocked_periods + [period]

        self._update(provider_id, apply)
        logger.info(
            "Provider %s blocked %s to %s (%s)", provider_id, start_date, end_date, period.block_id
        )
        return period

    def remove_blocked_period(self, provider_id: str, block_id: str) -> ProviderAvailability:
        def apply(record: ProviderAvailability) -> None:
            remaining = [p for p in record.blocked_periods if p.block_id != block_id]
            if len(remaining) == len(record.blocked_periods):
                raise ValidationError(
                    f"Blocked period {block_id} not found", block_id=block_id
                )
            record.blocked_periods = remaining

        return self._update(provider_id, apply)

    def reset(self) -> None:
        """Clear all records. Used by test fixtures for isolation."""
        with self._lock:
            self._records.clear()

    def _update(
        self,
        provider_id: str,
        apply: Callable[[ProviderAvailability], None],
        create: bool = False,
    ) -> ProviderAvailability:
        with self._lock:
            current = self._records.get(provider_id)
            if current is None:
                if not create:
                    raise AvailabilityError(
                        "Availability settings not found. Set up a weekly schedule first.",
                        provider_id=provider_id,
                    )
                updated = ProviderAvailability(provider_id=provider_id)
            else:
                updated = current.model_copy(deep=True)
            apply(updated)
            self._records[provider_id] = updated
        return updated
