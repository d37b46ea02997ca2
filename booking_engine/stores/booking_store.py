"""
Booking storage with an atomic conditional insert.

The provider's booking set for one date is the only shared mutable
resource in the engine. All writes touching it run under a lock keyed on
``(provider_id, date)``, and ``insert_if_free`` re-runs the overlap test
under that lock so two concurrent requests can never both commit
overlapping bookings. In production the same guarantee would come from a
database exclusion constraint or a conditional insert.
"""

import logging
import threading
from collections import defaultdict
from datetime import date
from typing import Callable, Optional, TypeVar

from booking_engine.errors import BookingNotFound, ConcurrencyConflictError
from booking_engine.schemas.booking_schema import ACTIVE_STATUSES, Booking, BookingStatus
from booking_engine.utils import intervals_overlap_with_buffer

logger = logging.getLogger(__name__)

T = TypeVar("T")

DayKey = tuple[str, date]


class BookingStore:
    """In-memory bookings keyed by booking number, indexed by provider and date."""

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        self._day_locks: dict[DayKey, threading.Lock] = {}
        self._bookings: dict[str, Booking] = {}
        self._by_day: dict[DayKey, list[str]] = defaultdict(list)
        self._sequences: dict[str, int] = defaultdict(int)

    def lock_for(self, provider_id: str, day: date) -> threading.Lock:
        """Return the lock serializing writes to one provider's calendar day."""
        key = (provider_id, day)
        with self._registry_lock:
            lock = self._day_locks.get(key)
            if lock is None:
                lock = self._day_locks[key] = threading.Lock()
            return lock

    def next_booking_number(self, prefix: str, day: date) -> str:
        """Allocate a unique, human-readable booking number such as ``RZ-20250317-0001``."""
        stamp = day.strftime("%Y%m%d")
        key = f"{prefix}-{stamp}"
        with self._registry_lock:
            self._sequences[key] += 1
            return f"{key}-{self._sequences[key]:04d}"

    def list_for_provider_day(self, provider_id: str, day: date) -> list[Booking]:
        """Snapshot copies of every booking for a provider on ``day``."""
        numbers = list(self._by_day.get((provider_id, day), ()))
        return [self._bookings[n].model_copy(deep=True) for n in numbers]

    def insert_if_free(self, booking: Booking, buffer_minutes: int) -> Booking:
        """
        Store ``booking`` only if no active booking on that day collides with it.

        Raises:
            ConcurrencyConflictError: Another writer committed an overlapping
                booking after the caller's conflict check.
        """
        key = (booking.provider_id, booking.scheduled_date)
        with self.lock_for(*key):
            for number in self._by_day.get(key, ()):
                other = self._bookings[number]
                if other.status in ACTIVE_STATUSES and intervals_overlap_with_buffer(
                    booking.interval, other.interval, buffer_minutes
                ):
                    raise ConcurrencyConflictError(
                        f"Slot {booking.scheduled_time_label} on {booking.scheduled_date} "
                        f"was taken by booking {other.booking_number}",
                        conflicting_booking_number=other.booking_number,
                        provider_id=booking.provider_id,
                    )
            if booking.booking_number in self._bookings:
                raise ConcurrencyConflictError(
                    f"Booking number {booking.booking_number} already exists",
                    conflicting_booking_number=booking.booking_number,
                )
            self._bookings[booking.booking_number] = booking.model_copy(deep=True)
            self._by_day[key].append(booking.booking_number)
        logger.info(
            "Booking committed: %s for provider %s on %s at %s",
            booking.booking_number, booking.provider_id,
            booking.scheduled_date, booking.scheduled_time_label,
        )
        return booking

    def get(self, booking_number: str) -> Booking:
        """Return a copy of the booking.

        Raises:
            BookingNotFound: If no booking has that number.
        """
        booking = self._bookings.get(booking_number)
        if booking is None:
            raise BookingNotFound(
                f"Booking {booking_number} not found", booking_number=booking_number
            )
        return booking.model_copy(deep=True)

    def update(self, booking_number: str, mutate: Callable[[Booking], T]) -> tuple[Booking, T]:
        """
        Apply ``mutate`` to a working copy under the day lock and store it.

        If ``mutate`` raises, the stored booking is left unchanged.
        """
        current = self.get(booking_number)
        with self.lock_for(current.provider_id, current.scheduled_date):
            working = self._bookings[booking_number].model_copy(deep=True)
            result = mutate(working)
            self._bookings[booking_number] = working
        return working.model_copy(deep=True), result

    def find(
        self,
        customer_id: Optional[str] = None,
        provider_id: Optional[str] = None,
        status: Optional[BookingStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[Booking]:
        """Filter bookings. Every given criterion must match."""
        results = []
        for booking in list(self._bookings.values()):
            if customer_id is not None and booking.customer_id != customer_id:
                continue
            if provider_id is not None and booking.provider_id != provider_id:
                continue
            if status is not None and booking.status != status:
                continue
            if start_date is not None and booking.scheduled_date < start_date:
                continue
            if end_date is not None and booking.scheduled_date > end_date:
                continue
            results.append(booking.model_copy(deep=True))
        return results

    def reset(self) -> None:
        """Clear all bookings. Used by test fixtures for isolation."""
        with self._registry_lock:
            self._bookings.clear()
            self._by_day.clear()
            self._day_locks.clear()
            self._sequences.clear()
