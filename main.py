"""
Booking engine entry point.

Wires the in-memory stores, the reservation service, and the notification
dispatcher together. Demo mode runs a scripted lifecycle end to end:
a booking is created, rejected for a conflict, accepted, tracked, and
completed, with notifications printed as they are delivered.

Usage:
    Demo mode: python main.py demo
"""

import logging
import sys
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from booking_engine.config import settings
from booking_engine.errors import BookingError
from booking_engine.notifications import BookingNotification, NotificationDispatcher
from booking_engine.schemas import (
    Actor,
    ActorRole,
    DaySchedule,
    ProviderAvailability,
    Service,
    ServicePrice,
    TimeSlot,
    UserRecord,
    UserRole,
    Weekday,
)
from booking_engine.services import BookingReservationService
from booking_engine.stores import (
    AvailabilityStore,
    BookingStore,
    InMemoryServiceCatalog,
    InMemoryUserDirectory,
)

logger = logging.getLogger(__name__)

DEMO_PROVIDER_ID = "provider-001"
DEMO_CUSTOMER_ID = "customer-001"
DEMO_SERVICE_ID = "svc-deep-clean"


def build_service(
    clock: Optional[Callable[[], datetime]] = None,
) -> BookingReservationService:
    """Build a reservation service seeded with one provider and one service."""
    services = InMemoryServiceCatalog([
        Service(
            service_id=DEMO_SERVICE_ID,
            provider_id=DEMO_PROVIDER_ID,
            name="Deep Home Cleaning",
            duration=60,
            price=ServicePrice(amount=500, currency=settings.pricing.default_currency),
        ),
    ])
    users = InMemoryUserDirectory([
        UserRecord(
            user_id=DEMO_PROVIDER_ID,
            role=UserRole.PROVIDER,
            first_name="Asha",
            last_name="Rao",
            business_name="Sparkle Homes",
        ),
        UserRecord(
            user_id=DEMO_CUSTOMER_ID,
            role=UserRole.CUSTOMER,
            first_name="Jordan",
            last_name="Lee",
        ),
    ])
    availability = AvailabilityStore()
    availability.save(ProviderAvailability(
        provider_id=DEMO_PROVIDER_ID,
        weekly_schedule={
            day: DaySchedule(
                is_available=True,
                time_slots=[TimeSlot(start="09:00", end="13:00"),
                            TimeSlot(start="14:00", end="18:00")],
            )
            for day in Weekday
        },
        timezone=settings.scheduling.default_timezone,
    ))
    kwargs = {"clock": clock} if clock is not None else {}
    return BookingReservationService(services, users, availability, BookingStore(), **kwargs)


def run_demo(clock: Optional[Callable[[], datetime]] = None) -> list[BookingNotification]:
    """Run the scripted lifecycle and return every delivered notification."""
    clock = clock or (lambda: datetime.now(timezone.utc))
    service = build_service(clock)
    delivered: list[BookingNotification] = []

    def print_sink(notification: BookingNotification) -> None:
        delivered.append(notification)
        print(f"  [notify] {notification.type.value} -> "
              f"{notification.recipient_role.value} ({notification.booking_number})")

    dispatcher = NotificationDispatcher([print_sink]).attach(service).start()
    customer = Actor(user_id=DEMO_CUSTOMER_ID, role=ActorRole.CUSTOMER)
    provider = Actor(user_id=DEMO_PROVIDER_ID, role=ActorRole.PROVIDER)
    day = (clock() + timedelta(days=7)).date().isoformat()

    try:
        print(f"Open slots on {day}: "
              f"{', '.join(service.list_available_slots(DEMO_PROVIDER_ID, day, 60))}")

        booking = service.create_booking({
            "customer_id": DEMO_CUSTOMER_ID,
            "provider_id": DEMO_PROVIDER_ID,
            "service_id": DEMO_SERVICE_ID,
            "scheduled_date": day,
            "scheduled_time": "10:00",
            "add_ons": [{"name": "Balcony", "price": 25}],
            "customer_info": {"first_name": "Jordan", "email": "jordan@example.com"},
        })
        print(f"Created {booking.booking_number}: {booking.status.value}, "
              f"total {booking.pricing.total_amount} {booking.pricing.currency}")

        try:
            service.create_booking({
                "customer_id": DEMO_CUSTOMER_ID,
                "provider_id": DEMO_PROVIDER_ID,
                "service_id": DEMO_SERVICE_ID,
                "scheduled_date": day,
                "scheduled_time": "10:30",
            })
        except BookingError as exc:
            print(f"Second request rejected ({exc.kind}): {exc.message}")
            print(f"  suggestions: {', '.join(exc.details.get('suggestions', [])[:4])}")

        service.accept_booking(booking.booking_number, provider, notes="See you then")
        service.add_message(booking.booking_number, customer, "Please bring a ladder.")
        service.start_booking(booking.booking_number, provider)
        service.complete_booking(booking.booking_number, provider, actual_duration=55)

        view = service.track(booking.booking_number)
        print(f"Tracking {view.booking_number}: {view.status.value} with "
              f"{view.provider.display_name}, history "
              f"{' -> '.join(entry.status.value for entry in view.status_history)}")
    finally:
        dispatcher.stop()

    return delivered


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "demo":
        run_demo()
    else:
        print(__doc__)
