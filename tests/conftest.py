"""Shared test fixtures and helpers."""

from datetime import date, datetime, timedelta, timezone
from typing import Optional

import pytest

from booking_engine.config import (
    AppConfig,
    BookingConfig,
    CancellationConfig,
    PricingConfig,
    SchedulingConfig,
)
from booking_engine.scheduling.availability import AvailabilityResolver
from booking_engine.scheduling.cancellation import CancellationPolicyEngine
from booking_engine.scheduling.conflicts import ConflictChecker
from booking_engine.scheduling.state_machine import BookingStateMachine
from booking_engine.schemas.availability_schema import (
    DaySchedule,
    ProviderAvailability,
    TimeSlot,
    Weekday,
)
from booking_engine.schemas.booking_schema import (
    Actor,
    ActorRole,
    Booking,
    BookingStatus,
    CancellationPolicy,
    Pricing,
)
from booking_engine.schemas.service_schema import Service, ServicePrice, UserRecord, UserRole
from booking_engine.services.reservation import BookingReservationService
from booking_engine.stores.availability_store import AvailabilityStore
from booking_engine.stores.booking_store import BookingStore
from booking_engine.stores.catalog import InMemoryServiceCatalog, InMemoryUserDirectory

# Monday morning, one week before the default booking date.
NOW = datetime(2025, 3, 10, 8, 0, tzinfo=timezone.utc)
BOOKING_DAY = date(2025, 3, 17)
BOOKING_DAY_STR = "2025-03-17"

PROVIDER_ID = "prov-1"
CUSTOMER_ID = "cust-1"
SERVICE_ID = "svc-1"

WEEKDAYS = (
    Weekday.MONDAY, Weekday.TUESDAY, Weekday.WEDNESDAY, Weekday.THURSDAY, Weekday.FRIDAY,
)


class FrozenClock:
    """Controllable clock for the reservation service."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


def make_config(
    tax_rate: float = 0.18,
    free_cancellation_hours: float = 24,
    late_tiers: tuple = (),
    commit_retries: int = 1,
) -> AppConfig:
    """Explicit configuration so tests do not depend on the environment."""
    return AppConfig(
        pricing=PricingConfig(tax_rate=tax_rate, default_currency="INR"),
        cancellation=CancellationConfig(
            free_cancellation_hours=free_cancellation_hours, late_tiers=late_tiers
        ),
        scheduling=SchedulingConfig(
            suggestion_step_minutes=30,
            min_duration_minutes=15,
            max_duration_minutes=480,
            commit_retries=commit_retries,
            default_timezone="UTC",
        ),
        booking=BookingConfig(booking_number_prefix="RZ", max_message_length=1000),
        log_level="INFO",
        engine_name="test",
    )


def make_availability(
    provider_id: str = PROVIDER_ID,
    slots: tuple[tuple[str, str], ...] = (("09:00", "18:00"),),
    days: tuple[Weekday, ...] = WEEKDAYS,
    **kwargs,
) -> ProviderAvailability:
    """Helper to create availability open on ``days`` with the given slots."""
    schedule = {
        day: DaySchedule(
            is_available=True,
            time_slots=[TimeSlot(start=start, end=end) for start, end in slots],
        )
        for day in days
    }
    return ProviderAvailability(provider_id=provider_id, weekly_schedule=schedule, **kwargs)


def make_booking(
    booking_number: str = "RZ-20250310-0001",
    start: int = 600,
    duration: int = 60,
    status: BookingStatus = BookingStatus.PENDING,
    scheduled_date: date = BOOKING_DAY,
    provider_id: str = PROVIDER_ID,
    customer_id: str = CUSTOMER_ID,
    total_amount: float = 619.5,
    appointment_start: Optional[datetime] = None,
    allowed_until: Optional[datetime] = None,
    late_tiers: Optional[list] = None,
) -> Booking:
    """Helper to create a Booking record directly, bypassing the service."""
    if appointment_start is None:
        appointment_start = datetime(
            scheduled_date.year, scheduled_date.month, scheduled_date.day,
            start // 60, start % 60, tzinfo=timezone.utc,
        )
    if allowed_until is None:
        allowed_until = appointment_start - timedelta(hours=24)
    return Booking(
        booking_number=booking_number,
        customer_id=customer_id,
        provider_id=provider_id,
        service_id=SERVICE_ID,
        service_name="Deep Cleaning",
        scheduled_date=scheduled_date,
        scheduled_time=start,
        duration=duration,
        appointment_start=appointment_start,
        estimated_end_time=appointment_start + timedelta(minutes=duration),
        status=status,
        pricing=Pricing(
            base_price=total_amount,
            subtotal=total_amount,
            tax=0,
            total_amount=total_amount,
            currency="INR",
        ),
        cancellation_policy=CancellationPolicy(
            allowed_until=allowed_until, late_tiers=late_tiers or []
        ),
        created_at=NOW,
        updated_at=NOW,
    )


def make_request(
    scheduled_time: str = "10:00",
    scheduled_date: str = BOOKING_DAY_STR,
    customer_id: str = CUSTOMER_ID,
    **overrides,
) -> dict:
    """Helper to build a raw booking request payload."""
    payload = {
        "customer_id": customer_id,
        "provider_id": PROVIDER_ID,
        "service_id": SERVICE_ID,
        "scheduled_date": scheduled_date,
        "scheduled_time": scheduled_time,
        "customer_info": {
            "first_name": "Jordan",
            "last_name": "Lee",
            "email": "jordan@example.com",
            "phone": "+91-9000000000",
        },
    }
    payload.update(overrides)
    return payload


CUSTOMER = Actor(user_id=CUSTOMER_ID, role=ActorRole.CUSTOMER)
PROVIDER = Actor(user_id=PROVIDER_ID, role=ActorRole.PROVIDER)
ADMIN = Actor(user_id="admin-1", role=ActorRole.ADMIN)


@pytest.fixture
def resolver():
    return AvailabilityResolver()


@pytest.fixture
def checker():
    return ConflictChecker(suggestion_step_minutes=30)


@pytest.fixture
def cancellation_engine():
    return CancellationPolicyEngine(free_cancellation_hours=24)


@pytest.fixture
def booking_state_machine(cancellation_engine):
    return BookingStateMachine(cancellation_engine)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def catalog():
    return InMemoryServiceCatalog([
        Service(
            service_id=SERVICE_ID,
            provider_id=PROVIDER_ID,
            name="Deep Cleaning",
            duration=60,
            price=ServicePrice(amount=500, currency="INR"),
        ),
    ])


@pytest.fixture
def directory():
    return InMemoryUserDirectory([
        UserRecord(
            user_id=PROVIDER_ID,
            role=UserRole.PROVIDER,
            first_name="Asha",
            last_name="Rao",
            business_name="Sparkle Homes",
        ),
        UserRecord(user_id=CUSTOMER_ID, role=UserRole.CUSTOMER, first_name="Jordan"),
    ])


@pytest.fixture
def availability_store():
    store = AvailabilityStore()
    store.save(make_availability())
    return store


@pytest.fixture
def booking_store():
    return BookingStore()


@pytest.fixture
def reservation(catalog, directory, availability_store, booking_store, clock):
    return BookingReservationService(
        catalog, directory, availability_store, booking_store,
        config=make_config(), clock=clock,
    )
