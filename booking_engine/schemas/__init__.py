from booking_engine.schemas.availability_schema import (
    BlockedPeriod,
    BufferTime,
    DateOverride,
    DaySchedule,
    ProviderAvailability,
    TimeSlot,
    Weekday,
)
from booking_engine.schemas.booking_schema import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    Actor,
    ActorRole,
    AddOn,
    Booking,
    BookingRequest,
    BookingStatus,
    CancellationPolicy,
    CancellationTier,
    Pricing,
    TrackingView,
    parse_booking_request,
)
from booking_engine.schemas.service_schema import Service, ServicePrice, UserRecord, UserRole

__all__ = [
    "Weekday", "TimeSlot", "DaySchedule", "DateOverride", "BlockedPeriod",
    "BufferTime", "ProviderAvailability",
    "BookingStatus", "ACTIVE_STATUSES", "TERMINAL_STATUSES", "Actor", "ActorRole",
    "AddOn", "Pricing", "CancellationPolicy", "CancellationTier", "Booking",
    "BookingRequest", "TrackingView", "parse_booking_request",
    "Service", "ServicePrice", "UserRecord", "UserRole",
]
