"""Public tracking projection.

Tracking is served without authentication, so the view carries the
customer's first name only: no email, phone, address, or customer ID.
"""

from typing import Optional

from booking_engine.schemas.booking_schema import (
    Booking,
    ProviderSummary,
    ServiceSummary,
    TrackingView,
)
from booking_engine.schemas.service_schema import Service, UserRecord


def build_tracking_view(
    booking: Booking,
    service: Optional[Service] = None,
    provider: Optional[UserRecord] = None,
) -> TrackingView:
    """Project a booking into its public read model."""
    return TrackingView(
        booking_number=booking.booking_number,
        status=booking.status,
        status_history=[entry.model_copy() for entry in booking.status_history],
        service=ServiceSummary(
            service_id=booking.service_id,
            name=service.name if service else booking.service_name,
        ),
        provider=ProviderSummary(
            provider_id=booking.provider_id,
            display_name=provider.display_name if provider else booking.provider_id,
        ),
        customer_first_name=booking.customer_info.first_name,
        scheduled_date=booking.scheduled_date,
        scheduled_time=booking.scheduled_time_label,
        estimated_end_time=booking.estimated_end_time,
        pricing=booking.pricing.model_copy(deep=True),
    )
