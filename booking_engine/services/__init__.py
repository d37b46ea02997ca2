from booking_engine.services.reservation import BookingPage, BookingReservationService
from booking_engine.services.tracking import build_tracking_view

__all__ = ["BookingReservationService", "BookingPage", "build_tracking_view"]
