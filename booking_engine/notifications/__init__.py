from booking_engine.notifications.dispatcher import (
    BookingNotification,
    NotificationDispatcher,
    NotificationType,
)

__all__ = ["BookingNotification", "NotificationDispatcher", "NotificationType"]
