"""
Fire-and-forget notification dispatch for booking events.

Status changes are turned into BookingNotification messages and pushed
onto a queue. A background worker drains the queue and hands each
message to the registered sinks (email, SMS, push, audit...). A failing
sink is logged and skipped; it can never block or roll back the booking
transition that produced the message.
"""

import logging
import queue
import threading
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field

from booking_engine.schemas.booking_schema import ActorRole, Booking, BookingStatus

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    BOOKING_REQUEST = "booking_request"
    BOOKING_CONFIRMED = "booking_confirmed"
    BOOKING_REJECTED = "booking_rejected"
    BOOKING_STARTED = "booking_started"
    BOOKING_COMPLETED = "booking_completed"
    BOOKING_CANCELLED = "booking_cancelled"
    MESSAGE_RECEIVED = "message_received"


STATUS_NOTIFICATIONS: dict[BookingStatus, NotificationType] = {
    BookingStatus.PENDING: NotificationType.BOOKING_REQUEST,
    BookingStatus.CONFIRMED: NotificationType.BOOKING_CONFIRMED,
    BookingStatus.REJECTED: NotificationType.BOOKING_REJECTED,
    BookingStatus.IN_PROGRESS: NotificationType.BOOKING_STARTED,
    BookingStatus.COMPLETED: NotificationType.BOOKING_COMPLETED,
    BookingStatus.CANCELLED: NotificationType.BOOKING_CANCELLED,
}


class BookingNotification(BaseModel):
    """One message for one recipient. Rendering is up to the sink."""
    notification_id: str = Field(default_factory=lambda: f"NTF-{uuid.uuid4().hex[:10]}")
    type: NotificationType
    booking_number: str
    recipient_id: str
    recipient_role: ActorRole
    previous_status: Optional[BookingStatus] = None
    status: BookingStatus
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


NotificationSink = Callable[[BookingNotification], None]

_STOP = object()


class NotificationDispatcher:
    """Queue-backed status listener with a background delivery worker."""

    def __init__(self, sinks: Optional[list[NotificationSink]] = None) -> None:
        self._sinks: list[NotificationSink] = list(sinks or [])
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._worker: Optional[threading.Thread] = None
        self._delivered = 0
        self._failed = 0

    @property
    def delivered_count(self) -> int:
        return self._delivered

    @property
    def failed_count(self) -> int:
        return self._failed

    def add_sink(self, sink: NotificationSink) -> None:
        self._sinks.append(sink)

    def attach(self, service: Any) -> "NotificationDispatcher":
        """Subscribe to a reservation service's status and message events."""
        service.add_status_listener(self.on_status_changed)
        service.add_message_listener(self.on_message_added)
        return self

    def on_status_changed(
        self,
        booking: Booking,
        previous_status: Optional[BookingStatus],
        new_status: BookingStatus,
    ) -> None:
        """Enqueue one notification per party. Never blocks on delivery."""
        notification_type = STATUS_NOTIFICATIONS[new_status]
        metadata = _booking_metadata(booking)
        for recipient_id, role in (
            (booking.customer_id, ActorRole.CUSTOMER),
            (booking.provider_id, ActorRole.PROVIDER),
        ):
            self._queue.put(BookingNotification(
                type=notification_type,
                booking_number=booking.booking_number,
                recipient_id=recipient_id,
                recipient_role=role,
                previous_status=previous_status,
                status=new_status,
                metadata=metadata,
            ))

    def on_message_added(self, booking: Booking, sender_id: str) -> None:
        """Notify the other party that a message was posted on the booking."""
        if sender_id == booking.customer_id:
            recipient_id, role = booking.provider_id, ActorRole.PROVIDER
        else:
            recipient_id, role = booking.customer_id, ActorRole.CUSTOMER
        self._queue.put(BookingNotification(
            type=NotificationType.MESSAGE_RECEIVED,
            booking_number=booking.booking_number,
            recipient_id=recipient_id,
            recipient_role=role,
            status=booking.status,
            metadata={"booking_number": booking.booking_number},
        ))

    def start(self) -> "NotificationDispatcher":
        if self._worker is not None and self._worker.is_alive():
            return self
        self._worker = threading.Thread(
            target=self._run, name="notification-dispatcher", daemon=True
        )
        self._worker.start()
        logger.debug("Notification dispatcher started")
        return self

    def stop(self, timeout: float = 5.0) -> None:
        """Deliver everything already queued, then stop the worker."""
        if self._worker is None:
            return
        self._queue.put(_STOP)
        self._worker.join(timeout)
        self._worker = None
        logger.debug("Notification dispatcher stopped")

    def flush(self) -> None:
        """Block until every queued notification has been processed."""
        if self._worker is None:
            self.drain()
        else:
            self._queue.join()

    def drain(self) -> int:
        """Deliver queued notifications on the calling thread. Returns the count processed."""
        processed = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                return processed
            try:
                if item is not _STOP:
                    self._deliver(item)
                    processed += 1
            finally:
                self._queue.task_done()

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._deliver(item)
            finally:
                self._queue.task_done()

    def _deliver(self, notification: BookingNotification) -> None:
        for sink in list(self._sinks):
            try:
                sink(notification)
                self._delivered += 1
            except Exception:
                self._failed += 1
                logger.exception(
                    "Notification sink failed for %s (%s -> %s)",
                    notification.booking_number, notification.type.value,
                    notification.recipient_id,
                )


def _booking_metadata(booking: Booking) -> dict[str, Any]:
    return {
        "booking_number": booking.booking_number,
        "service_name": booking.service_name,
        "scheduled_date": booking.scheduled_date.isoformat(),
        "scheduled_time": booking.scheduled_time_label,
        "total_amount": booking.pricing.total_amount,
        "currency": booking.pricing.currency,
    }
