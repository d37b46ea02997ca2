"""Booking records, requests, and the public tracking projection."""

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from booking_engine.errors import ValidationError
from booking_engine.utils import Interval, format_minutes, parse_date, parse_hhmm


class BookingStatus(str, Enum):
    """All possible states in a booking lifecycle."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.REJECTED}
)
ACTIVE_STATUSES = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS}
)


class ActorRole(str, Enum):
    CUSTOMER = "customer"
    PROVIDER = "provider"
    ADMIN = "admin"
    SYSTEM = "system"


class Actor(BaseModel):
    """Who is performing an action on a booking."""
    user_id: str
    role: ActorRole


class RefundStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class AddOn(BaseModel):
    name: str
    price: float = Field(ge=0)


class Pricing(BaseModel):
    """Price snapshot taken at creation time. Never recomputed."""
    base_price: float = Field(ge=0)
    add_ons: list[AddOn] = Field(default_factory=list)
    subtotal: float = Field(ge=0)
    tax: float = Field(default=0, ge=0)
    total_amount: float = Field(ge=0)
    currency: str


class CancellationTier(BaseModel):
    """Refund applied when cancelling with fewer than ``hours_before_start`` hours left."""
    hours_before_start: float = Field(gt=0)
    refund_percentage: float = Field(ge=0, le=100)


class CancellationPolicy(BaseModel):
    allowed_until: datetime
    refund_percentage: float = Field(default=100, ge=0, le=100)
    cancellation_fee: float = Field(default=0, ge=0)
    late_tiers: list[CancellationTier] = Field(default_factory=list)


class CancellationDetails(BaseModel):
    cancelled_by: ActorRole
    cancelled_at: datetime
    reason: str
    refund_amount: float = Field(ge=0)
    refund_percentage: float = Field(ge=0, le=100)
    refund_status: RefundStatus = RefundStatus.PENDING


class StatusHistoryEntry(BaseModel):
    """One append-only audit record."""
    status: BookingStatus
    timestamp: datetime
    actor: ActorRole
    note: Optional[str] = None


class CustomerInfo(BaseModel):
    """Customer snapshot at booking time."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    special_requests: Optional[str] = None
    access_instructions: Optional[str] = None


class ProviderResponse(BaseModel):
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    estimated_arrival: Optional[datetime] = None
    arrival_time: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None


class MessageKind(str, Enum):
    TEXT = "text"
    SYSTEM = "system"
    UPDATE = "update"


class BookingMessage(BaseModel):
    message_id: str
    sender_id: str
    body: str
    timestamp: datetime
    kind: MessageKind = MessageKind.TEXT
    is_read: bool = False


class BookingMetadata(BaseModel):
    booking_source: str = "search"
    device_type: str = "desktop"
    session_id: Optional[str] = None


class Booking(BaseModel):
    """Full booking record stored in the system."""
    booking_number: str
    customer_id: str
    provider_id: str
    service_id: str
    service_name: str = ""

    scheduled_date: date
    scheduled_time: int  # minutes since midnight
    duration: int
    appointment_start: datetime
    estimated_end_time: datetime
    actual_duration: Optional[int] = None

    status: BookingStatus = BookingStatus.PENDING
    status_history: list[StatusHistoryEntry] = Field(default_factory=list)

    pricing: Pricing
    cancellation_policy: CancellationPolicy
    cancellation_details: Optional[CancellationDetails] = None

    customer_info: CustomerInfo = Field(default_factory=CustomerInfo)
    provider_response: ProviderResponse = Field(default_factory=ProviderResponse)
    messages: list[BookingMessage] = Field(default_factory=list)
    metadata: BookingMetadata = Field(default_factory=BookingMetadata)

    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def interval(self) -> Interval:
        return Interval(self.scheduled_time, self.scheduled_time + self.duration)

    @property
    def scheduled_time_label(self) -> str:
        return format_minutes(self.scheduled_time)


class BookingRequest(BaseModel):
    """Validated booking creation request."""
    customer_id: str = Field(min_length=1)
    provider_id: str = Field(min_length=1)
    service_id: str = Field(min_length=1)
    scheduled_date: str
    scheduled_time: str
    add_ons: list[AddOn] = Field(default_factory=list)
    customer_info: CustomerInfo = Field(default_factory=CustomerInfo)
    special_requests: Optional[str] = None
    metadata: BookingMetadata = Field(default_factory=BookingMetadata)

    @field_validator("scheduled_date")
    @classmethod
    def _check_date(cls, value: str) -> str:
        parse_date(value)
        return value

    @field_validator("scheduled_time")
    @classmethod
    def _check_time(cls, value: str) -> str:
        parse_hhmm(value)
        return value

    @property
    def requested_date(self) -> date:
        return parse_date(self.scheduled_date)

    @property
    def start_minutes(self) -> int:
        return parse_hhmm(self.scheduled_time)


def parse_booking_request(payload: dict[str, Any]) -> BookingRequest:
    """Build a BookingRequest from a raw payload.

    Raises:
        ValidationError: If the payload is malformed. Field-level problems
            are listed under ``details["errors"]``.
    """
    try:
        return BookingRequest.model_validate(payload)
    except PydanticValidationError as exc:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        raise ValidationError("Invalid booking request", errors=errors) from None


class ServiceSummary(BaseModel):
    service_id: str
    name: str


class ProviderSummary(BaseModel):
    provider_id: str
    display_name: str


class TrackingView(BaseModel):
    """Public, unauthenticated projection of a booking keyed by booking number."""
    booking_number: str
    status: BookingStatus
    status_history: list[StatusHistoryEntry]
    service: ServiceSummary
    provider: ProviderSummary
    customer_first_name: Optional[str] = None
    scheduled_date: date
    scheduled_time: str
    estimated_end_time: datetime
    pricing: Pricing
