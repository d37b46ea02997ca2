"""
Booking reservation service, the integration point for the HTTP layer.

Implements the full reservation lifecycle:
Resolve -> Check -> Price -> Initialize -> Commit -> Notify.

Conflict checking runs against a snapshot of the provider's bookings
without holding any lock. The commit is a conditional insert that re-checks
under the provider/day lock; if another writer won the race in between,
the service re-reads and re-checks once (bounded by configuration) and then
surfaces a ConflictError. It never overwrites a committed booking.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Callable, Optional, Union

import pytz

from booking_engine.config import AppConfig, settings
from booking_engine.errors import (
    AuthorizationError,
    AvailabilityError,
    ConcurrencyConflictError,
    ConflictError,
    ProviderNotFound,
    ServiceUnavailable,
    ValidationError,
)
from booking_engine.logging_context import get_request_logger, new_request_id
from booking_engine.scheduling.availability import AvailabilityResolver
from booking_engine.scheduling.cancellation import CancellationPolicyEngine
from booking_engine.scheduling.conflicts import OUTSIDE_OPEN_HOURS, ConflictChecker, Rejected
from booking_engine.scheduling.pricing import PricingCalculator
from booking_engine.scheduling.state_machine import (
    BookingAction,
    BookingStateMachine,
    TransitionResult,
)
from booking_engine.schemas.availability_schema import ProviderAvailability
from booking_engine.schemas.booking_schema import (
    Actor,
    ActorRole,
    Booking,
    BookingMessage,
    BookingRequest,
    BookingStatus,
    TrackingView,
    parse_booking_request,
)
from booking_engine.schemas.service_schema import Service, UserRecord, UserRole
from booking_engine.services.tracking import build_tracking_view
from booking_engine.stores.availability_store import AvailabilityStore
from booking_engine.stores.booking_store import BookingStore
from booking_engine.stores.catalog import ServiceCatalog, UserDirectory
from booking_engine.utils import Interval, parse_date, parse_hhmm

logger = get_request_logger(__name__)

StatusListener = Callable[[Booking, Optional[BookingStatus], BookingStatus], None]
MessageListener = Callable[[Booking, str], None]
Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BookingPage:
    """One page of a booking listing."""
    bookings: list[Booking]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0


class BookingReservationService:
    """Orchestrates availability, conflict checks, pricing, and the lifecycle."""

    def __init__(
        self,
        services: ServiceCatalog,
        users: UserDirectory,
        availability: AvailabilityStore,
        bookings: BookingStore,
        config: AppConfig = settings,
        clock: Clock = _utc_now,
    ) -> None:
        self._services = services
        self._users = users
        self._availability = availability
        self._bookings = bookings
        self._config = config
        self._clock = clock

        self.resolver = AvailabilityResolver()
        self.checker = ConflictChecker(config.scheduling.suggestion_step_minutes)
        self.pricing = PricingCalculator(config.pricing.tax_rate)
        self.cancellation = CancellationPolicyEngine(
            free_cancellation_hours=config.cancellation.free_cancellation_hours,
            late_tiers=config.cancellation.late_tiers,
        )
        self.state_machine = BookingStateMachine(self.cancellation)

        self._status_listeners: list[StatusListener] = []
        self._message_listeners: list[MessageListener] = []

    # ------------------------------------------------------------------ #
    # Collaborator hooks
    # ------------------------------------------------------------------ #

    def add_status_listener(self, listener: StatusListener) -> None:
        """Register an ``on_status_changed(booking, previous, new)`` callback."""
        self._status_listeners.append(listener)

    def add_message_listener(self, listener: MessageListener) -> None:
        self._message_listeners.append(listener)

    # ------------------------------------------------------------------ #
    # Reservation
    # ------------------------------------------------------------------ #

    def create_booking(self, request: Union[BookingRequest, dict[str, Any]]) -> Booking:
        """
        Validate, reserve, and commit a new booking.

        Raises:
            ValidationError: Malformed request.
            ServiceUnavailable: Service missing, inactive, or not offered by the provider.
            ProviderNotFound: Provider ID is not a provider.
            AvailabilityError: No schedule, or the time is outside declared hours.
            ConflictError: The interval overlaps an existing booking, or the
                slot was taken by a concurrent request.
        """
        if not isinstance(request, BookingRequest):
            request = parse_booking_request(request)
        new_request_id()
        logger.info(
            "Booking request: provider=%s service=%s %s %s",
            request.provider_id, request.service_id,
            request.scheduled_date, request.scheduled_time,
        )

        service = self._require_service(request)
        provider = self._require_provider(request.provider_id)
        availability = self._require_availability(request.provider_id)
        self._check_duration(service)

        day = request.requested_date
        start = request.start_minutes
        tz = self._timezone(availability)
        local_now = self._clock().astimezone(tz)
        earliest = self._earliest_start(day, local_now)
        self._check_horizon(availability, day, local_now.date())

        windows = self.resolver.resolve_open_windows(availability, day)
        if not windows:
            raise AvailabilityError(
                f"Provider is not available on {day.isoformat()}",
                provider_id=request.provider_id,
                scheduled_date=day.isoformat(),
            )
        if start < earliest:
            raise AvailabilityError(
                f"Requested time {request.scheduled_time} has already passed",
                suggestions=self.checker.suggest_start_times(
                    windows,
                    self._bookings.list_for_provider_day(request.provider_id, day),
                    service.duration,
                    availability.buffer_time.conflict_buffer,
                    earliest,
                ),
                provider_id=request.provider_id,
            )

        booking = self._build_booking(request, service, provider, availability, tz)
        buffer = availability.buffer_time.conflict_buffer
        attempts = self._config.scheduling.commit_retries + 1
        last_race: Optional[ConcurrencyConflictError] = None

        for attempt in range(attempts):
            existing = self._bookings.list_for_provider_day(request.provider_id, day)
            result = self.checker.check_request(
                windows, existing, start, service.duration, buffer, earliest
            )
            if isinstance(result, Rejected):
                raise self._rejection_error(result, request)
            try:
                self._bookings.insert_if_free(booking, buffer)
                break
            except ConcurrencyConflictError as exc:
                last_race = exc
                logger.warning(
                    "Commit race lost on attempt %d/%d: %s",
                    attempt + 1, attempts, exc.message,
                )
        else:
            conflicting = last_race.details.get("conflicting_booking_number") if last_race else None
            raise ConflictError(
                "Time slot is no longer available",
                conflicting_booking_number=conflicting,
                provider_id=request.provider_id,
            )

        logger.info(
            "Booking %s created in status %s",
            booking.booking_number, booking.status.value,
        )
        self._notify_status(booking, None, booking.status)
        return booking.model_copy(deep=True)

    # ------------------------------------------------------------------ #
    # Lifecycle transitions
    # ------------------------------------------------------------------ #

    def accept_booking(
        self,
        booking_number: str,
        actor: Actor,
        notes: Optional[str] = None,
        estimated_arrival: Optional[datetime] = None,
    ) -> Booking:
        def after(booking: Booking) -> None:
            if estimated_arrival is not None:
                booking.provider_response.estimated_arrival = estimated_arrival

        return self._transition(booking_number, BookingAction.ACCEPT, actor, notes, after=after)

    def reject_booking(
        self, booking_number: str, actor: Actor, reason: Optional[str] = None
    ) -> Booking:
        return self._transition(
            booking_number, BookingAction.REJECT, actor, reason or "Rejected by provider"
        )

    def start_booking(
        self, booking_number: str, actor: Actor, notes: Optional[str] = None
    ) -> Booking:
        return self._transition(booking_number, BookingAction.START, actor, notes)

    def complete_booking(
        self,
        booking_number: str,
        actor: Actor,
        notes: Optional[str] = None,
        actual_duration: Optional[int] = None,
    ) -> Booking:
        if actual_duration is not None and actual_duration <= 0:
            raise ValidationError(
                f"actual_duration must be positive, got {actual_duration}",
                booking_number=booking_number,
            )
        return self._transition(
            booking_number, BookingAction.COMPLETE, actor, notes, actual_duration=actual_duration
        )

    def cancel_booking(
        self, booking_number: str, actor: Actor, reason: Optional[str] = None
    ) -> Booking:
        return self._transition(booking_number, BookingAction.CANCEL, actor, reason)

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def track(self, booking_number: str) -> TrackingView:
        """Public read model. No authentication, no customer PII."""
        booking = self._bookings.get(booking_number)
        return build_tracking_view(
            booking,
            service=self._services.get_service(booking.service_id),
            provider=self._users.get_user(booking.provider_id),
        )

    def get_booking_details(self, booking_number: str, actor: Actor) -> Booking:
        booking = self._bookings.get(booking_number)
        allowed = (
            actor.role == ActorRole.ADMIN
            or (actor.role == ActorRole.CUSTOMER and actor.user_id == booking.customer_id)
            or (actor.role == ActorRole.PROVIDER and actor.user_id == booking.provider_id)
        )
        if not allowed:
            raise AuthorizationError(
                f"Access to booking {booking_number} denied",
                booking_number=booking_number,
                actor_id=actor.user_id,
            )
        return booking

    def list_customer_bookings(
        self,
        customer_id: str,
        status: Optional[BookingStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 1,
        limit: int = 20,
    ) -> BookingPage:
        """Customer history, newest first."""
        found = self._bookings.find(
            customer_id=customer_id, status=status, start_date=start_date, end_date=end_date
        )
        found.sort(key=lambda b: b.created_at, reverse=True)
        return self._paginate(found, page, limit)

    def list_provider_bookings(
        self,
        provider_id: str,
        status: Optional[BookingStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 1,
        limit: int = 20,
    ) -> BookingPage:
        """Provider agenda, earliest appointment first."""
        found = self._bookings.find(
            provider_id=provider_id, status=status, start_date=start_date, end_date=end_date
        )
        found.sort(key=lambda b: (b.scheduled_date, b.scheduled_time))
        return self._paginate(found, page, limit)

    def list_available_slots(
        self, provider_id: str, scheduled_date: str, duration: int = 60
    ) -> list[str]:
        """Start times a new booking of ``duration`` minutes could take on that date."""
        day = self._parse_day(scheduled_date)
        if duration <= 0:
            raise ValidationError(f"Duration must be positive, got {duration}")
        availability = self._availability.get(provider_id)
        if availability is None:
            return []
        local_now = self._clock().astimezone(self._timezone(availability))
        if not self.resolver.is_within_booking_horizon(availability, day, local_now.date()):
            return []
        windows = self.resolver.resolve_open_windows(availability, day)
        return self.checker.suggest_start_times(
            windows,
            self._bookings.list_for_provider_day(provider_id, day),
            duration,
            availability.buffer_time.conflict_buffer,
            self._earliest_start(day, local_now),
        )

    def is_interval_free(
        self, provider_id: str, scheduled_date: str, scheduled_time: str, duration: int
    ) -> bool:
        """True if no active booking collides with the interval. Ignores open hours."""
        day = self._parse_day(scheduled_date)
        if duration <= 0:
            raise ValidationError(f"Duration must be positive, got {duration}")
        try:
            start = parse_hhmm(scheduled_time)
        except ValueError as exc:
            raise ValidationError(str(exc), field="scheduled_time") from None
        availability = self._availability.get(provider_id)
        buffer = availability.buffer_time.conflict_buffer if availability else 0
        conflicts = self.checker.find_conflicts(
            Interval(start, start + duration),
            self._bookings.list_for_provider_day(provider_id, day),
            buffer,
        )
        return not conflicts

    # ------------------------------------------------------------------ #
    # Communication thread
    # ------------------------------------------------------------------ #

    def add_message(self, booking_number: str, actor: Actor, body: str) -> Booking:
        body = (body or "").strip()
        if not body:
            raise ValidationError("Message content is required", booking_number=booking_number)
        max_length = self._config.booking.max_message_length
        if len(body) > max_length:
            raise ValidationError(
                f"Message cannot exceed {max_length} characters", booking_number=booking_number
            )

        def append(booking: Booking) -> None:
            if actor.user_id not in (booking.customer_id, booking.provider_id):
                raise AuthorizationError(
                    f"Access to booking {booking_number} denied",
                    booking_number=booking_number,
                    actor_id=actor.user_id,
                )
            now = self._clock()
            booking.messages.append(BookingMessage(
                message_id=f"MSG-{uuid.uuid4().hex[:10]}",
                sender_id=actor.user_id,
                body=body,
                timestamp=now,
            ))
            booking.updated_at = now

        booking, _ = self._bookings.update(booking_number, append)
        for listener in list(self._message_listeners):
            try:
                listener(booking, actor.user_id)
            except Exception:
                logger.exception("Message listener failed for booking %s", booking_number)
        return booking

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _transition(
        self,
        booking_number: str,
        action: BookingAction,
        actor: Actor,
        note: Optional[str] = None,
        actual_duration: Optional[int] = None,
        after: Optional[Callable[[Booking], None]] = None,
    ) -> Booking:
        def mutate(booking: Booking) -> TransitionResult:
            result = self.state_machine.apply(
                booking, action, actor, self._clock(), note=note, actual_duration=actual_duration
            )
            if after is not None:
                after(booking)
            return result

        booking, result = self._bookings.update(booking_number, mutate)
        logger.info(
            "Booking %s: %s -> %s by %s",
            booking_number, result.previous_status.value, result.new_status.value,
            actor.role.value,
        )
        self._notify_status(booking, result.previous_status, result.new_status)
        return booking

    def _notify_status(
        self,
        booking: Booking,
        previous: Optional[BookingStatus],
        new: BookingStatus,
    ) -> None:
        for listener in list(self._status_listeners):
            try:
                listener(booking.model_copy(deep=True), previous, new)
            except Exception:
                logger.exception(
                    "Status listener failed for booking %s (%s -> %s)",
                    booking.booking_number, previous.value if previous else None, new.value,
                )

    def _require_service(self, request: BookingRequest) -> Service:
        service = self._services.get_service(request.service_id)
        if service is None or not service.is_active:
            raise ServiceUnavailable(
                "Service not found or inactive", service_id=request.service_id
            )
        if service.provider_id != request.provider_id:
            raise ServiceUnavailable(
                f"Service {request.service_id} is not offered by provider {request.provider_id}",
                service_id=request.service_id,
                provider_id=request.provider_id,
            )
        return service

    def _require_provider(self, provider_id: str) -> UserRecord:
        user = self._users.get_user(provider_id)
        if user is None or user.role != UserRole.PROVIDER:
            raise ProviderNotFound("Provider not found", provider_id=provider_id)
        return user

    def _require_availability(self, provider_id: str) -> ProviderAvailability:
        availability = self._availability.get(provider_id)
        if availability is None:
            raise AvailabilityError(
                "Provider availability not configured", provider_id=provider_id
            )
        return availability

    def _check_duration(self, service: Service) -> None:
        cfg = self._config.scheduling
        if not cfg.min_duration_minutes <= service.duration <= cfg.max_duration_minutes:
            raise ValidationError(
                f"Service duration must be between {cfg.min_duration_minutes} and "
                f"{cfg.max_duration_minutes} minutes, got {service.duration}",
                service_id=service.service_id,
            )

    def _check_horizon(self, availability: ProviderAvailability, day: date, today: date) -> None:
        if day < today:
            raise AvailabilityError(
                f"Cannot book a date in the past ({day.isoformat()})",
                provider_id=availability.provider_id,
            )
        if not self.resolver.is_within_booking_horizon(availability, day, today):
            raise AvailabilityError(
                f"Bookings open at most {availability.max_advance_booking_days} days ahead",
                provider_id=availability.provider_id,
                max_advance_booking_days=availability.max_advance_booking_days,
            )

    def _timezone(self, availability: ProviderAvailability) -> pytz.BaseTzInfo:
        name = availability.timezone or self._config.scheduling.default_timezone
        try:
            return pytz.timezone(name)
        except pytz.UnknownTimeZoneError:
            logger.warning(
                "Invalid timezone '%s' for provider %s, using UTC", name, availability.provider_id
            )
            return pytz.UTC

    @staticmethod
    def _earliest_start(day: date, local_now: datetime) -> int:
        if day != local_now.date():
            return 0
        return local_now.hour * 60 + local_now.minute + (1 if local_now.second else 0)

    @staticmethod
    def _parse_day(value: str) -> date:
        try:
            return parse_date(value)
        except ValueError as exc:
            raise ValidationError(str(exc), field="scheduled_date") from None

    def _booking_prefix(self, provider: UserRecord) -> str:
        words = (provider.business_name or "").split()
        if len(words) >= 2:
            return "".join(w[0] for w in words[:2]).upper()
        if len(words) == 1 and len(words[0]) >= 2:
            return words[0][:2].upper()
        return self._config.booking.booking_number_prefix

    def _build_booking(
        self,
        request: BookingRequest,
        service: Service,
        provider: UserRecord,
        availability: ProviderAvailability,
        tz: pytz.BaseTzInfo,
    ) -> Booking:
        day = request.requested_date
        start = request.start_minutes
        appointment_start = tz.localize(
            datetime.combine(day, time(start // 60, start % 60))
        )
        now = self._clock()
        customer_info = request.customer_info.model_copy()
        if request.special_requests:
            customer_info.special_requests = request.special_requests

        booking = Booking(
            booking_number=self._bookings.next_booking_number(
                self._booking_prefix(provider), now.date()
            ),
            customer_id=request.customer_id,
            provider_id=request.provider_id,
            service_id=service.service_id,
            service_name=service.name,
            scheduled_date=day,
            scheduled_time=start,
            duration=service.duration,
            appointment_start=appointment_start,
            estimated_end_time=appointment_start + timedelta(minutes=service.duration),
            pricing=self.pricing.snapshot(
                service.price.amount, request.add_ons, service.price.currency
            ),
            cancellation_policy=self.cancellation.build_policy(appointment_start),
            customer_info=customer_info,
            metadata=request.metadata.model_copy(),
            created_at=now,
            updated_at=now,
        )
        self.state_machine.initialize(booking, now, auto_accept=availability.auto_accept_bookings)
        return booking

    def _rejection_error(self, result: Rejected, request: BookingRequest) -> Exception:
        if result.reason == OUTSIDE_OPEN_HOURS:
            return AvailabilityError(
                result.message,
                suggestions=result.suggestions,
                provider_id=request.provider_id,
                requested_time=request.scheduled_time,
            )
        return ConflictError(
            result.message,
            conflicting_booking_number=result.conflicting_booking_number,
            suggestions=result.suggestions,
            provider_id=request.provider_id,
            requested_time=request.scheduled_time,
        )

    @staticmethod
    def _paginate(bookings: list[Booking], page: int, limit: int) -> BookingPage:
        if page < 1 or limit < 1:
            raise ValidationError(f"Invalid page {page} or limit {limit}")
        offset = (page - 1) * limit
        return BookingPage(
            bookings=bookings[offset:offset + limit],
            total=len(bookings),
            page=page,
            limit=limit,
        )
