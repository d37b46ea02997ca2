"""Tests for the booking reservation service."""

from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timedelta, timezone

import pytest

from booking_engine.errors import (
    AuthorizationError,
    AvailabilityError,
    BookingNotFound,
    ConflictError,
    ProviderNotFound,
    ServiceUnavailable,
    StateTransitionError,
    ValidationError,
)
from booking_engine.notifications.dispatcher import NotificationDispatcher, NotificationType
from booking_engine.schemas.booking_schema import Actor, ActorRole, BookingStatus
from booking_engine.schemas.service_schema import Service, ServicePrice, UserRecord, UserRole
from booking_engine.services.reservation import BookingReservationService
from booking_engine.stores.availability_store import AvailabilityStore
from booking_engine.stores.booking_store import BookingStore

from tests.conftest import (
    ADMIN,
    BOOKING_DAY,
    CUSTOMER,
    CUSTOMER_ID,
    PROVIDER,
    PROVIDER_ID,
    make_availability,
    make_booking,
    make_config,
    make_request,
)


class TestCreateBooking:
    def test_creates_pending_booking(self, reservation):
        booking = reservation.create_booking(make_request())
        assert booking.status == BookingStatus.PENDING
        assert booking.booking_number == "SH-20250310-0001"
        assert booking.scheduled_date == BOOKING_DAY
        assert booking.scheduled_time_label == "10:00"
        assert booking.duration == 60
        assert booking.service_name == "Deep Cleaning"
        assert [e.status for e in booking.status_history] == [BookingStatus.PENDING]

    def test_pricing_snapshot(self, reservation):
        booking = reservation.create_booking(
            make_request(add_ons=[{"name": "Balcony", "price": 25}])
        )
        assert booking.pricing.subtotal == pytest.approx(525.0)
        assert booking.pricing.tax == pytest.approx(94.5)
        assert booking.pricing.total_amount == pytest.approx(619.5)
        assert booking.pricing.currency == "INR"

    def test_cancellation_deadline_is_a_day_before(self, reservation):
        booking = reservation.create_booking(make_request())
        assert booking.appointment_start == datetime(2025, 3, 17, 10, 0, tzinfo=timezone.utc)
        assert booking.cancellation_policy.allowed_until == datetime(
            2025, 3, 16, 10, 0, tzinfo=timezone.utc
        )
        assert booking.estimated_end_time - booking.appointment_start == timedelta(hours=1)

    def test_provider_timezone_applied(self, reservation, availability_store):
        availability_store.save(make_availability(timezone="Asia/Kolkata"))
        booking = reservation.create_booking(make_request())
        assert booking.appointment_start.utcoffset() == timedelta(hours=5, minutes=30)

    def test_auto_accept(self, reservation, availability_store):
        availability_store.save(make_availability(auto_accept_bookings=True))
        booking = reservation.create_booking(make_request())
        assert booking.status == BookingStatus.CONFIRMED
        assert booking.status_history[0].actor == ActorRole.SYSTEM

    def test_special_requests_copied(self, reservation):
        booking = reservation.create_booking(make_request(special_requests="Two cats at home"))
        assert booking.customer_info.special_requests == "Two cats at home"

    def test_falls_back_to_configured_prefix(self, reservation, directory):
        directory.add_user(UserRecord(user_id=PROVIDER_ID, role=UserRole.PROVIDER))
        booking = reservation.create_booking(make_request())
        assert booking.booking_number.startswith("RZ-20250310-")

    def test_numbers_increment(self, reservation):
        first = reservation.create_booking(make_request("10:00"))
        second = reservation.create_booking(make_request("14:00"))
        assert first.booking_number.endswith("-0001")
        assert second.booking_number.endswith("-0002")


class TestCreateBookingRejections:
    def test_overlap_raises_conflict(self, reservation):
        first = reservation.create_booking(make_request("10:00"))
        with pytest.raises(ConflictError) as exc_info:
            reservation.create_booking(make_request("10:30", customer_id="cust-2"))
        error = exc_info.value
        assert error.conflicting_booking_number == first.booking_number
        assert "11:30" in error.suggestions
        assert "10:00" not in error.suggestions

    def test_start_after_buffer_accepted(self, reservation):
        reservation.create_booking(make_request("10:00"))
        booking = reservation.create_booking(make_request("11:15", customer_id="cust-2"))
        assert booking.scheduled_time_label == "11:15"

    def test_outside_hours(self, reservation):
        with pytest.raises(AvailabilityError) as exc_info:
            reservation.create_booking(make_request("17:30"))
        assert exc_info.value.suggestions[0] == "09:00"
        assert exc_info.value.kind == "availability_error"

    def test_booking_cannot_span_adjacent_slots(self, reservation, availability_store):
        availability_store.save(make_availability(slots=(("09:00", "12:00"), ("12:00", "15:00"))))
        with pytest.raises(AvailabilityError) as exc_info:
            reservation.create_booking(make_request("11:30"))
        assert "11:30" not in exc_info.value.suggestions
        assert "11:00" in exc_info.value.suggestions
        assert "12:00" in exc_info.value.suggestions

    def test_closed_day(self, reservation):
        with pytest.raises(AvailabilityError, match="not available on 2025-03-22"):
            reservation.create_booking(make_request(scheduled_date="2025-03-22"))

    def test_past_date(self, reservation):
        with pytest.raises(AvailabilityError, match="in the past"):
            reservation.create_booking(make_request(scheduled_date="2025-03-07"))

    def test_beyond_booking_horizon(self, reservation):
        with pytest.raises(AvailabilityError, match="30 days ahead"):
            reservation.create_booking(make_request(scheduled_date="2025-04-21"))

    def test_same_day_time_already_passed(self, reservation, clock):
        clock.now = datetime(2025, 3, 17, 12, 10, tzinfo=timezone.utc)
        with pytest.raises(AvailabilityError, match="already passed") as exc_info:
            reservation.create_booking(make_request("10:00"))
        assert exc_info.value.suggestions[0] == "12:30"

    def test_blocked_period(self, reservation, availability_store):
        availability_store.block_period(PROVIDER_ID, BOOKING_DAY, BOOKING_DAY, created_by=PROVIDER_ID)
        with pytest.raises(AvailabilityError):
            reservation.create_booking(make_request())

    def test_unknown_service(self, reservation):
        with pytest.raises(ServiceUnavailable):
            reservation.create_booking(make_request(service_id="svc-missing"))

    def test_inactive_service(self, reservation, catalog):
        service = catalog.get_service("svc-1")
        catalog.add_service(service.model_copy(update={"is_active": False}))
        with pytest.raises(ServiceUnavailable, match="inactive"):
            reservation.create_booking(make_request())

    def test_service_of_another_provider(self, reservation):
        with pytest.raises(ServiceUnavailable, match="not offered"):
            reservation.create_booking(make_request(provider_id="prov-2"))

    def test_unknown_provider(self, reservation, catalog):
        catalog.add_service(Service(
            service_id="svc-ghost", provider_id="prov-ghost", name="Ghost", duration=60,
            price=ServicePrice(amount=100, currency="INR"),
        ))
        with pytest.raises(ProviderNotFound):
            reservation.create_booking(
                make_request(provider_id="prov-ghost", service_id="svc-ghost")
            )

    def test_provider_without_availability(self, reservation, catalog, directory):
        directory.add_user(UserRecord(user_id="prov-2", role=UserRole.PROVIDER))
        catalog.add_service(Service(
            service_id="svc-2", provider_id="prov-2", name="Painting", duration=60,
            price=ServicePrice(amount=100, currency="INR"),
        ))
        with pytest.raises(AvailabilityError, match="not configured"):
            reservation.create_booking(make_request(provider_id="prov-2", service_id="svc-2"))

    def test_malformed_time(self, reservation):
        with pytest.raises(ValidationError) as exc_info:
            reservation.create_booking(make_request("25:00"))
        fields = [e["field"] for e in exc_info.value.details["errors"]]
        assert fields == ["scheduled_time"]

    def test_missing_fields(self, reservation):
        with pytest.raises(ValidationError):
            reservation.create_booking({"customer_id": CUSTOMER_ID})

    def test_duration_out_of_bounds(self, reservation, catalog):
        service = catalog.get_service("svc-1")
        catalog.add_service(service.model_copy(update={"duration": 600}))
        with pytest.raises(ValidationError, match="duration"):
            reservation.create_booking(make_request())

    def test_rejected_request_commits_nothing(self, reservation, booking_store):
        with pytest.raises(AvailabilityError):
            reservation.create_booking(make_request("17:30"))
        assert booking_store.find() == []


class StaleReadStore(BookingStore):
    """Serves empty snapshots for the first ``stale_reads`` reads."""

    def __init__(self, stale_reads: int) -> None:
        super().__init__()
        self.stale_reads = stale_reads

    def list_for_provider_day(self, provider_id, day):
        if self.stale_reads > 0:
            self.stale_reads -= 1
            return []
        return super().list_for_provider_day(provider_id, day)


class TestConcurrency:
    def _service(self, catalog, directory, availability_store, clock, store, retries=1):
        return BookingReservationService(
            catalog, directory, availability_store, store,
            config=make_config(commit_retries=retries), clock=clock,
        )

    def test_lost_race_is_rechecked_against_fresh_read(
        self, catalog, directory, availability_store, clock
    ):
        store = StaleReadStore(stale_reads=1)
        store.insert_if_free(make_booking("RZ-WINNER", start=600), 15)
        service = self._service(catalog, directory, availability_store, clock, store)
        with pytest.raises(ConflictError) as exc_info:
            service.create_booking(make_request("10:00"))
        assert exc_info.value.conflicting_booking_number == "RZ-WINNER"
        assert "11:30" in exc_info.value.suggestions

    def test_retries_exhausted(self, catalog, directory, availability_store, clock):
        store = StaleReadStore(stale_reads=10)
        store.insert_if_free(make_booking("RZ-WINNER", start=600), 15)
        service = self._service(catalog, directory, availability_store, clock, store, retries=1)
        with pytest.raises(ConflictError, match="no longer available") as exc_info:
            service.create_booking(make_request("10:00"))
        assert exc_info.value.conflicting_booking_number == "RZ-WINNER"
        assert store.stale_reads == 8

    def test_hundred_parallel_requests_one_winner(self, reservation, booking_store):
        def attempt(i: int) -> str:
            try:
                reservation.create_booking(make_request("10:00", customer_id=f"cust-{i}"))
                return "ok"
            except ConflictError:
                return "conflict"

        with ThreadPoolExecutor(max_workers=16) as pool:
            outcomes = list(pool.map(attempt, range(100)))

        assert outcomes.count("ok") == 1
        assert outcomes.count("conflict") == 99
        assert len(booking_store.list_for_provider_day(PROVIDER_ID, BOOKING_DAY)) == 1

    def test_parallel_requests_never_overlap(self, reservation, booking_store):
        times = [f"{h:02d}:{m:02d}" for h in range(9, 17) for m in (0, 20, 40)]

        def attempt(label: str) -> None:
            try:
                reservation.create_booking(make_request(label))
            except ConflictError:
                pass

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(attempt, times))

        committed = sorted(
            b.interval for b in booking_store.list_for_provider_day(PROVIDER_ID, BOOKING_DAY)
        )
        assert committed
        for a, b in zip(committed, committed[1:]):
            assert a.end + 15 <= b.start


class TestLifecycle:
    def test_accept_start_complete(self, reservation):
        number = reservation.create_booking(make_request()).booking_number
        arrival = datetime(2025, 3, 17, 9, 50, tzinfo=timezone.utc)
        accepted = reservation.accept_booking(number, PROVIDER, estimated_arrival=arrival)
        assert accepted.status == BookingStatus.CONFIRMED
        assert accepted.provider_response.estimated_arrival == arrival

        reservation.start_booking(number, PROVIDER)
        done = reservation.complete_booking(number, PROVIDER, actual_duration=70)
        assert done.status == BookingStatus.COMPLETED
        assert done.actual_duration == 70
        assert [e.status for e in done.status_history] == [
            BookingStatus.PENDING, BookingStatus.CONFIRMED,
            BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED,
        ]

    def test_complete_rejects_non_positive_duration(self, reservation):
        number = reservation.create_booking(make_request()).booking_number
        reservation.accept_booking(number, PROVIDER)
        with pytest.raises(ValidationError):
            reservation.complete_booking(number, PROVIDER, actual_duration=0)

    def test_invalid_transition_leaves_booking_unchanged(self, reservation):
        number = reservation.create_booking(make_request()).booking_number
        with pytest.raises(StateTransitionError):
            reservation.start_booking(number, PROVIDER)
        booking = reservation.get_booking_details(number, ADMIN)
        assert booking.status == BookingStatus.PENDING
        assert len(booking.status_history) == 1

    def test_reject_frees_slot(self, reservation):
        number = reservation.create_booking(make_request()).booking_number
        rejected = reservation.reject_booking(number, PROVIDER, reason="On leave")
        assert rejected.status == BookingStatus.REJECTED
        assert rejected.cancellation_details.refund_percentage == 100
        assert rejected.provider_response.rejection_reason == "On leave"
        again = reservation.create_booking(make_request(customer_id="cust-2"))
        assert again.status == BookingStatus.PENDING

    def test_customer_cancel_within_window(self, reservation):
        booking = reservation.create_booking(
            make_request(add_ons=[{"name": "Balcony", "price": 25}])
        )
        cancelled = reservation.cancel_booking(booking.booking_number, CUSTOMER, reason="Travel")
        assert cancelled.status == BookingStatus.CANCELLED
        assert cancelled.cancellation_details.refund_amount == pytest.approx(619.5)
        assert cancelled.cancellation_details.reason == "Travel"

    def test_customer_cancel_exactly_at_deadline(self, reservation, clock):
        booking = reservation.create_booking(make_request())
        clock.now = booking.cancellation_policy.allowed_until
        cancelled = reservation.cancel_booking(booking.booking_number, CUSTOMER)
        assert cancelled.cancellation_details.refund_percentage == 100
        assert cancelled.cancellation_details.refund_amount == pytest.approx(590.0)

    def test_customer_cancel_after_deadline(self, reservation, clock):
        number = reservation.create_booking(make_request()).booking_number
        reservation.accept_booking(number, PROVIDER)
        clock.now = datetime(2025, 3, 17, 5, 0, tzinfo=timezone.utc)
        with pytest.raises(StateTransitionError, match="expired"):
            reservation.cancel_booking(number, CUSTOMER)

    def test_provider_cancel_after_deadline(self, reservation, clock):
        number = reservation.create_booking(make_request()).booking_number
        reservation.accept_booking(number, PROVIDER)
        clock.now = datetime(2025, 3, 17, 5, 0, tzinfo=timezone.utc)
        cancelled = reservation.cancel_booking(number, PROVIDER)
        assert cancelled.cancellation_details.refund_amount == pytest.approx(590.0)

    def test_late_tier_from_config(self, catalog, directory, availability_store, clock):
        service = BookingReservationService(
            catalog, directory, availability_store, BookingStore(),
            config=make_config(late_tiers=((12, 50),)), clock=clock,
        )
        number = service.create_booking(make_request()).booking_number
        clock.now = datetime(2025, 3, 17, 2, 0, tzinfo=timezone.utc)
        cancelled = service.cancel_booking(number, CUSTOMER)
        assert cancelled.cancellation_details.refund_percentage == 50
        assert cancelled.cancellation_details.refund_amount == pytest.approx(295.0)

    def test_stranger_cannot_cancel(self, reservation):
        number = reservation.create_booking(make_request()).booking_number
        with pytest.raises(AuthorizationError):
            reservation.cancel_booking(number, Actor(user_id="cust-9", role=ActorRole.CUSTOMER))

    def test_unknown_booking(self, reservation):
        with pytest.raises(BookingNotFound):
            reservation.accept_booking("RZ-00000000-0000", PROVIDER)


class TestListeners:
    def test_status_listener_sees_every_transition(self, reservation):
        seen = []
        reservation.add_status_listener(lambda b, prev, new: seen.append((prev, new)))
        number = reservation.create_booking(make_request()).booking_number
        reservation.accept_booking(number, PROVIDER)
        assert seen == [
            (None, BookingStatus.PENDING),
            (BookingStatus.PENDING, BookingStatus.CONFIRMED),
        ]

    def test_failing_listener_does_not_break_booking(self, reservation, booking_store):
        def broken(booking, previous, new):
            raise RuntimeError("listener down")

        reservation.add_status_listener(broken)
        booking = reservation.create_booking(make_request())
        assert booking_store.get(booking.booking_number).status == BookingStatus.PENDING

    def test_dispatcher_attached(self, reservation):
        received = []
        dispatcher = NotificationDispatcher([received.append]).attach(reservation)
        number = reservation.create_booking(make_request()).booking_number
        reservation.add_message(number, PROVIDER, "Confirming the address")
        dispatcher.drain()
        assert [n.type for n in received] == [
            NotificationType.BOOKING_REQUEST,
            NotificationType.BOOKING_REQUEST,
            NotificationType.MESSAGE_RECEIVED,
        ]
        assert received[-1].recipient_id == CUSTOMER_ID


class TestQueries:
    def test_track_hides_customer_details(self, reservation):
        number = reservation.create_booking(make_request()).booking_number
        view = reservation.track(number)
        dumped = view.model_dump_json()
        assert view.customer_first_name == "Jordan"
        assert view.provider.display_name == "Sparkle Homes"
        assert view.scheduled_time == "10:00"
        for secret in ("jordan@example.com", "9000000000", "Lee", CUSTOMER_ID):
            assert secret not in dumped

    def test_details_for_owner_and_admin(self, reservation):
        number = reservation.create_booking(make_request()).booking_number
        assert reservation.get_booking_details(number, CUSTOMER).customer_info.email
        assert reservation.get_booking_details(number, PROVIDER).booking_number == number
        assert reservation.get_booking_details(number, ADMIN).booking_number == number

    def test_details_denied_to_others(self, reservation):
        number = reservation.create_booking(make_request()).booking_number
        with pytest.raises(AuthorizationError):
            reservation.get_booking_details(
                number, Actor(user_id="prov-2", role=ActorRole.PROVIDER)
            )

    def test_customer_listing_newest_first_paginated(self, reservation, clock):
        numbers = []
        for label in ("10:00", "12:00", "14:00"):
            numbers.append(reservation.create_booking(make_request(label)).booking_number)
            clock.advance(minutes=5)
        page = reservation.list_customer_bookings(CUSTOMER_ID, page=1, limit=2)
        assert page.total == 3
        assert page.pages == 2
        assert [b.booking_number for b in page.bookings] == [numbers[2], numbers[1]]
        second = reservation.list_customer_bookings(CUSTOMER_ID, page=2, limit=2)
        assert [b.booking_number for b in second.bookings] == [numbers[0]]

    def test_provider_listing_by_schedule_and_status(self, reservation):
        late = reservation.create_booking(make_request("14:00")).booking_number
        early = reservation.create_booking(make_request("10:00")).booking_number
        reservation.accept_booking(late, PROVIDER)
        page = reservation.list_provider_bookings(PROVIDER_ID)
        assert [b.booking_number for b in page.bookings] == [early, late]
        confirmed = reservation.list_provider_bookings(
            PROVIDER_ID, status=BookingStatus.CONFIRMED
        )
        assert [b.booking_number for b in confirmed.bookings] == [late]
        assert reservation.list_provider_bookings(
            PROVIDER_ID, start_date=date(2025, 3, 18)
        ).total == 0

    def test_invalid_page(self, reservation):
        with pytest.raises(ValidationError):
            reservation.list_customer_bookings(CUSTOMER_ID, page=0)

    def test_available_slots_open_day(self, reservation):
        slots = reservation.list_available_slots(PROVIDER_ID, "2025-03-17", 60)
        assert slots[0] == "09:00"
        assert slots[-1] == "17:00"
        assert len(slots) == 17

    def test_available_slots_exclude_booked(self, reservation):
        reservation.create_booking(make_request("10:00"))
        slots = reservation.list_available_slots(PROVIDER_ID, "2025-03-17", 60)
        for taken in ("09:00", "09:30", "10:00", "10:30", "11:00"):
            assert taken not in slots
        assert "11:30" in slots

    def test_available_slots_closed_or_unknown(self, reservation):
        assert reservation.list_available_slots(PROVIDER_ID, "2025-03-22") == []
        assert reservation.list_available_slots("prov-unknown", "2025-03-17") == []

    def test_available_slots_bad_date(self, reservation):
        with pytest.raises(ValidationError):
            reservation.list_available_slots(PROVIDER_ID, "17-03-2025")

    def test_interval_free(self, reservation):
        reservation.create_booking(make_request("10:00"))
        assert not reservation.is_interval_free(PROVIDER_ID, "2025-03-17", "10:30", 60)
        assert reservation.is_interval_free(PROVIDER_ID, "2025-03-17", "11:15", 60)

    @pytest.mark.parametrize("duration", [0, -30])
    def test_interval_free_rejects_non_positive_duration(self, reservation, duration):
        with pytest.raises(ValidationError, match="Duration must be positive"):
            reservation.is_interval_free(PROVIDER_ID, "2025-03-17", "10:00", duration)


class TestMessages:
    def test_add_message(self, reservation):
        number = reservation.create_booking(make_request()).booking_number
        booking = reservation.add_message(number, CUSTOMER, "  Gate code is 1234  ")
        assert booking.messages[-1].body == "Gate code is 1234"
        assert booking.messages[-1].sender_id == CUSTOMER_ID

    def test_message_too_long(self, reservation):
        number = reservation.create_booking(make_request()).booking_number
        with pytest.raises(ValidationError, match="1000 characters"):
            reservation.add_message(number, CUSTOMER, "x" * 1001)

    def test_empty_message(self, reservation):
        number = reservation.create_booking(make_request()).booking_number
        with pytest.raises(ValidationError, match="required"):
            reservation.add_message(number, CUSTOMER, "   ")

    def test_stranger_cannot_message(self, reservation):
        number = reservation.create_booking(make_request()).booking_number
        with pytest.raises(AuthorizationError):
            reservation.add_message(
                number, Actor(user_id="cust-9", role=ActorRole.CUSTOMER), "hello"
            )


class TestWorkweekScenario:
    """Mon-Fri 09:00-17:00 provider with a 15 minute buffer."""

    @pytest.fixture
    def service(self, catalog, directory, clock):
        catalog.add_service(Service(
            service_id="svc-short", provider_id=PROVIDER_ID, name="Tap Repair", duration=40,
            price=ServicePrice(amount=200, currency="INR"),
        ))
        store = AvailabilityStore()
        store.save(make_availability(slots=(("09:00", "17:00"),)))
        return BookingReservationService(
            catalog, directory, store, BookingStore(), config=make_config(), clock=clock,
        )

    def test_scenario(self, service):
        existing = service.create_booking(make_request("10:00"))
        with pytest.raises(ConflictError) as exc_info:
            service.create_booking(make_request("10:30", customer_id="cust-2"))
        assert exc_info.value.conflicting_booking_number == existing.booking_number

        short = service.create_booking(
            make_request("11:20", customer_id="cust-3", service_id="svc-short")
        )
        assert short.interval.start == 680
        assert short.duration == 40

    def test_last_hour_must_end_by_close(self, service):
        with pytest.raises(AvailabilityError):
            service.create_booking(make_request("16:30"))
        assert service.create_booking(make_request("16:00")).scheduled_time_label == "16:00"
