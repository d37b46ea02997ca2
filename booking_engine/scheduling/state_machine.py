"""
Finite state machine for the booking status lifecycle.

Defines every permitted transition explicitly, with the roles allowed to
trigger it. Anything not in the table is rejected with a clear error
listing the actions that are valid from the current status.

Usage:
    sm = BookingStateMachine(cancellation_engine)
    sm.apply(booking, BookingAction.ACCEPT, provider_actor, now)
    assert booking.status == BookingStatus.CONFIRMED
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from booking_engine.errors import AuthorizationError, StateTransitionError
from booking_engine.scheduling.cancellation import CancellationPolicyEngine, RefundQuote
from booking_engine.schemas.booking_schema import (
    Actor,
    ActorRole,
    Booking,
    BookingStatus,
    CancellationDetails,
    StatusHistoryEntry,
)

logger = logging.getLogger(__name__)


class BookingAction(str, Enum):
    """Events that cause status transitions."""
    ACCEPT = "accept"
    REJECT = "reject"
    START = "start"
    COMPLETE = "complete"
    CANCEL = "cancel"


@dataclass(frozen=True)
class Transition:
    """A single valid status transition."""
    from_status: BookingStatus
    to_status: BookingStatus
    action: BookingAction
    roles: frozenset[ActorRole]


@dataclass(frozen=True)
class TransitionResult:
    previous_status: BookingStatus
    new_status: BookingStatus
    refund: Optional[RefundQuote] = None


_PROVIDER = frozenset({ActorRole.PROVIDER})


class BookingStateMachine:
    """
    Owns the canonical booking lifecycle and guards all transitions.

    Every transition appends exactly one status history entry. Invalid
    attempts raise and leave the booking untouched; they never no-op.
    """

    TRANSITIONS: list[Transition] = [
        # --- Provider response ---
        Transition(BookingStatus.PENDING, BookingStatus.CONFIRMED,
                   BookingAction.ACCEPT, _PROVIDER),
        Transition(BookingStatus.PENDING, BookingStatus.REJECTED,
                   BookingAction.REJECT, _PROVIDER),

        # --- Service delivery ---
        Transition(BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS,
                   BookingAction.START, _PROVIDER),
        Transition(BookingStatus.CONFIRMED, BookingStatus.COMPLETED,
                   BookingAction.COMPLETE, _PROVIDER),
        Transition(BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED,
                   BookingAction.COMPLETE, _PROVIDER),

        # --- Cancellation ---
        Transition(BookingStatus.PENDING, BookingStatus.CANCELLED, BookingAction.CANCEL,
                   frozenset({ActorRole.CUSTOMER, ActorRole.ADMIN})),
        Transition(BookingStatus.CONFIRMED, BookingStatus.CANCELLED, BookingAction.CANCEL,
                   frozenset({ActorRole.CUSTOMER, ActorRole.PROVIDER, ActorRole.ADMIN})),
        Transition(BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED, BookingAction.CANCEL,
                   frozenset({ActorRole.PROVIDER, ActorRole.ADMIN})),
    ]

    def __init__(self, cancellation_engine: CancellationPolicyEngine) -> None:
        self._cancellation = cancellation_engine

    def initialize(
        self, booking: Booking, now: datetime, auto_accept: bool = False
    ) -> BookingStatus:
        """Set the initial status and first history entry on a new booking."""
        if booking.status_history:
            raise StateTransitionError(
                f"Booking {booking.booking_number} is already initialized",
                booking_number=booking.booking_number,
            )
        if auto_accept:
            booking.status = BookingStatus.CONFIRMED
            booking.provider_response.accepted_at = now
            note = "Booking created and auto-accepted"
        else:
            booking.status = BookingStatus.PENDING
            note = "Booking created"
        booking.status_history.append(StatusHistoryEntry(
            status=booking.status, timestamp=now, actor=ActorRole.SYSTEM, note=note,
        ))
        return booking.status

    def apply(
        self,
        booking: Booking,
        action: BookingAction,
        actor: Actor,
        now: datetime,
        note: Optional[str] = None,
        actual_duration: Optional[int] = None,
    ) -> TransitionResult:
        """
        Execute a status transition on ``booking`` in place.

        Args:
            booking: The booking to mutate.
            action: The event triggering the transition.
            actor: Who is acting.
            now: Current time.
            note: Free-text note or reason stored in history.
            actual_duration: Record-keeping only, for COMPLETE.

        Returns:
            The previous and new status, plus the refund for cancellations.

        Raises:
            StateTransitionError: No transition for this action from the
                current status, or the cancellation window has expired.
            AuthorizationError: The actor may not perform this transition.
        """
        transition = self._find(booking, action)
        self._authorize(booking, transition, actor)

        refund: Optional[RefundQuote] = None
        if transition.to_status in (BookingStatus.CANCELLED, BookingStatus.REJECTED):
            refund = self._refund_for(booking, actor, now)

        previous = booking.status
        booking.status = transition.to_status
        booking.updated_at = now
        booking.status_history.append(StatusHistoryEntry(
            status=transition.to_status, timestamp=now, actor=actor.role, note=note,
        ))
        self._record_side_effects(booking, transition, actor, now, note, actual_duration, refund)

        logger.debug(
            "Booking %s: %s -> %s (action: %s, actor: %s)",
            booking.booking_number, previous.value, booking.status.value,
            action.value, actor.role.value,
        )
        return TransitionResult(previous_status=previous, new_status=booking.status, refund=refund)

    def get_valid_actions(self, status: BookingStatus) -> list[BookingAction]:
        """Return all actions valid from ``status``."""
        return [t.action for t in self.TRANSITIONS if t.from_status == status]

    def is_terminal(self, status: BookingStatus) -> bool:
        return not self.get_valid_actions(status)

    def _find(self, booking: Booking, action: BookingAction) -> Transition:
        for t in self.TRANSITIONS:
            if t.from_status == booking.status and t.action == action:
                return t
        valid = [a.value for a in self.get_valid_actions(booking.status)]
        raise StateTransitionError(
            f"Cannot {action.value} booking {booking.booking_number} in status "
            f"'{booking.status.value}'. Valid actions: {valid}",
            booking_number=booking.booking_number,
            current_status=booking.status.value,
            action=action.value,
        )

    def _authorize(self, booking: Booking, transition: Transition, actor: Actor) -> None:
        if actor.role not in transition.roles:
            raise AuthorizationError(
                f"A {actor.role.value} may not {transition.action.value} "
                f"booking {booking.booking_number}",
                booking_number=booking.booking_number,
                actor_id=actor.user_id,
                role=actor.role.value,
            )
        if actor.role == ActorRole.PROVIDER and actor.user_id != booking.provider_id:
            raise AuthorizationError(
                f"Only the assigned provider can {transition.action.value} "
                f"booking {booking.booking_number}",
                booking_number=booking.booking_number,
                actor_id=actor.user_id,
            )
        if actor.role == ActorRole.CUSTOMER and actor.user_id != booking.customer_id:
            raise AuthorizationError(
                f"Only the customer who made booking {booking.booking_number} can cancel it",
                booking_number=booking.booking_number,
                actor_id=actor.user_id,
            )

    def _refund_for(self, booking: Booking, actor: Actor, now: datetime) -> RefundQuote:
        policy = booking.cancellation_policy
        if actor.role == ActorRole.CUSTOMER and not self._cancellation.customer_may_cancel(
            policy, booking.appointment_start, now
        ):
            raise StateTransitionError(
                f"Cancellation window for booking {booking.booking_number} has expired",
                booking_number=booking.booking_number,
                cancellation_deadline=policy.allowed_until.isoformat(),
            )
        return self._cancellation.quote(
            policy, booking.pricing.total_amount, booking.appointment_start, now, actor.role
        )

    @staticmethod
    def _record_side_effects(
        booking: Booking,
        transition: Transition,
        actor: Actor,
        now: datetime,
        note: Optional[str],
        actual_duration: Optional[int],
        refund: Optional[RefundQuote],
    ) -> None:
        response = booking.provider_response
        if transition.action == BookingAction.ACCEPT:
            response.accepted_at = now
            response.notes = note
        elif transition.action == BookingAction.START:
            response.arrival_time = now
            if note:
                response.notes = note
        elif transition.action == BookingAction.COMPLETE:
            response.completed_at = now
            booking.completed_at = now
            if note:
                response.notes = note
            if actual_duration is not None:
                booking.actual_duration = actual_duration
        elif transition.action == BookingAction.REJECT:
            response.rejected_at = now
            response.rejection_reason = note

        if refund is not None:
            default_reason = (
                "Rejected by provider" if transition.action == BookingAction.REJECT
                else f"Cancelled by {actor.role.value}"
            )
            booking.cancelled_at = now
            booking.cancellation_details = CancellationDetails(
                cancelled_by=actor.role,
                cancelled_at=now,
                reason=note or default_reason,
                refund_amount=refund.amount,
                refund_percentage=refund.percentage,
            )
