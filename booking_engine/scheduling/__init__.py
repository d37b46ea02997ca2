from booking_engine.scheduling.availability import AvailabilityResolver
from booking_engine.scheduling.cancellation import CancellationPolicyEngine, RefundQuote
from booking_engine.scheduling.conflicts import Accepted, ConflictChecker, Rejected
from booking_engine.scheduling.pricing import PriceBreakdown, PricingCalculator
from booking_engine.scheduling.state_machine import (
    BookingAction,
    BookingStateMachine,
    TransitionResult,
)

__all__ = [
    "AvailabilityResolver",
    "ConflictChecker",
    "Accepted",
    "Rejected",
    "PricingCalculator",
    "PriceBreakdown",
    "CancellationPolicyEngine",
    "RefundQuote",
    "BookingStateMachine",
    "BookingAction",
    "TransitionResult",
]
