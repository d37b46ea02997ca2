"""
Cancellation terms and refund computation.

Terms are computed once, at booking creation, and stored on the booking.
At cancellation time the engine only applies whatever policy is attached:
- up to and including ``allowed_until``: the stored refund percentage, minus the fee
- after the deadline but before the appointment: the matching late tier,
  if the policy carries any; otherwise customer cancellation is closed
- provider, admin, or system initiated: always a full refund
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from booking_engine.schemas.booking_schema import (
    ActorRole,
    CancellationPolicy,
    CancellationTier,
)

logger = logging.getLogger(__name__)

FULL_REFUND = 100.0


@dataclass(frozen=True)
class RefundQuote:
    """Refund owed for a cancellation at a specific moment."""
    percentage: float
    amount: float
    late: bool = False


class CancellationPolicyEngine:
    """Builds cancellation policies and applies them at cancellation time."""

    def __init__(
        self,
        free_cancellation_hours: float = 24,
        late_tiers: Iterable[tuple[float, float]] = (),
    ) -> None:
        self._free_window = timedelta(hours=free_cancellation_hours)
        self._late_tiers = [
            CancellationTier(hours_before_start=hours, refund_percentage=pct)
            for hours, pct in late_tiers
        ]

    def build_policy(self, appointment_start: datetime) -> CancellationPolicy:
        return CancellationPolicy(
            allowed_until=appointment_start - self._free_window,
            refund_percentage=FULL_REFUND,
            cancellation_fee=0,
            late_tiers=list(self._late_tiers),
        )

    def applicable_tier(
        self, policy: CancellationPolicy, appointment_start: datetime, now: datetime
    ) -> Optional[CancellationTier]:
        """The late tier covering ``now``, or None when no tier applies."""
        if now <= policy.allowed_until or now >= appointment_start:
            return None
        hours_left = (appointment_start - now).total_seconds() / 3600
        candidates = [t for t in policy.late_tiers if hours_left < t.hours_before_start]
        if not candidates:
            return None
        return min(candidates, key=lambda t: t.hours_before_start)

    def customer_may_cancel(
        self, policy: CancellationPolicy, appointment_start: datetime, now: datetime
    ) -> bool:
        """Customer cancellation is open up to the deadline, or later if a tier applies."""
        if now <= policy.allowed_until:
            return True
        return self.applicable_tier(policy, appointment_start, now) is not None

    def quote(
        self,
        policy: CancellationPolicy,
        total_amount: float,
        appointment_start: datetime,
        now: datetime,
        cancelled_by: ActorRole,
    ) -> RefundQuote:
        """
        Compute the refund for a cancellation.

        Args:
            policy: Policy stored on the booking at creation.
            total_amount: Booking total from the pricing snapshot.
            appointment_start: Scheduled start of the appointment.
            now: Moment of cancellation.
            cancelled_by: Role initiating the cancellation.

        Returns:
            RefundQuote with percentage and amount, never negative.
        """
        total = Decimal(str(total_amount))
        if cancelled_by != ActorRole.CUSTOMER:
            return RefundQuote(percentage=FULL_REFUND, amount=float(_round(total)))

        if now <= policy.allowed_until:
            percentage = policy.refund_percentage
            late = False
        else:
            tier = self.applicable_tier(policy, appointment_start, now)
            percentage = tier.refund_percentage if tier is not None else 0.0
            late = True

        amount = total * Decimal(str(percentage)) / Decimal(100) - Decimal(
            str(policy.cancellation_fee)
        )
        amount = max(Decimal(0), amount)
        logger.debug(
            "Refund quote: %.1f%% of %s = %s (late=%s)", percentage, total, amount, late
        )
        return RefundQuote(percentage=percentage, amount=float(_round(amount)), late=late)


def _round(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
