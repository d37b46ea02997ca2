"""Booking price computation."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

from booking_engine.schemas.booking_schema import AddOn, Pricing

_CENT = Decimal("0.01")


def _to_decimal(value: float) -> Decimal:
    return Decimal(str(value))


def _round(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: float
    tax: float
    total: float


class PricingCalculator:
    """
    Subtotal, tax, and total from a base price and add-ons.

    The tax rate is passed in from configuration. Currency is carried
    through unchanged; no conversion is performed.
    """

    def __init__(self, tax_rate: float) -> None:
        if not 0 <= tax_rate <= 1:
            raise ValueError(f"tax_rate must be between 0 and 1, got {tax_rate}")
        self._tax_rate = tax_rate

    @property
    def tax_rate(self) -> float:
        return self._tax_rate

    def price(
        self, base_price: float, add_ons: Iterable[AddOn], tax_rate: Optional[float] = None
    ) -> PriceBreakdown:
        """Price a request. ``tax_rate`` overrides the configured rate when given."""
        subtotal = _to_decimal(base_price) + sum(
            (_to_decimal(a.price) for a in add_ons), Decimal("0")
        )
        rate = self._tax_rate if tax_rate is None else tax_rate
        subtotal = _round(subtotal)
        tax = _round(subtotal * _to_decimal(rate))
        return PriceBreakdown(
            subtotal=float(subtotal),
            tax=float(tax),
            total=float(subtotal + tax),
        )

    def snapshot(self, base_price: float, add_ons: list[AddOn], currency: str) -> Pricing:
        """Build the immutable pricing record stored on a new booking."""
        breakdown = self.price(base_price, add_ons)
        return Pricing(
            base_price=base_price,
            add_ons=list(add_ons),
            subtotal=breakdown.subtotal,
            tax=breakdown.tax,
            total_amount=breakdown.total,
            currency=currency,
        )
