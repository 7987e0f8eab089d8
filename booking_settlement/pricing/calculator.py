"""
Price breakdown and cancellation refund rules.

Both functions are pure. ``price_breakdown`` is called with the same inputs
when quoting and when booking, so a quote always matches the stored price.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional, Union

from booking_settlement.errors import ValidationError
from booking_settlement.utils.money import Number, floor_units, round_cents, to_decimal

DateLike = Union[date, datetime]

CLEANING_FEE_RATE = Decimal("0.10")
SERVICE_FEE_RATE = Decimal("0.05")
TAX_RATE = Decimal("0.08")

OWNER = "owner"
REQUESTER = "requester"
CANCELLATION_ROLES = (OWNER, REQUESTER)

# (minimum days before start, refunded fraction) for requester cancellations
REQUESTER_REFUND_TIERS = (
    (5, Decimal("0.50")),
    (1, Decimal("0.25")),
)


@dataclass(frozen=True)
class PriceBreakdown:
    nights: int
    subtotal: Decimal
    cleaning_fee: Decimal
    service_fee: Decimal
    taxes: Decimal
    total: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "nights": self.nights,
            "subtotal": self.subtotal,
            "cleaning_fee": self.cleaning_fee,
            "service_fee": self.service_fee,
            "taxes": self.taxes,
            "total": self.total,
        }


def _day_span(start: DateLike, end: DateLike) -> int:
    """Whole days from start to end, rounding any partial day up."""
    if isinstance(start, datetime) and isinstance(end, datetime):
        return math.ceil((end - start).total_seconds() / 86400)
    start_day = start.date() if isinstance(start, datetime) else start
    end_day = end.date() if isinstance(end, datetime) else end
    return (end_day - start_day).days


def count_nights(start: DateLike, end: DateLike) -> int:
    """
    Number of nights in [start, end).

    Raises:
        ValidationError: if the interval is empty or inverted
    """
    nights = _day_span(start, end)
    if nights <= 0:
        raise ValidationError(
            "end date must be after start date",
            start=str(start),
            end=str(end),
        )
    return nights


def price_breakdown(
    nightly_rate: Number,
    start: DateLike,
    end: DateLike,
    two_night_rate: Optional[Number] = None,
) -> PriceBreakdown:
    """
    Compute the price of a stay.

    Cleaning (10%) and service (5%) fees are taken on the subtotal and rounded
    half-up to cents. Taxes are 8% of subtotal plus fees, kept in whole
    settlement units (3 nights at 100 gives taxes 27.6 -> 27, total 372).

    Args:
        nightly_rate: Rate per night in the settlement currency
        start: First night
        end: Checkout day (exclusive)
        two_night_rate: Flat price used instead when the stay is exactly two nights

    Returns:
        PriceBreakdown
    """
    nights = count_nights(start, end)
    rate = to_decimal(nightly_rate)
    if rate < 0:
        raise ValidationError("nightly rate must not be negative", nightly_rate=str(rate))

    if nights == 2 and two_night_rate is not None:
        subtotal = round_cents(to_decimal(two_night_rate))
    else:
        subtotal = round_cents(rate * nights)

    cleaning_fee = round_cents(subtotal * CLEANING_FEE_RATE)
    service_fee = round_cents(subtotal * SERVICE_FEE_RATE)
    taxes = floor_units(TAX_RATE * (subtotal + cleaning_fee + service_fee))
    total = subtotal + cleaning_fee + service_fee + taxes

    return PriceBreakdown(
        nights=nights,
        subtotal=subtotal,
        cleaning_fee=cleaning_fee,
        service_fee=service_fee,
        taxes=taxes,
        total=total,
    )


def days_until_start(start: DateLike, as_of: DateLike) -> int:
    """Calendar days from as_of until start, partial days counted as a full day."""
    return _day_span(as_of, start)


def refund_fraction(days_before_start: int) -> Decimal:
    for minimum_days, fraction in REQUESTER_REFUND_TIERS:
        if days_before_start >= minimum_days:
            return fraction
    return Decimal("0")


def refund_amount(
    total: Number,
    start: DateLike,
    cancelled_by: str,
    as_of: DateLike,
) -> Decimal:
    """
    Amount returned to the requester when a reservation is cancelled.

    Owner cancellations refund the full total. Requester cancellations refund
    50% five or more days before start, 25% one to four days before, and
    nothing on the day of arrival or later.

    Raises:
        ValidationError: if cancelled_by is not a known role
    """
    if cancelled_by not in CANCELLATION_ROLES:
        raise ValidationError(
            f"cancelled_by must be one of {', '.join(CANCELLATION_ROLES)}",
            cancelled_by=cancelled_by,
        )

    amount = to_decimal(total)
    if cancelled_by == OWNER:
        return round_cents(amount)

    return round_cents(amount * refund_fraction(days_until_start(start, as_of)))
