"""
Settlement-to-local currency conversion with asymmetric spreads.

Deposits are collected at ``base * 1.005`` and payouts are paid at
``base * 0.975`` over the same base rate. The converter is deterministic for
a given base rate; the base rate itself comes from ExchangeRateProvider.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

import requests
import structlog

from booking_settlement.cache import TTLCache
from booking_settlement.config import (
    EXCHANGE_API_URL,
    EXCHANGE_RATE_TTL_SECONDS,
    FALLBACK_BASE_RATE,
    LOCAL_CURRENCY,
    SETTLEMENT_CURRENCY,
)
from booking_settlement.errors import ValidationError
from booking_settlement.metrics import exchange_rate_lookups
from booking_settlement.utils.money import (
    Number,
    currency_exponent,
    round_cents,
    to_decimal,
    to_minor_units,
)

logger = structlog.get_logger(__name__)

DEPOSIT = "deposit"
PAYOUT = "payout"

DEPOSIT_MARKUP = Decimal("1.005")
PAYOUT_DISCOUNT = Decimal("0.975")

RATE_API_TIMEOUT = 10


@dataclass(frozen=True)
class Conversion:
    """Result of converting a settlement amount for one gateway direction."""

    direction: str
    currency: str
    usd_amount: Decimal
    local_amount: Decimal
    minor_units: str
    rate: Decimal
    base_rate: Decimal
    deposit_rate: Decimal
    payout_rate: Decimal
    spread: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "direction": self.direction,
            "currency": self.currency,
            "usd_amount": self.usd_amount,
            "local_amount": self.local_amount,
            "minor_units": self.minor_units,
            "rate": self.rate,
            "base_rate": self.base_rate,
            "deposit_rate": self.deposit_rate,
            "payout_rate": self.payout_rate,
            "spread": self.spread,
        }


def deposit_rate(base_rate: Decimal) -> Decimal:
    return base_rate * DEPOSIT_MARKUP


def payout_rate(base_rate: Decimal) -> Decimal:
    return base_rate * PAYOUT_DISCOUNT


def spread_percent(base_rate: Decimal) -> Decimal:
    """(deposit - payout) / base as a percentage, two decimals."""
    return round_cents((deposit_rate(base_rate) - payout_rate(base_rate)) / base_rate * 100)


class CurrencyConverter:
    """
    Converts settlement-currency amounts into the gateway's local currency.

    Example:
        >>> converter = CurrencyConverter("RWF")
        >>> converter.to_local(Decimal("100"), "deposit", Decimal("1300")).minor_units
        '130650'
    """

    def __init__(self, currency: str = LOCAL_CURRENCY):
        self.currency = currency.upper()

    def to_local(self, usd_amount: Number, direction: str, base_rate: Number) -> Conversion:
        """
        Convert ``usd_amount`` for a deposit or a payout.

        Raises:
            ValidationError: unknown direction, non-positive rate or negative amount
        """
        if direction not in (DEPOSIT, PAYOUT):
            raise ValidationError(
                f"direction must be '{DEPOSIT}' or '{PAYOUT}'", direction=direction
            )

        base = to_decimal(base_rate)
        if base <= 0:
            raise ValidationError("base rate must be positive", base_rate=str(base))

        amount = to_decimal(usd_amount)
        if amount < 0:
            raise ValidationError("amount must not be negative", amount=str(amount))

        dep = deposit_rate(base)
        pay = payout_rate(base)
        rate = dep if direction == DEPOSIT else pay

        exponent = currency_exponent(self.currency)
        local_amount = (amount * rate).quantize(
            Decimal(1).scaleb(-exponent), rounding=ROUND_HALF_UP
        )

        return Conversion(
            direction=direction,
            currency=self.currency,
            usd_amount=amount,
            local_amount=local_amount,
            minor_units=to_minor_units(local_amount, self.currency),
            rate=rate,
            base_rate=base,
            deposit_rate=dep,
            payout_rate=pay,
            spread=spread_percent(base),
        )


class ExchangeRateProvider:
    """
    Supplies base rates between the settlement and local currencies.

    Rates are fetched from the rate API and cached for an hour. When the API
    fails, the last known rate is used even if expired, then the configured
    fallback rate.
    """

    def __init__(
        self,
        api_url: str = EXCHANGE_API_URL,
        fallback_rate: Decimal = FALLBACK_BASE_RATE,
        ttl_seconds: int = EXCHANGE_RATE_TTL_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.api_url = api_url
        self.fallback_rate = fallback_rate
        self.cache: TTLCache[Decimal] = TTLCache(ttl_seconds=ttl_seconds)
        self.session = session or requests.Session()

    def fetch_rate(self, source: str, target: str) -> Decimal:
        """
        Query the rate API for one pair.

        Raises:
            requests.RequestException: on transport or HTTP errors
            ValueError: if the payload carries no usable rate
        """
        res = self.session.get(
            f"{self.api_url}/{source}",
            params={"target": target},
            timeout=RATE_API_TIMEOUT,
        )
        res.raise_for_status()
        payload = res.json()

        mid = (payload.get("data") or {}).get("mid")
        if mid is None:
            raise ValueError(f"rate API returned no rate for {source}->{target}")
        rate = to_decimal(str(mid))
        if rate <= 0:
            raise ValueError(f"rate API returned non-positive rate {rate}")
        return rate

    def get_base_rate(
        self, source: str = SETTLEMENT_CURRENCY, target: str = LOCAL_CURRENCY
    ) -> Decimal:
        key = (source.upper(), target.upper())

        cached = self.cache.get(key)
        if cached is not None:
            exchange_rate_lookups.labels(source="cache").inc()
            return cached

        try:
            rate = self.fetch_rate(*key)
        except (requests.RequestException, ValueError) as e:
            stale = self.cache.get_stale(key)
            if stale is not None:
                logger.warning(
                    "exchange_rate_api_failed_using_stale",
                    source=key[0],
                    target=key[1],
                    rate=str(stale),
                    error=str(e),
                )
                exchange_rate_lookups.labels(source="stale_cache").inc()
                return stale

            logger.warning(
                "exchange_rate_api_failed_using_fallback",
                source=key[0],
                target=key[1],
                rate=str(self.fallback_rate),
                error=str(e),
            )
            exchange_rate_lookups.labels(source="fallback").inc()
            return self.fallback_rate

        self.cache.set(key, rate)
        exchange_rate_lookups.labels(source="api").inc()
        logger.info("exchange_rate_fetched", source=key[0], target=key[1], rate=str(rate))
        return rate
