"""
Unit tests for currency conversion and the exchange rate provider.
"""

from __future__ import annotations

from decimal import Decimal
from unittest.mock import Mock

import pytest
import requests

from booking_settlement.errors import ValidationError
from booking_settlement.pricing.currency import (
    CurrencyConverter,
    ExchangeRateProvider,
    spread_percent,
)


def _rate_response(mid: object) -> Mock:
    res = Mock()
    res.raise_for_status.return_value = None
    res.json.return_value = {"status_code": 200, "data": {"base": "USD", "mid": mid}}
    return res


@pytest.mark.unit
def test_deposit_uses_marked_up_rate() -> None:
    """Test that 100 USD at base 1300 collects 130650 RWF."""
    conversion = CurrencyConverter("RWF").to_local(Decimal("100"), "deposit", Decimal("1300"))

    assert conversion.rate == Decimal("1306.5")
    assert conversion.local_amount == Decimal("130650")
    assert conversion.minor_units == "130650"


@pytest.mark.unit
def test_payout_uses_discounted_rate() -> None:
    """Test that payouts are converted below the base rate."""
    conversion = CurrencyConverter("RWF").to_local(Decimal("100"), "payout", Decimal("1300"))

    assert conversion.minor_units == "126750"
    assert conversion.deposit_rate > conversion.base_rate > conversion.payout_rate


@pytest.mark.unit
def test_spread_is_three_percent() -> None:
    """Test the spread between deposit and payout rates."""
    assert spread_percent(Decimal("1300")) == Decimal("3.00")
    assert spread_percent(Decimal("1450")) == Decimal("3.00")


@pytest.mark.unit
def test_two_decimal_currency_minor_units_are_cents() -> None:
    """Test that currencies with cents send amounts in cents."""
    conversion = CurrencyConverter("USD").to_local(Decimal("10"), "deposit", Decimal("1"))

    assert conversion.local_amount == Decimal("10.05")
    assert conversion.minor_units == "1005"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("amount", "direction", "base_rate"),
    [
        (Decimal("10"), "withdrawal", Decimal("1300")),
        (Decimal("10"), "deposit", Decimal("0")),
        (Decimal("-1"), "deposit", Decimal("1300")),
    ],
)
def test_invalid_conversion_inputs_rejected(
    amount: Decimal, direction: str, base_rate: Decimal
) -> None:
    """Test that unknown directions, non-positive rates and negative amounts fail."""
    with pytest.raises(ValidationError):
        CurrencyConverter("RWF").to_local(amount, direction, base_rate)


@pytest.mark.unit
def test_rate_provider_caches_api_rate() -> None:
    """Test that a fetched rate is served from cache on the next call."""
    session = Mock()
    session.get.return_value = _rate_response(1312.25)
    provider = ExchangeRateProvider(api_url="https://rates.test/latest", session=session)

    assert provider.get_base_rate("USD", "RWF") == Decimal("1312.25")
    assert provider.get_base_rate("USD", "RWF") == Decimal("1312.25")

    session.get.assert_called_once()
    args, kwargs = session.get.call_args
    assert args[0] == "https://rates.test/latest/USD"
    assert kwargs["params"] == {"target": "RWF"}


@pytest.mark.unit
def test_rate_provider_uses_stale_rate_when_api_fails() -> None:
    """Test that an expired cached rate beats the fallback when the API is down."""
    session = Mock()
    session.get.side_effect = [_rate_response(1320), requests.ConnectionError("down")]
    provider = ExchangeRateProvider(
        api_url="https://rates.test/latest", ttl_seconds=0, session=session
    )

    assert provider.get_base_rate() == Decimal("1320")
    assert provider.get_base_rate() == Decimal("1320")
    assert session.get.call_count == 2


@pytest.mark.unit
def test_rate_provider_falls_back_without_any_rate() -> None:
    """Test that the configured fallback is used when nothing was ever fetched."""
    session = Mock()
    session.get.side_effect = requests.Timeout("slow")
    provider = ExchangeRateProvider(
        api_url="https://rates.test/latest", fallback_rate=Decimal("1450"), session=session
    )

    assert provider.get_base_rate() == Decimal("1450")


@pytest.mark.unit
def test_rate_provider_rejects_payload_without_rate() -> None:
    """Test that a malformed payload is treated as an API failure."""
    session = Mock()
    session.get.return_value = _rate_response(None)
    provider = ExchangeRateProvider(
        api_url="https://rates.test/latest", fallback_rate=Decimal("1450"), session=session
    )

    assert provider.get_base_rate() == Decimal("1450")
    assert provider.cache.get_stale(("USD", "RWF")) is None
