"""
Shared fixtures for integration tests.

Each test gets a fresh in-memory SQLite database with every table created
from the models.
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Callable, Generator, Optional
from unittest.mock import Mock

import pytest
from sqlalchemy import insert
from sqlalchemy.engine import Engine

from booking_settlement.db.engine import build_engine
from booking_settlement.db.writers.reservations import update_reservation_status
from booking_settlement.gateway.adapter import PaymentGatewayAdapter
from booking_settlement.gateway.client import GatewayClient
from booking_settlement.models.base import Base
from booking_settlement.models.resources import Resource
from booking_settlement.pricing.currency import CurrencyConverter, ExchangeRateProvider
from booking_settlement.services import booking
from booking_settlement.utils.datetime import utc_now, utc_today

BASE_RATE = Decimal("1300")


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """Fresh in-memory database per test."""
    test_engine = build_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(test_engine)

    yield test_engine

    Base.metadata.drop_all(test_engine)
    test_engine.dispose()


@pytest.fixture
def make_resource(engine: Engine) -> Callable[..., str]:
    """
    Factory inserting a catalog resource.

    Returns the resource id.
    """
    counter = {"n": 0}

    def _make(
        nightly_rate: str = "100.00",
        owner_id: str = "owner-1",
        agent_id: Optional[str] = "agent-1",
        kind: str = "property",
        two_night_rate: Optional[str] = None,
        max_capacity: int = 4,
        is_active: bool = True,
    ) -> str:
        counter["n"] += 1
        resource_id = f"res-{counter['n']}"
        with engine.begin() as conn:
            conn.execute(
                insert(Resource).values(
                    id=resource_id,
                    kind=kind,
                    owner_id=owner_id,
                    agent_id=agent_id,
                    nightly_rate=Decimal(nightly_rate),
                    two_night_rate=Decimal(two_night_rate) if two_night_rate else None,
                    max_capacity=max_capacity,
                    is_active=is_active,
                    created_at=utc_now(),
                )
            )
        return resource_id

    return _make


@pytest.fixture
def future() -> Callable[[int], date]:
    """Date ``days`` from today, so bookings are never in the past."""

    def _future(days: int) -> date:
        return utc_today() + timedelta(days=days)

    return _future


@pytest.fixture
def make_reservation(
    engine: Engine, make_resource: Callable[..., str], future: Callable[[int], date]
) -> Callable[..., dict[str, Any]]:
    """
    Factory booking a reservation through the booking service.

    ``paid=True`` moves it to confirmed/completed as reconciliation would.
    """

    def _make(
        resource_id: Optional[str] = None,
        start_in: int = 10,
        nights: int = 3,
        requester_id: str = "guest-1",
        paid: bool = False,
    ) -> dict[str, Any]:
        resource_id = resource_id or make_resource()
        reservation = booking.create_reservation(
            engine,
            resource_id=resource_id,
            requester_id=requester_id,
            start=future(start_in),
            end=future(start_in + nights),
            guests=1,
        )
        if paid:
            with engine.begin() as conn:
                update_reservation_status(
                    conn, reservation["id"], status="confirmed", payment_status="completed"
                )
            reservation = {**reservation, "status": "confirmed", "payment_status": "completed"}
        return reservation

    return _make


@pytest.fixture
def gateway_client() -> Mock:
    """GatewayClient double; tests set return values per call."""
    return Mock(spec=GatewayClient)


@pytest.fixture
def adapter(engine: Engine, gateway_client: Mock) -> PaymentGatewayAdapter:
    rates = Mock(spec=ExchangeRateProvider)
    rates.get_base_rate.return_value = BASE_RATE
    return PaymentGatewayAdapter(
        engine, gateway_client, converter=CurrencyConverter("RWF"), rates=rates
    )
