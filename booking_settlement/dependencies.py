"""
FastAPI dependency injection providers.

Routes receive the engine and the settlement components through these
providers, so tests can swap any of them with app.dependency_overrides.

Testing Example:
    >>> app.dependency_overrides[get_db_engine] = lambda: sqlite_engine
    >>> app.dependency_overrides[get_gateway_client] = lambda: mock_client
"""

from __future__ import annotations

from functools import lru_cache
from typing import Generator

from fastapi import Depends
from sqlalchemy.engine import Engine

from booking_settlement.db.engine import get_engine
from booking_settlement.gateway.adapter import PaymentGatewayAdapter
from booking_settlement.gateway.client import GatewayClient
from booking_settlement.pricing.currency import CurrencyConverter, ExchangeRateProvider
from booking_settlement.services.distribution import Distributor
from booking_settlement.services.notifications import Notifier
from booking_settlement.services.reconciliation import Reconciler


def get_db_engine() -> Generator[Engine, None, None]:
    """
    Provide the database engine.

    Yields:
        Engine: SQLAlchemy database engine
    """
    yield get_engine()


@lru_cache(maxsize=1)
def get_gateway_client() -> GatewayClient:
    return GatewayClient()


@lru_cache(maxsize=1)
def get_rate_provider() -> ExchangeRateProvider:
    """Shared so the cached base rate survives across requests."""
    return ExchangeRateProvider()


@lru_cache(maxsize=1)
def get_notifier() -> Notifier:
    return Notifier()


def get_adapter(
    engine: Engine = Depends(get_db_engine),
    client: GatewayClient = Depends(get_gateway_client),
    rates: ExchangeRateProvider = Depends(get_rate_provider),
) -> PaymentGatewayAdapter:
    return PaymentGatewayAdapter(engine, client, converter=CurrencyConverter(), rates=rates)


def get_distributor(engine: Engine = Depends(get_db_engine)) -> Distributor:
    return Distributor(engine)


def get_reconciler(
    engine: Engine = Depends(get_db_engine),
    adapter: PaymentGatewayAdapter = Depends(get_adapter),
    distributor: Distributor = Depends(get_distributor),
    notifier: Notifier = Depends(get_notifier),
) -> Reconciler:
    return Reconciler(engine, adapter, distributor, notifier)
