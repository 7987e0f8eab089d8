"""
Integration tests for the HTTP API.

Routes run against the in-memory database with the gateway client and the
rate provider replaced through dependency overrides.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Callable, Generator
from unittest.mock import Mock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from booking_settlement.dependencies import (
    get_db_engine,
    get_gateway_client,
    get_notifier,
    get_rate_provider,
)
from booking_settlement.errors import GatewayUnavailable
from booking_settlement.main import app
from booking_settlement.pricing.currency import ExchangeRateProvider
from booking_settlement.services.notifications import Notifier


@pytest.fixture
def client(engine: Engine, gateway_client: Mock) -> Generator[TestClient, None, None]:
    rates = Mock(spec=ExchangeRateProvider)
    rates.get_base_rate.return_value = Decimal("1300")

    app.dependency_overrides[get_db_engine] = lambda: engine
    app.dependency_overrides[get_gateway_client] = lambda: gateway_client
    app.dependency_overrides[get_rate_provider] = lambda: rates
    app.dependency_overrides[get_notifier] = lambda: Notifier(api_url=None)

    yield TestClient(app)

    app.dependency_overrides.clear()


def _stay(start: date, end: date) -> dict[str, str]:
    return {"start_date": start.isoformat(), "end_date": end.isoformat()}


def _book(
    client: TestClient, resource_id: str, start: date, end: date, requester_id: str = "guest-1"
) -> Any:
    return client.post(
        "/reservations",
        json={"resource_id": resource_id, "requester_id": requester_id, **_stay(start, end)},
    )


@pytest.mark.integration
def test_availability_reflects_bookings(
    client: TestClient, make_resource: Callable[..., str], future: Callable[[int], date]
) -> None:
    """Test that a booked interval shows up as a conflict."""
    resource_id = make_resource()
    params = _stay(future(10), future(13))

    free = client.get(f"/resources/{resource_id}/availability", params=params)
    assert free.status_code == 200
    assert free.json()["available"] is True

    booked = _book(client, resource_id, future(10), future(13))
    assert booked.status_code == 201

    taken = client.get(f"/resources/{resource_id}/availability", params=params).json()
    assert taken["available"] is False
    assert [c["id"] for c in taken["conflicts"]] == [booked.json()["id"]]

    own = client.get(
        f"/resources/{resource_id}/availability",
        params={**params, "exclude_reservation_id": booked.json()["id"]},
    )
    assert own.json()["available"] is True


@pytest.mark.integration
def test_create_reservation_prices_the_stay(
    client: TestClient, make_resource: Callable[..., str], future: Callable[[int], date]
) -> None:
    """Test the created reservation against the quote for the same dates."""
    resource_id = make_resource()

    quote = client.post(f"/resources/{resource_id}/quote", json=_stay(future(10), future(13)))
    response = _book(client, resource_id, future(10), future(13))

    assert quote.status_code == 200
    assert Decimal(quote.json()["total"]) == Decimal("372")
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending"
    assert body["payment_status"] == "pending"
    assert body["nights"] == 3
    assert Decimal(body["total_price"]) == Decimal(quote.json()["total"])


@pytest.mark.integration
def test_overlapping_reservation_returns_conflict_body(
    client: TestClient, make_resource: Callable[..., str], future: Callable[[int], date]
) -> None:
    """Test the 409 payload listing the conflicting reservation."""
    resource_id = make_resource()
    first = _book(client, resource_id, future(10), future(13)).json()

    response = _book(client, resource_id, future(12), future(15), requester_id="guest-2")

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["error"] == "conflict"
    assert [c["id"] for c in detail["conflicts"]] == [first["id"]]
    assert detail["blocked_ranges"] == []

    back_to_back = _book(client, resource_id, future(13), future(15), requester_id="guest-2")
    assert back_to_back.status_code == 201


@pytest.mark.integration
@pytest.mark.parametrize(
    ("start_in", "end_in", "extra"),
    [
        (13, 10, {}),
        (10, 10, {}),
        (10, 13, {"guests": 9}),
    ],
)
def test_invalid_reservation_requests_return_400(
    client: TestClient,
    make_resource: Callable[..., str],
    future: Callable[[int], date],
    start_in: int,
    end_in: int,
    extra: dict[str, Any],
) -> None:
    """Test reversed, empty and over-capacity requests."""
    resource_id = make_resource(max_capacity=4)

    response = client.post(
        "/reservations",
        json={
            "resource_id": resource_id,
            "requester_id": "guest-1",
            **_stay(future(start_in), future(end_in)),
            **extra,
        },
    )

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "validation"


@pytest.mark.integration
def test_unknown_resource_returns_404(client: TestClient, future: Callable[[int], date]) -> None:
    response = _book(client, "missing", future(10), future(13))

    assert response.status_code == 404
    assert response.json()["detail"]["error"] == "not_found"


@pytest.mark.integration
def test_blocked_range_lifecycle(
    client: TestClient, make_resource: Callable[..., str], future: Callable[[int], date]
) -> None:
    """Test that blocked dates refuse bookings until unblocked."""
    resource_id = make_resource()

    created = client.post(
        f"/resources/{resource_id}/blocked-ranges",
        json={**_stay(future(10), future(12)), "reason": "maintenance", "created_by": "owner-1"},
    )
    assert created.status_code == 201

    refused = _book(client, resource_id, future(11), future(13))
    assert refused.status_code == 409
    assert len(refused.json()["detail"]["blocked_ranges"]) == 1

    deleted = client.delete(f"/blocked-ranges/{created.json()['id']}")
    assert deleted.status_code == 204
    assert _book(client, resource_id, future(11), future(13)).status_code == 201


@pytest.mark.integration
def test_reschedule_moves_reservation(
    client: TestClient, make_resource: Callable[..., str], future: Callable[[int], date]
) -> None:
    resource_id = make_resource()
    reservation = _book(client, resource_id, future(10), future(13)).json()

    response = client.patch(
        f"/reservations/{reservation['id']}/dates", json=_stay(future(11), future(15))
    )

    assert response.status_code == 200
    assert response.json()["end_date"] == future(15).isoformat()
    assert response.json()["nights"] == 4


@pytest.mark.integration
def test_deposit_reconcile_cancel_refund_flow(
    client: TestClient,
    gateway_client: Mock,
    make_resource: Callable[..., str],
    future: Callable[[int], date],
) -> None:
    """Test a booking paid through the gateway, then cancelled by the owner."""
    resource_id = make_resource()
    reservation = _book(client, resource_id, future(10), future(13)).json()
    gateway_client.initiate_deposit.side_effect = lambda payload: {
        "depositId": payload["depositId"],
        "status": "ACCEPTED",
    }

    deposit = client.post(
        f"/reservations/{reservation['id']}/deposit",
        json={"phone_number": "0788 123 456", "provider": "MTN_MOMO_RWA"},
    )
    assert deposit.status_code == 202
    deposit_id = deposit.json()["id"]
    assert deposit.json()["status"] == "ACCEPTED"
    assert deposit.json()["amount"] == "486018"

    fetched = client.get(f"/payments/{deposit_id}")
    assert fetched.status_code == 200
    assert fetched.json()["internal_reference"] == reservation["id"]

    gateway_client.get_deposit_status.return_value = {
        "depositId": deposit_id,
        "status": "COMPLETED",
    }
    reconciled = client.post(f"/payments/{deposit_id}/reconcile")
    assert reconciled.status_code == 200
    assert reconciled.json()["new_status"] == "COMPLETED"
    assert reconciled.json()["distribution"]["success"] is True

    gateway_client.initiate_refund.side_effect = lambda payload: {
        "refundId": payload["refundId"],
        "status": "ACCEPTED",
    }
    cancelled = client.post(
        f"/reservations/{reservation['id']}/cancel", json={"cancelled_by": "owner"}
    )

    assert cancelled.status_code == 200
    body = cancelled.json()
    assert body["reservation"]["status"] == "cancelled"
    assert Decimal(body["refund"]["amount"]) == Decimal("372")
    assert body["refund"]["transaction"]["transaction_type"] == "REFUND"
    assert body["refund"]["transaction"]["related_transaction_id"] == deposit_id
    assert gateway_client.initiate_refund.call_args.args[0]["amount"] == "486018"


@pytest.mark.integration
def test_cancel_without_deposit_reports_refund_error(
    client: TestClient, make_reservation: Callable[..., dict[str, Any]]
) -> None:
    """Test that the cancellation stands when no deposit can be refunded."""
    reservation = make_reservation(paid=True)

    response = client.post(
        f"/reservations/{reservation['id']}/cancel", json={"cancelled_by": "owner"}
    )

    assert response.status_code == 200
    assert response.json()["reservation"]["status"] == "cancelled"
    assert response.json()["refund"]["error"]["error"] == "not_found"


@pytest.mark.integration
def test_deposit_gateway_outage_returns_503(
    client: TestClient,
    gateway_client: Mock,
    make_reservation: Callable[..., dict[str, Any]],
) -> None:
    reservation = make_reservation()
    gateway_client.initiate_deposit.side_effect = GatewayUnavailable("gateway unreachable")

    response = client.post(
        f"/reservations/{reservation['id']}/deposit",
        json={"phone_number": "0788123456", "provider": "MTN_MOMO_RWA"},
    )

    assert response.status_code == 503
    assert client.get("/payments/anything").status_code == 404


@pytest.mark.integration
def test_distribution_routes(
    client: TestClient, make_reservation: Callable[..., dict[str, Any]]
) -> None:
    """Test listing, single distribution and the backfill run."""
    first = make_reservation(start_in=10, paid=True)
    second = make_reservation(start_in=20, paid=True)

    listed = client.get("/distribution/undistributed").json()
    assert listed["count"] == 2

    single = client.post(f"/distribution/{first['id']}")
    assert single.status_code == 200
    assert single.json()["reason"] == "distributed"

    again = client.post(f"/distribution/{first['id']}")
    assert again.json()["success"] is False
    assert again.json()["reason"] == "already_distributed"

    run = client.post("/distribution/run").json()
    assert (run["processed"], run["succeeded"]) == (1, 1)
    assert run["details"][0]["reservation_id"] == second["id"]

    missing = client.post("/distribution/missing")
    assert missing.status_code == 404


@pytest.mark.integration
def test_readiness_follows_database_health(client: TestClient) -> None:
    assert client.get("/ready").status_code == 200

    with patch("booking_settlement.routes.health.check_engine_health", return_value=False):
        response = client.get("/ready")

    assert response.status_code == 503
    assert response.json()["checks"]["database"] == "failed"
