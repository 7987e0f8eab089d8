"""
Integration tests for payouts and the owner wallets they withdraw from.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional
from unittest.mock import Mock

import pytest
from sqlalchemy import select
from sqlalchemy.engine import Engine

from booking_settlement.db.readers.wallets import get_wallet, list_wallet_transactions
from booking_settlement.db.writers.wallets import CREDIT, apply_wallet_transaction
from booking_settlement.errors import GatewayRejected, GatewayUnavailable, ValidationError
from booking_settlement.gateway.adapter import PaymentGatewayAdapter, PayoutInstruction
from booking_settlement.models.payment_transactions import PaymentTransaction
from booking_settlement.services.distribution import Distributor
from booking_settlement.services.notifications import Notifier
from booking_settlement.services.reconciliation import Reconciler


@pytest.fixture
def reconciler(engine: Engine, adapter: PaymentGatewayAdapter) -> Reconciler:
    return Reconciler(engine, adapter, Distributor(engine), Notifier(api_url=None))


def _fund(engine: Engine, owner_id: str, amount: str) -> None:
    with engine.begin() as conn:
        apply_wallet_transaction(
            conn, owner_id, CREDIT, Decimal(amount), "USD", idempotency_key=f"fund:{owner_id}"
        )


def _balance(engine: Engine, owner_id: str) -> Optional[Decimal]:
    with engine.connect() as conn:
        wallet = get_wallet(conn, owner_id)
    return wallet["balance"] if wallet else None


def _ledger(engine: Engine, owner_id: str) -> list[dict[str, Any]]:
    with engine.connect() as conn:
        wallet = get_wallet(conn, owner_id)
        assert wallet is not None
        return list_wallet_transactions(conn, wallet_id=wallet["id"])


def _payout_count(engine: Engine) -> int:
    with engine.connect() as conn:
        return len(conn.execute(select(PaymentTransaction.__table__)).all())


def _instruction(amount: str = "100") -> PayoutInstruction:
    return PayoutInstruction("owner-1", Decimal(amount), "0788000001", "MTN_MOMO_RWA")


@pytest.mark.integration
def test_payout_beyond_balance_rejected(
    engine: Engine, adapter: PaymentGatewayAdapter, gateway_client: Mock
) -> None:
    """Test that an owner cannot withdraw more than their wallet holds."""
    _fund(engine, "owner-1", "99.99")

    with pytest.raises(ValidationError):
        adapter.initiate_payout(_instruction("100"))

    gateway_client.initiate_payout.assert_not_called()
    assert _payout_count(engine) == 0
    assert _balance(engine, "owner-1") == Decimal("99.99")
    assert len(_ledger(engine, "owner-1")) == 1


@pytest.mark.integration
def test_payout_without_wallet_rejected(
    engine: Engine, adapter: PaymentGatewayAdapter, gateway_client: Mock
) -> None:
    """Test that an owner who was never credited cannot withdraw."""
    with pytest.raises(ValidationError):
        adapter.initiate_payout(_instruction("10"))

    gateway_client.initiate_payout.assert_not_called()
    assert _payout_count(engine) == 0


@pytest.mark.integration
def test_completed_payout_debits_once(
    engine: Engine,
    adapter: PaymentGatewayAdapter,
    gateway_client: Mock,
    reconciler: Reconciler,
) -> None:
    """Test that a payout debits on initiation and completion changes nothing more."""
    _fund(engine, "owner-1", "150")
    gateway_client.initiate_payout.side_effect = lambda payload: {
        "payoutId": payload["payoutId"],
        "status": "ACCEPTED",
    }

    payout = adapter.initiate_payout(_instruction("100"))

    assert _balance(engine, "owner-1") == Decimal("50.00")
    gateway_client.get_payout_status.return_value = {
        "payoutId": payout["id"],
        "status": "COMPLETED",
    }
    assert reconciler.reconcile(payout["id"]).changed
    assert not reconciler.reconcile(payout["id"]).changed

    assert _balance(engine, "owner-1") == Decimal("50.00")
    debits = [e for e in _ledger(engine, "owner-1") if e["direction"] == "debit"]
    assert [(e["amount"], e["idempotency_key"]) for e in debits] == [
        (Decimal("100.00"), f"payout:{payout['id']}")
    ]


@pytest.mark.integration
def test_failed_payout_credited_back(
    engine: Engine,
    adapter: PaymentGatewayAdapter,
    gateway_client: Mock,
    reconciler: Reconciler,
) -> None:
    """Test that a payout the provider fails returns the money to the wallet."""
    _fund(engine, "owner-1", "150")
    gateway_client.initiate_payout.side_effect = lambda payload: {
        "payoutId": payload["payoutId"],
        "status": "ACCEPTED",
    }
    payout = adapter.initiate_payout(_instruction("100"))
    gateway_client.get_payout_status.return_value = {
        "payoutId": payout["id"],
        "status": "FAILED",
        "failureReason": {"failureCode": "RECIPIENT_NOT_FOUND"},
    }

    result = reconciler.reconcile(payout["id"])
    reconciler.reconcile(payout["id"])

    assert result.new_status == "FAILED"
    assert _balance(engine, "owner-1") == Decimal("150.00")
    ledger = _ledger(engine, "owner-1")
    assert [e["description"] for e in ledger] == [
        None,
        f"WITHDRAWAL - {payout['id']}",
        f"WITHDRAWAL_REVERSED - {payout['id']}",
    ]


@pytest.mark.integration
@pytest.mark.parametrize(
    "failure",
    [GatewayRejected("bad number", status="REJECTED"), GatewayUnavailable("down")],
)
def test_refused_payout_restores_balance(
    engine: Engine,
    adapter: PaymentGatewayAdapter,
    gateway_client: Mock,
    failure: Exception,
) -> None:
    """Test that a payout the provider never took leaves the balance unchanged."""
    _fund(engine, "owner-1", "150")
    gateway_client.initiate_payout.side_effect = failure

    with pytest.raises(type(failure)):
        adapter.initiate_payout(_instruction("100"))

    assert _payout_count(engine) == 0
    assert _balance(engine, "owner-1") == Decimal("150.00")
    assert [e["direction"] for e in _ledger(engine, "owner-1")] == ["credit", "debit", "credit"]
