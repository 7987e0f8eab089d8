"""Gateway operation routes: deposits, refunds, payouts and on-demand reconciliation."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.engine import Engine

from booking_settlement.db.readers.payment_transactions import get_transaction
from booking_settlement.dependencies import get_adapter, get_db_engine, get_reconciler
from booking_settlement.errors import BookingSettlementError, TransactionNotFound
from booking_settlement.gateway.adapter import PaymentGatewayAdapter, PayoutInstruction
from booking_settlement.routes._helpers import http_error, serialize
from booking_settlement.schemas.payments import (
    BulkPayoutCreatePayload,
    DepositCreatePayload,
    PayoutCreatePayload,
    RefundCreatePayload,
)
from booking_settlement.services.reconciliation import Reconciler

logger = structlog.get_logger(__name__)
router = APIRouter()


def _instruction(payload: PayoutCreatePayload) -> PayoutInstruction:
    return PayoutInstruction(
        recipient_id=payload.recipient_id,
        amount=payload.amount,
        phone_number=payload.phone_number,
        provider=payload.provider,
        internal_reference=payload.internal_reference,
    )


@router.post("/reservations/{reservation_id}/deposit", status_code=status.HTTP_202_ACCEPTED)
def create_deposit(
    reservation_id: str,
    payload: DepositCreatePayload,
    adapter: PaymentGatewayAdapter = Depends(get_adapter),
) -> dict[str, Any]:
    """
    Ask the requester's mobile money account for the reservation total.

    The reservation is confirmed later, when reconciliation sees COMPLETED.
    Responds 503/502 (nothing recorded) if the gateway is down or refuses.
    """
    try:
        transaction = adapter.initiate_deposit(
            reservation_id,
            phone_number=payload.phone_number,
            provider=payload.provider,
            base_rate=payload.base_rate,
        )
        return serialize(transaction)
    except BookingSettlementError as e:
        raise http_error(e)
    except Exception as e:
        logger.exception("deposit_initiation_failed", reservation_id=reservation_id, error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/payments/{transaction_id}")
def get_payment(
    transaction_id: str,
    engine: Engine = Depends(get_db_engine),
) -> dict[str, Any]:
    with engine.connect() as conn:
        transaction = get_transaction(conn, transaction_id)
    if transaction is None:
        raise http_error(
            TransactionNotFound("transaction not found", transaction_id=transaction_id)
        )
    return serialize(transaction)


@router.post("/payments/{transaction_id}/reconcile")
def reconcile_payment(
    transaction_id: str,
    reconciler: Reconciler = Depends(get_reconciler),
) -> dict[str, Any]:
    """
    Refresh a transaction from the gateway and apply any resulting changes.

    Safe to call repeatedly; an unchanged status has no side effects.
    """
    try:
        return serialize(reconciler.reconcile(transaction_id).to_dict())
    except BookingSettlementError as e:
        raise http_error(e)
    except Exception as e:
        logger.exception("reconcile_failed", transaction_id=transaction_id, error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/payments/{transaction_id}/refund", status_code=status.HTTP_202_ACCEPTED)
def create_refund(
    transaction_id: str,
    payload: RefundCreatePayload,
    adapter: PaymentGatewayAdapter = Depends(get_adapter),
) -> dict[str, Any]:
    try:
        return serialize(adapter.initiate_refund(transaction_id, payload.amount))
    except BookingSettlementError as e:
        raise http_error(e)
    except Exception as e:
        logger.exception("refund_initiation_failed", transaction_id=transaction_id, error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/payouts", status_code=status.HTTP_202_ACCEPTED)
def create_payout(
    payload: PayoutCreatePayload,
    adapter: PaymentGatewayAdapter = Depends(get_adapter),
) -> dict[str, Any]:
    try:
        return serialize(adapter.initiate_payout(_instruction(payload)))
    except BookingSettlementError as e:
        raise http_error(e)
    except Exception as e:
        logger.exception(
            "payout_initiation_failed", recipient_id=payload.recipient_id, error=str(e)
        )
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/payouts/bulk", status_code=status.HTTP_202_ACCEPTED)
def create_bulk_payout(
    payload: BulkPayoutCreatePayload,
    adapter: PaymentGatewayAdapter = Depends(get_adapter),
) -> dict[str, Any]:
    """Submit several payouts; each entry reports its own transaction or error."""
    try:
        results = adapter.initiate_bulk_payout(
            [_instruction(p) for p in payload.payouts], base_rate=payload.base_rate
        )
        return serialize({"results": results})
    except BookingSettlementError as e:
        raise http_error(e)
    except Exception as e:
        logger.exception("bulk_payout_failed", count=len(payload.payouts), error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")
