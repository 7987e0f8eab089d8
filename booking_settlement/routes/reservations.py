"""Availability, quote, reservation and blocked-range routes."""

from datetime import date
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.engine import Engine

from booking_settlement.db.readers.payment_transactions import find_transactions_for_reference
from booking_settlement.dependencies import get_adapter, get_db_engine
from booking_settlement.errors import BookingSettlementError
from booking_settlement.gateway.adapter import PaymentGatewayAdapter
from booking_settlement.routes._helpers import http_error, serialize
from booking_settlement.schemas.reservations import (
    BlockedRangeCreatePayload,
    ReservationCancelPayload,
    ReservationCreatePayload,
    StayPayload,
)
from booking_settlement.services import booking
from booking_settlement.services.availability import is_available

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/resources/{resource_id}/availability")
def get_availability(
    resource_id: str,
    start_date: date = Query(...),
    end_date: date = Query(...),
    exclude_reservation_id: str | None = Query(None),
    engine: Engine = Depends(get_db_engine),
) -> dict[str, Any]:
    """
    Report whether [start_date, end_date) is free, with every conflict found.
    """
    try:
        result = is_available(engine, resource_id, start_date, end_date, exclude_reservation_id)
        return serialize(result.to_dict())
    except BookingSettlementError as e:
        raise http_error(e)
    except Exception as e:
        logger.exception("availability_check_failed", resource_id=resource_id, error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/resources/{resource_id}/quote")
def quote_stay(
    resource_id: str,
    payload: StayPayload,
    engine: Engine = Depends(get_db_engine),
) -> dict[str, Any]:
    """Price a stay with the same rules used when booking."""
    try:
        price = booking.quote(engine, resource_id, payload.start_date, payload.end_date)
        return serialize(price.to_dict())
    except BookingSettlementError as e:
        raise http_error(e)
    except Exception as e:
        logger.exception("quote_failed", resource_id=resource_id, error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/resources/{resource_id}/blocked-ranges", status_code=status.HTTP_201_CREATED)
def create_blocked_range(
    resource_id: str,
    payload: BlockedRangeCreatePayload,
    engine: Engine = Depends(get_db_engine),
) -> dict[str, Any]:
    try:
        blocked_range_id = booking.block_dates(
            engine,
            resource_id,
            payload.start_date,
            payload.end_date,
            reason=payload.reason,
            created_by=payload.created_by,
        )
        return {"id": blocked_range_id}
    except BookingSettlementError as e:
        raise http_error(e)
    except Exception as e:
        logger.exception("block_dates_failed", resource_id=resource_id, error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")


@router.delete("/blocked-ranges/{blocked_range_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_blocked_range(
    blocked_range_id: int,
    engine: Engine = Depends(get_db_engine),
) -> None:
    try:
        booking.unblock_dates(engine, blocked_range_id)
    except BookingSettlementError as e:
        raise http_error(e)
    except Exception as e:
        logger.exception(
            "unblock_dates_failed", blocked_range_id=blocked_range_id, error=str(e)
        )
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/reservations", status_code=status.HTTP_201_CREATED)
def create_reservation(
    payload: ReservationCreatePayload,
    engine: Engine = Depends(get_db_engine),
) -> dict[str, Any]:
    """
    Book a resource.

    Returns:
        dict: The pending reservation with its price breakdown

    Responds 409 with the conflicting reservations/blocked ranges when the
    dates are taken, 400 for invalid input.
    """
    try:
        reservation = booking.create_reservation(
            engine,
            resource_id=payload.resource_id,
            requester_id=payload.requester_id,
            start=payload.start_date,
            end=payload.end_date,
            guests=payload.guests,
        )
        return serialize(reservation)
    except BookingSettlementError as e:
        raise http_error(e)
    except Exception as e:
        logger.exception("reservation_creation_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")


@router.patch("/reservations/{reservation_id}/dates")
def reschedule_reservation(
    reservation_id: str,
    payload: StayPayload,
    engine: Engine = Depends(get_db_engine),
) -> dict[str, Any]:
    try:
        reservation = booking.reschedule_reservation(
            engine, reservation_id, payload.start_date, payload.end_date
        )
        return serialize(reservation)
    except BookingSettlementError as e:
        raise http_error(e)
    except Exception as e:
        logger.exception("reschedule_failed", reservation_id=reservation_id, error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/reservations/{reservation_id}/cancel")
def cancel_reservation(
    reservation_id: str,
    payload: ReservationCancelPayload,
    engine: Engine = Depends(get_db_engine),
    adapter: PaymentGatewayAdapter = Depends(get_adapter),
) -> dict[str, Any]:
    """
    Cancel a reservation and, when money is owed back, submit the refund.

    The cancellation stands even if the refund cannot be submitted; the
    response then carries ``refund.error`` and the refund can be retried via
    POST /payments/{deposit_id}/refund.
    """
    try:
        reservation, refund = booking.cancel_reservation(
            engine, reservation_id, payload.cancelled_by
        )
    except BookingSettlementError as e:
        raise http_error(e)
    except Exception as e:
        logger.exception("cancellation_failed", reservation_id=reservation_id, error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")

    refund_info: dict[str, Any] = {"amount": refund}
    if refund > 0 and payload.initiate_refund:
        with engine.connect() as conn:
            deposits = [
                tx
                for tx in find_transactions_for_reference(conn, reservation_id, "DEPOSIT")
                if tx["status"] == "COMPLETED"
            ]
        if not deposits:
            refund_info["error"] = {"detail": "no completed deposit", "error": "not_found"}
        else:
            try:
                refund_info["transaction"] = adapter.initiate_refund(deposits[0]["id"], refund)
            except BookingSettlementError as e:
                logger.warning(
                    "refund_initiation_failed", reservation_id=reservation_id, error=str(e)
                )
                refund_info["error"] = e.to_dict()

    return serialize({"reservation": reservation, "refund": refund_info})
