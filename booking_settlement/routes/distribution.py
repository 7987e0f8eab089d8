"""Operator routes for wallet distribution backfill."""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query

from booking_settlement.config import DISTRIBUTION_WINDOW_DAYS
from booking_settlement.dependencies import get_distributor
from booking_settlement.errors import ReservationNotFound
from booking_settlement.routes._helpers import http_error, serialize
from booking_settlement.services.distribution import Distributor

logger = structlog.get_logger(__name__)
router = APIRouter()


@router.get("/distribution/undistributed")
def list_undistributed(
    window_days: int = Query(DISTRIBUTION_WINDOW_DAYS, ge=1, le=365),
    distributor: Distributor = Depends(get_distributor),
) -> dict[str, Any]:
    """Paid, confirmed reservations whose funds have not reached wallets."""
    try:
        reservations = distributor.find_undistributed(window_days=window_days)
        return serialize({"count": len(reservations), "reservations": reservations})
    except Exception as e:
        logger.exception("list_undistributed_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/distribution/run")
def run_distribution(
    window_days: int = Query(DISTRIBUTION_WINDOW_DAYS, ge=1, le=365),
    distributor: Distributor = Depends(get_distributor),
) -> dict[str, Any]:
    try:
        return serialize(distributor.distribute_all(window_days=window_days).to_dict())
    except Exception as e:
        logger.exception("distribution_run_failed", error=str(e))
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/distribution/{reservation_id}")
def distribute_reservation(
    reservation_id: str,
    distributor: Distributor = Depends(get_distributor),
) -> dict[str, Any]:
    """
    Distribute one reservation.

    Already-distributed and unpaid reservations answer 200 with
    ``success: false`` and the reason; distribute never double-credits.
    """
    result = distributor.distribute(reservation_id)
    if result.reason == "not_found":
        raise http_error(
            ReservationNotFound("reservation not found", reservation_id=reservation_id)
        )
    return serialize(result.to_dict())
