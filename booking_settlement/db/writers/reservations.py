from datetime import date, timedelta
from typing import Any, Optional

import structlog
from sqlalchemy import delete, insert, update
from sqlalchemy.engine import Connection

from booking_settlement.models.reservations import (
    ACTIVE_STATUSES,
    Reservation,
    ReservationNight,
)
from booking_settlement.utils.datetime import utc_now

logger = structlog.get_logger(__name__)


def nights_between(start: date, end: date) -> list[date]:
    """Every night in [start, end)."""
    return [start + timedelta(days=i) for i in range((end - start).days)]


def insert_reservation(conn: Connection, row: dict[str, Any]) -> None:
    """
    Insert a reservation row and claim its nights.

    Raises:
        sqlalchemy.exc.IntegrityError: if another active reservation holds any
            of the nights. The caller's transaction must be rolled back.
    """
    now = utc_now()
    values = {"created_at": now, "updated_at": now, **row}
    conn.execute(insert(Reservation).values(values))
    claim_nights(
        conn, values["id"], values["resource_id"], values["start_date"], values["end_date"]
    )


def claim_nights(
    conn: Connection, reservation_id: str, resource_id: str, start: date, end: date
) -> None:
    rows = [
        {"resource_id": resource_id, "night": night, "reservation_id": reservation_id}
        for night in nights_between(start, end)
    ]
    if rows:
        conn.execute(insert(ReservationNight), rows)


def release_nights(conn: Connection, reservation_id: str) -> int:
    """Drop every night held by a reservation. Returns the number released."""
    result = conn.execute(
        delete(ReservationNight).where(ReservationNight.reservation_id == reservation_id)
    )
    return int(result.rowcount or 0)


def update_reservation_dates(
    conn: Connection,
    reservation: dict[str, Any],
    start: date,
    end: date,
    price: dict[str, Any],
) -> None:
    """
    Move a reservation to new dates, re-claiming nights and storing the new price.

    Raises:
        sqlalchemy.exc.IntegrityError: if the new nights are held by another reservation.
    """
    release_nights(conn, reservation["id"])
    conn.execute(
        update(Reservation)
        .where(Reservation.id == reservation["id"])
        .values(start_date=start, end_date=end, updated_at=utc_now(), **price)
    )
    claim_nights(conn, reservation["id"], reservation["resource_id"], start, end)


def update_reservation_status(
    conn: Connection,
    reservation_id: str,
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    **extra: Any,
) -> None:
    """
    Set status and/or payment_status.

    Moving a reservation out of pending/confirmed releases its nights so the
    dates become bookable again.
    """
    values: dict[str, Any] = {"updated_at": utc_now(), **extra}
    if status is not None:
        values["status"] = status
    if payment_status is not None:
        values["payment_status"] = payment_status

    conn.execute(update(Reservation).where(Reservation.id == reservation_id).values(**values))

    if status is not None and status not in ACTIVE_STATUSES:
        released = release_nights(conn, reservation_id)
        logger.info(
            "reservation_nights_released",
            reservation_id=reservation_id,
            status=status,
            nights=released,
        )


def claim_distribution(conn: Connection, reservation_id: str) -> bool:
    """
    Compare-and-set the wallet_distributed flag.

    Returns:
        bool: True if this caller flipped the flag; False if it was already set
            or the reservation is not paid.
    """
    now = utc_now()
    result = conn.execute(
        update(Reservation)
        .where(Reservation.id == reservation_id)
        .where(Reservation.wallet_distributed.is_(False))
        .where(Reservation.payment_status == "completed")
        .values(
            wallet_distributed=True,
            wallet_distributed_at=now,
            distribution_attempts=Reservation.distribution_attempts + 1,
            distribution_error=None,
            updated_at=now,
        )
    )
    return result.rowcount == 1


def record_distribution_failure(conn: Connection, reservation_id: str, error: str) -> None:
    conn.execute(
        update(Reservation)
        .where(Reservation.id == reservation_id)
        .values(
            distribution_attempts=Reservation.distribution_attempts + 1,
            distribution_error=error[:2000],
            updated_at=utc_now(),
        )
    )
