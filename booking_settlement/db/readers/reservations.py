from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import and_, select
from sqlalchemy.engine import Connection
from sqlalchemy.sql.elements import ColumnElement

from booking_settlement.models.blocked_ranges import BlockedRange
from booking_settlement.models.reservations import (
    ACTIVE_STATUSES,
    Reservation,
    ReservationNight,
)


def overlap_clause(start_col: Any, end_col: Any, start: date, end: date) -> ColumnElement[bool]:
    """Half-open overlap: [s, e) intersects [start, end) iff s < end and e > start."""
    return and_(start_col < end, end_col > start)


def get_reservation(
    conn: Connection, reservation_id: str, for_update: bool = False
) -> Optional[dict[str, Any]]:
    """
    Fetch a reservation by ID.

    Args:
        conn (Connection): SQLAlchemy DB connection.
        reservation_id (str): Reservation ID.
        for_update (bool): Lock the row for the rest of the transaction.

    Returns:
        Optional[dict[str, Any]]: Reservation row or None if not found.
    """
    stmt = select(Reservation.__table__).where(Reservation.id == reservation_id)
    if for_update:
        stmt = stmt.with_for_update()
    row = conn.execute(stmt).mappings().fetchone()
    return dict(row) if row else None


def find_overlapping_reservations(
    conn: Connection,
    resource_id: str,
    start: date,
    end: date,
    exclude_reservation_id: Optional[str] = None,
) -> list[dict[str, Any]]:
    """
    Return every active reservation on the resource overlapping [start, end).

    Args:
        conn (Connection): SQLAlchemy DB connection.
        resource_id (str): Resource ID.
        start (date): Candidate start (inclusive).
        end (date): Candidate end (exclusive).
        exclude_reservation_id (Optional[str]): Reservation to ignore, used
            when re-checking a reservation's own new dates.

    Returns:
        list[dict[str, Any]]: Conflicting reservations ordered by start date.
    """
    stmt = (
        select(Reservation.__table__)
        .where(Reservation.resource_id == resource_id)
        .where(Reservation.status.in_(ACTIVE_STATUSES))
        .where(overlap_clause(Reservation.start_date, Reservation.end_date, start, end))
        .order_by(Reservation.start_date, Reservation.id)
    )
    if exclude_reservation_id is not None:
        stmt = stmt.where(Reservation.id != exclude_reservation_id)
    return [dict(row) for row in conn.execute(stmt).mappings().all()]


def find_overlapping_blocked_ranges(
    conn: Connection, resource_id: str, start: date, end: date
) -> list[dict[str, Any]]:
    """Return every active blocked range on the resource overlapping [start, end)."""
    stmt = (
        select(BlockedRange.__table__)
        .where(BlockedRange.resource_id == resource_id)
        .where(BlockedRange.is_active.is_(True))
        .where(overlap_clause(BlockedRange.start_date, BlockedRange.end_date, start, end))
        .order_by(BlockedRange.start_date, BlockedRange.id)
    )
    return [dict(row) for row in conn.execute(stmt).mappings().all()]


def find_night_holders(conn: Connection, resource_id: str, nights: list[date]) -> list[str]:
    """Return IDs of reservations currently holding any of the given nights."""
    if not nights:
        return []
    stmt = (
        select(ReservationNight.reservation_id)
        .where(ReservationNight.resource_id == resource_id)
        .where(ReservationNight.night.in_(nights))
        .distinct()
    )
    return list(conn.execute(stmt).scalars().all())


def find_undistributed_reservations(
    conn: Connection, since: datetime, limit: Optional[int] = None
) -> list[dict[str, Any]]:
    """
    Paid and confirmed reservations whose funds were never split into wallets.

    Args:
        conn (Connection): SQLAlchemy DB connection.
        since (datetime): Only reservations created at or after this instant.
        limit (Optional[int]): Maximum number of rows.

    Returns:
        list[dict[str, Any]]: Newest first.
    """
    stmt = (
        select(Reservation.__table__)
        .where(Reservation.payment_status == "completed")
        .where(Reservation.status == "confirmed")
        .where(Reservation.wallet_distributed.is_(False))
        .where(Reservation.created_at >= since)
        .order_by(Reservation.created_at.desc())
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return [dict(row) for row in conn.execute(stmt).mappings().all()]
