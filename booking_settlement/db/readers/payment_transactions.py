from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.engine import Connection

from booking_settlement.models.payment_transactions import TERMINAL_STATUSES, PaymentTransaction


def get_transaction(conn: Connection, transaction_id: str) -> Optional[dict[str, Any]]:
    """
    Fetch a payment transaction, including its current optimistic-lock version.

    Args:
        conn (Connection): SQLAlchemy DB connection.
        transaction_id (str): Transaction ID (also the provider-facing ID).

    Returns:
        Optional[dict[str, Any]]: Row or None if not found.
    """
    stmt = select(PaymentTransaction.__table__).where(PaymentTransaction.id == transaction_id)
    row = conn.execute(stmt).mappings().fetchone()
    return dict(row) if row else None


def find_pending_transactions(
    conn: Connection, since: datetime, limit: int = 50
) -> list[dict[str, Any]]:
    """
    Non-terminal transactions created at or after ``since``, oldest first.

    Returns:
        list[dict[str, Any]]: Rows to re-poll.
    """
    stmt = (
        select(PaymentTransaction.__table__)
        .where(PaymentTransaction.status.not_in(TERMINAL_STATUSES))
        .where(PaymentTransaction.created_at >= since)
        .order_by(PaymentTransaction.created_at)
        .limit(limit)
    )
    return [dict(row) for row in conn.execute(stmt).mappings().all()]


def find_transactions_for_reference(
    conn: Connection, internal_reference: str, transaction_type: Optional[str] = None
) -> list[dict[str, Any]]:
    """All transactions linked to a reservation, newest first."""
    stmt = (
        select(PaymentTransaction.__table__)
        .where(PaymentTransaction.internal_reference == internal_reference)
        .order_by(PaymentTransaction.created_at.desc())
    )
    if transaction_type is not None:
        stmt = stmt.where(PaymentTransaction.transaction_type == transaction_type)
    return [dict(row) for row in conn.execute(stmt).mappings().all()]
