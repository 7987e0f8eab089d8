from typing import Any

import structlog
from sqlalchemy import delete, insert, update
from sqlalchemy.engine import Connection

from booking_settlement.models.payment_transactions import PaymentTransaction
from booking_settlement.utils.datetime import utc_now

logger = structlog.get_logger(__name__)


def insert_transaction(conn: Connection, row: dict[str, Any]) -> None:
    """
    Persist a newly initiated gateway operation.

    Args:
        conn: Active connection (within transaction)
        row: Column values; ``id``, ``transaction_type``, ``status``,
            ``amount`` and ``currency`` are required
    """
    now = utc_now()
    values = {"created_at": now, "updated_at": now, "version": 0, **row}
    conn.execute(insert(PaymentTransaction).values(values))
    logger.info(
        "payment_transaction_recorded",
        transaction_id=values["id"],
        transaction_type=values["transaction_type"],
        status=values["status"],
    )


def update_transaction_if_version(
    conn: Connection,
    transaction_id: str,
    expected_version: int,
    values: dict[str, Any],
) -> bool:
    """
    Apply ``values`` only if the row still has ``expected_version``.

    The version is incremented by the same statement, so of two concurrent
    writers that read the same version exactly one succeeds.

    Returns:
        bool: True if the update won, False if another writer got there first
    """
    result = conn.execute(
        update(PaymentTransaction)
        .where(PaymentTransaction.id == transaction_id)
        .where(PaymentTransaction.version == expected_version)
        .values(version=PaymentTransaction.version + 1, updated_at=utc_now(), **values)
    )
    return result.rowcount == 1


def acknowledge_transaction(conn: Connection, transaction_id: str, values: dict[str, Any]) -> bool:
    """
    Record the gateway's answer to an initiation on the claimed PENDING row.

    The version is left at 0 so the row reads as freshly initiated. If a
    reconciliation already wrote the row, its status is newer and wins.

    Returns:
        bool: True if the answer was recorded
    """
    result = conn.execute(
        update(PaymentTransaction)
        .where(PaymentTransaction.id == transaction_id)
        .where(PaymentTransaction.version == 0)
        .values(updated_at=utc_now(), **values)
    )
    return result.rowcount == 1


def delete_transaction(conn: Connection, transaction_id: str) -> None:
    """Drop a claimed row whose request never reached the provider."""
    conn.execute(delete(PaymentTransaction).where(PaymentTransaction.id == transaction_id))
    logger.info("payment_transaction_discarded", transaction_id=transaction_id)
