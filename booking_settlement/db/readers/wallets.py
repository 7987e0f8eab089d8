from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.engine import Connection

from booking_settlement.models.wallets import Wallet, WalletTransaction


def get_wallet(
    conn: Connection, owner_id: str, for_update: bool = False
) -> Optional[dict[str, Any]]:
    """
    Fetch the wallet of an owner.

    Args:
        conn (Connection): SQLAlchemy DB connection.
        owner_id (str): Wallet owner.
        for_update (bool): Lock the row so the balance can be read and rewritten.

    Returns:
        Optional[dict[str, Any]]: Wallet row or None.
    """
    stmt = select(Wallet.__table__).where(Wallet.owner_id == owner_id)
    if for_update:
        stmt = stmt.with_for_update()
    row = conn.execute(stmt).mappings().fetchone()
    return dict(row) if row else None


def ledger_entry_exists(conn: Connection, idempotency_key: str) -> bool:
    result = conn.execute(
        select(WalletTransaction.id).where(WalletTransaction.idempotency_key == idempotency_key)
    )
    return result.fetchone() is not None


def list_wallet_transactions(
    conn: Connection,
    wallet_id: Optional[int] = None,
    external_reference: Optional[str] = None,
) -> list[dict[str, Any]]:
    """Ledger entries in insertion order, optionally filtered."""
    stmt = select(WalletTransaction.__table__).order_by(WalletTransaction.id)
    if wallet_id is not None:
        stmt = stmt.where(WalletTransaction.wallet_id == wallet_id)
    if external_reference is not None:
        stmt = stmt.where(WalletTransaction.external_reference == external_reference)
    return [dict(row) for row in conn.execute(stmt).mappings().all()]


def get_ledger_entry(conn: Connection, idempotency_key: str) -> Optional[dict[str, Any]]:
    """
    Fetch the ledger entry applied under ``idempotency_key``.

    The entry is returned with its wallet's ``owner_id`` and ``currency``.
    """
    stmt = (
        select(WalletTransaction.__table__, Wallet.owner_id, Wallet.currency)
        .join(Wallet, Wallet.id == WalletTransaction.wallet_id)
        .where(WalletTransaction.idempotency_key == idempotency_key)
    )
    row = conn.execute(stmt).mappings().fetchone()
    return dict(row) if row else None
