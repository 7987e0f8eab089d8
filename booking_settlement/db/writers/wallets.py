from decimal import Decimal
from typing import Any, Optional

import structlog
from sqlalchemy import insert, update
from sqlalchemy.engine import Connection

from booking_settlement.db.readers.wallets import get_ledger_entry, get_wallet, ledger_entry_exists
from booking_settlement.db.writers._upsert import insert_ignore
from booking_settlement.errors import ValidationError
from booking_settlement.models.wallets import Wallet, WalletTransaction
from booking_settlement.utils.datetime import utc_now
from booking_settlement.utils.money import round_cents, to_decimal

logger = structlog.get_logger(__name__)

CREDIT = "credit"
DEBIT = "debit"


def ensure_wallet(conn: Connection, owner_id: str, currency: str) -> dict[str, Any]:
    """
    Return the owner's wallet, creating an empty active one if absent.

    The returned row is locked for the rest of the transaction.
    """
    now = utc_now()
    created = insert_ignore(
        conn,
        Wallet,
        {
            "owner_id": owner_id,
            "balance": Decimal("0"),
            "currency": currency,
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        },
        ["owner_id"],
    )
    if created:
        logger.info("wallet_created", owner_id=owner_id, currency=currency)

    wallet = get_wallet(conn, owner_id, for_update=True)
    if wallet is None:
        raise RuntimeError(f"wallet for {owner_id} vanished after insert")
    return wallet


def apply_wallet_transaction(
    conn: Connection,
    owner_id: str,
    direction: str,
    amount: Decimal,
    currency: str,
    idempotency_key: str,
    external_reference: Optional[str] = None,
    description: Optional[str] = None,
) -> Optional[dict[str, Any]]:
    """
    Append a ledger entry and move the wallet balance by the same amount.

    Args:
        conn: Active connection (within transaction)
        owner_id: Wallet owner; the wallet is created lazily
        direction: "credit" or "debit"
        amount: Positive amount in the settlement currency
        currency: Settlement currency of the wallet
        idempotency_key: Unique key of this logical mutation
        external_reference: Reservation or payment transaction it stems from
        description: Human-readable note

    Returns:
        Optional[dict[str, Any]]: The ledger entry, or None if the key was
            already applied.

    Raises:
        ValidationError: non-positive amount, inactive wallet, currency
            mismatch or insufficient balance for a debit
    """
    if direction not in (CREDIT, DEBIT):
        raise ValidationError("direction must be credit or debit", direction=direction)
    amount = round_cents(to_decimal(amount))
    if amount <= 0:
        raise ValidationError("wallet amount must be positive", amount=str(amount))

    wallet = ensure_wallet(conn, owner_id, currency)

    if ledger_entry_exists(conn, idempotency_key):
        logger.info("wallet_transaction_already_applied", idempotency_key=idempotency_key)
        return None

    if not wallet["is_active"]:
        raise ValidationError("wallet is inactive", owner_id=owner_id)
    if wallet["currency"] != currency:
        raise ValidationError(
            "wallet currency mismatch",
            owner_id=owner_id,
            wallet_currency=wallet["currency"],
            currency=currency,
        )

    balance_before = round_cents(to_decimal(wallet["balance"]))
    if direction == CREDIT:
        balance_after = balance_before + amount
    else:
        balance_after = balance_before - amount
        if balance_after < 0:
            raise ValidationError(
                "insufficient wallet balance",
                owner_id=owner_id,
                balance=str(balance_before),
                amount=str(amount),
            )

    now = utc_now()
    entry = {
        "wallet_id": wallet["id"],
        "direction": direction,
        "amount": amount,
        "balance_before": balance_before,
        "balance_after": balance_after,
        "external_reference": external_reference,
        "idempotency_key": idempotency_key,
        "description": description,
        "created_at": now,
    }
    conn.execute(insert(WalletTransaction).values(entry))
    conn.execute(
        update(Wallet)
        .where(Wallet.id == wallet["id"])
        .values(balance=balance_after, updated_at=now)
    )

    logger.info(
        "wallet_transaction_applied",
        owner_id=owner_id,
        direction=direction,
        amount=str(amount),
        balance_after=str(balance_after),
        idempotency_key=idempotency_key,
    )
    return entry


def withdrawal_key(transaction_id: str) -> str:
    return f"payout:{transaction_id}"


def reversal_key(transaction_id: str) -> str:
    return f"payout-reversal:{transaction_id}"


def debit_for_payout(
    conn: Connection, owner_id: str, amount: Decimal, currency: str, transaction_id: str
) -> Optional[dict[str, Any]]:
    """
    Take a payout's amount out of the recipient's wallet.

    Raises:
        ValidationError: no funds, short balance, inactive wallet or currency mismatch
    """
    return apply_wallet_transaction(
        conn,
        owner_id=owner_id,
        direction=DEBIT,
        amount=amount,
        currency=currency,
        idempotency_key=withdrawal_key(transaction_id),
        external_reference=transaction_id,
        description=f"WITHDRAWAL - {transaction_id}",
    )


def reverse_payout_debit(conn: Connection, transaction_id: str) -> Optional[dict[str, Any]]:
    """
    Credit back the debit taken for a payout that did not go through.

    Returns:
        Optional[dict[str, Any]]: The credit entry, or None if the payout never
            debited a wallet or was already reversed.
    """
    debit = get_ledger_entry(conn, withdrawal_key(transaction_id))
    if debit is None:
        logger.info("payout_debit_not_found", transaction_id=transaction_id)
        return None

    return apply_wallet_transaction(
        conn,
        owner_id=debit["owner_id"],
        direction=CREDIT,
        amount=debit["amount"],
        currency=debit["currency"],
        idempotency_key=reversal_key(transaction_id),
        external_reference=transaction_id,
        description=f"WITHDRAWAL_REVERSED - {transaction_id}",
    )
