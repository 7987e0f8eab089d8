"""SQLAlchemy models for settlement wallets and their append-only ledger."""

from sqlalchemy import (
    TIMESTAMP,
    Boolean,
    Column,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    text,
    true,
)

from booking_settlement.models.base import Base


class Wallet(Base):
    """
    One wallet per owner in the settlement currency.

    Created lazily on first credit. ``balance`` only changes together with a
    WalletTransaction row recording balance_before/balance_after.
    """

    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    owner_id = Column(String(64), nullable=False, unique=True)
    balance = Column(Numeric(14, 2), nullable=False, server_default=text("0"))
    currency = Column(String(3), nullable=False)
    is_active = Column(Boolean, nullable=False, server_default=true())
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)


class WalletTransaction(Base):
    """
    Append-only ledger entry. Never updated or deleted.

    ``idempotency_key`` is unique so the same logical credit cannot be
    applied twice, e.g. ``distribution:<reservation_id>:owner``.
    """

    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_id = Column(Integer, ForeignKey("wallets.id"), nullable=False, index=True)
    direction = Column(String(8), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    balance_before = Column(Numeric(14, 2), nullable=False)
    balance_after = Column(Numeric(14, 2), nullable=False)
    external_reference = Column(String(64), nullable=True, index=True)
    idempotency_key = Column(String(128), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
