"""SQLAlchemy model for gateway operations (deposits, payouts, refunds)."""

from sqlalchemy import (
    JSON,
    TIMESTAMP,
    CheckConstraint,
    Column,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)

from booking_settlement.models.base import Base, one_of

TRANSACTION_TYPES = ("DEPOSIT", "PAYOUT", "REFUND")
TRANSACTION_STATUSES = ("PENDING", "ACCEPTED", "SUBMITTED", "COMPLETED", "FAILED")
TERMINAL_STATUSES = ("COMPLETED", "FAILED")
IN_FLIGHT_STATUSES = ("PENDING", "ACCEPTED", "SUBMITTED")
IN_FLIGHT_DEPOSIT = f"transaction_type = 'DEPOSIT' AND {one_of('status', IN_FLIGHT_STATUSES)}"


class PaymentTransaction(Base):
    """
    ORM model for one initiated gateway operation.

    ``id`` is the uuid sent to the provider as depositId/payoutId/refundId, so
    it doubles as the external id. ``amount`` is kept as the provider's
    minor-unit string. ``version`` is bumped on every reconciliation write and
    used as the optimistic lock.

    At most one DEPOSIT per reservation may be in flight; the partial unique
    index rejects a second one even when two requests race.
    """

    __tablename__ = "payment_transactions"
    __table_args__ = (
        CheckConstraint(one_of("transaction_type", TRANSACTION_TYPES), name="transaction_type"),
        CheckConstraint(one_of("status", TRANSACTION_STATUSES), name="status"),
        Index(
            "uq_payment_transactions_in_flight_deposit",
            "internal_reference",
            unique=True,
            postgresql_where=text(IN_FLIGHT_DEPOSIT),
            sqlite_where=text(IN_FLIGHT_DEPOSIT),
        ),
    )

    id = Column(String(36), primary_key=True)
    transaction_type = Column(String(16), nullable=False, index=True)
    status = Column(String(16), nullable=False, index=True)
    amount = Column(String(32), nullable=False)
    currency = Column(String(3), nullable=False)
    internal_reference = Column(String(64), nullable=True, index=True)
    related_transaction_id = Column(String(36), nullable=True)

    provider_transaction_id = Column(String(128), nullable=True)
    financial_transaction_id = Column(String(128), nullable=True)
    correspondent = Column(String(64), nullable=True)
    party_phone = Column(String(32), nullable=True)
    metadata_ = Column("metadata", JSON, nullable=True)

    settlement_amount = Column(Numeric(12, 2), nullable=True)
    exchange_rate = Column(Numeric(14, 4), nullable=True)

    failure_code = Column(String(64), nullable=True)
    failure_message = Column(Text, nullable=True)

    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    received_by_provider_at = Column(TIMESTAMP(timezone=True), nullable=True)
    completed_at = Column(TIMESTAMP(timezone=True), nullable=True)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)

    version = Column(Integer, nullable=False, server_default=text("0"))
