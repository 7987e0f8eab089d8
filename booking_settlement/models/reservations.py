# models/reservations.py

from sqlalchemy import (
    TIMESTAMP,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    false,
    text,
)

from booking_settlement.models.base import Base, one_of

RESERVATION_STATUSES = (
    "pending",
    "confirmed",
    "cancelled",
    "completed",
    "refunded",
    "disputed",
    "no_show",
)
PAYMENT_STATUSES = ("pending", "processing", "completed", "failed", "cancelled", "refunded")

# Reservations in these states hold their nights
ACTIVE_STATUSES = ("pending", "confirmed")


class Reservation(Base):
    """
    ORM model for a requester's claim on a resource for [start_date, end_date).

    ``status`` is the booking lifecycle; ``payment_status`` is driven only by
    reconciliation. ``wallet_distributed`` flips to true once, through a
    conditional update, when the payment has been split into wallets.
    """

    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint(one_of("status", RESERVATION_STATUSES), name="status"),
        CheckConstraint(one_of("payment_status", PAYMENT_STATUSES), name="payment_status"),
        CheckConstraint("end_date > start_date", name="interval"),
    )

    id = Column(String(36), primary_key=True)
    resource_id = Column(
        String(64), ForeignKey("resources.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    requester_id = Column(String(64), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    guests = Column(Integer, nullable=False)

    nights = Column(Integer, nullable=False)
    subtotal = Column(Numeric(12, 2), nullable=False)
    cleaning_fee = Column(Numeric(12, 2), nullable=False)
    service_fee = Column(Numeric(12, 2), nullable=False)
    taxes = Column(Numeric(12, 2), nullable=False)
    total_price = Column(Numeric(12, 2), nullable=False)

    status = Column(String(16), nullable=False, server_default=text("'pending'"), index=True)
    payment_status = Column(String(16), nullable=False, server_default=text("'pending'"))

    wallet_distributed = Column(Boolean, nullable=False, server_default=false())
    wallet_distributed_at = Column(TIMESTAMP(timezone=True), nullable=True)
    distribution_attempts = Column(Integer, nullable=False, server_default=text("0"))
    distribution_error = Column(Text, nullable=True)

    cancelled_by = Column(String(16), nullable=True)
    refund_amount = Column(Numeric(12, 2), nullable=True)

    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)


class ReservationNight(Base):
    """
    One row per night held by an active reservation.

    The composite primary key makes two active reservations holding the same
    night on the same resource impossible, whatever the isolation level.
    Rows are deleted when the reservation leaves ACTIVE_STATUSES.
    """

    __tablename__ = "reservation_nights"

    resource_id = Column(String(64), primary_key=True)
    night = Column(Date, primary_key=True)
    reservation_id = Column(
        String(36),
        ForeignKey("reservations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
