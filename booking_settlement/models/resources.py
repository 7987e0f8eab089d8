"""SQLAlchemy model for the read-only resource catalog snapshot."""

from sqlalchemy import TIMESTAMP, Boolean, Column, Integer, Numeric, String, text, true

from booking_settlement.models.base import Base

RESOURCE_KINDS = ("property", "tour")


class Resource(Base):
    """
    ORM model for bookable resources (properties and tours).

    The catalog service owns these rows; settlement only reads the rate,
    capacity, active flag and the owner/agent identities used for splits.
    For tours the owner is the guide.
    """

    __tablename__ = "resources"

    id = Column(String(64), primary_key=True)
    kind = Column(String(16), nullable=False, server_default=text("'property'"))
    owner_id = Column(String(64), nullable=False, index=True)
    agent_id = Column(String(64), nullable=True)
    nightly_rate = Column(Numeric(12, 2), nullable=False)
    two_night_rate = Column(Numeric(12, 2), nullable=True)
    max_capacity = Column(Integer, nullable=False, server_default=text("1"))
    is_active = Column(Boolean, nullable=False, server_default=true())
    created_at = Column(
        TIMESTAMP(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP")
    )
