from sqlalchemy import TIMESTAMP, Boolean, Column, Date, ForeignKey, Integer, String, true

from booking_settlement.models.base import Base


class BlockedRange(Base):
    """Owner-declared [start_date, end_date) during which a resource cannot be booked."""

    __tablename__ = "blocked_ranges"

    id = Column(Integer, primary_key=True, autoincrement=True)
    resource_id = Column(
        String(64), ForeignKey("resources.id", ondelete="CASCADE"), nullable=False, index=True
    )
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    is_active = Column(Boolean, nullable=False, server_default=true())
    reason = Column(String(255), nullable=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
