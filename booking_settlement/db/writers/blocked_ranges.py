from datetime import date
from typing import Optional

from sqlalchemy import insert, update
from sqlalchemy.engine import Connection

from booking_settlement.models.blocked_ranges import BlockedRange
from booking_settlement.utils.datetime import utc_now


def insert_blocked_range(
    conn: Connection,
    resource_id: str,
    start: date,
    end: date,
    reason: Optional[str] = None,
    created_by: Optional[str] = None,
) -> int:
    """
    Block [start, end) on a resource.

    Returns:
        int: ID of the new blocked range
    """
    result = conn.execute(
        insert(BlockedRange).values(
            resource_id=resource_id,
            start_date=start,
            end_date=end,
            is_active=True,
            reason=reason,
            created_by=created_by,
            created_at=utc_now(),
        )
    )
    return int(result.inserted_primary_key[0])


def deactivate_blocked_range(conn: Connection, blocked_range_id: int) -> bool:
    """Soft-delete a blocked range. Returns False if it did not exist or was already inactive."""
    result = conn.execute(
        update(BlockedRange)
        .where(BlockedRange.id == blocked_range_id)
        .where(BlockedRange.is_active.is_(True))
        .values(is_active=False)
    )
    return result.rowcount == 1
