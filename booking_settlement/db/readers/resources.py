from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.engine import Connection

from booking_settlement.models.resources import Resource


def get_resource(
    conn: Connection, resource_id: str, for_update: bool = False
) -> Optional[dict[str, Any]]:
    """
    Fetch a catalog resource.

    Args:
        conn (Connection): An active SQLAlchemy database connection.
        resource_id (str): Resource ID.
        for_update (bool): Lock the row until the surrounding transaction ends.
            Reservation writes lock the resource to serialize bookings per resource.

    Returns:
        Optional[dict[str, Any]]: Resource row or None if not found
    """
    stmt = select(Resource.__table__).where(Resource.id == resource_id)
    if for_update:
        stmt = stmt.with_for_update()
    row = conn.execute(stmt).mappings().fetchone()
    return dict(row) if row else None
