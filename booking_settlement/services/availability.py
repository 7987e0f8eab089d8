"""
Date-interval conflict detection for reservations.

Every interval is half-open: [start, end). Two intervals conflict iff
``s < end and e > start``; the same predicate is used in SQL and in Python.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

import structlog
from sqlalchemy.engine import Connection, Engine

from booking_settlement.db.readers.reservations import (
    find_overlapping_blocked_ranges,
    find_overlapping_reservations,
)
from booking_settlement.db.readers.resources import get_resource
from booking_settlement.errors import ResourceNotFound, ValidationError

logger = structlog.get_logger(__name__)


@dataclass
class AvailabilityResult:
    available: bool
    conflicts: list[dict[str, Any]] = field(default_factory=list)
    blocked_ranges: list[dict[str, Any]] = field(default_factory=list)
    reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "available": self.available,
            "reason": self.reason,
            "conflicts": [summarize_reservation(r) for r in self.conflicts],
            "blocked_ranges": [summarize_blocked_range(b) for b in self.blocked_ranges],
        }


def summarize_reservation(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "start_date": row["start_date"].isoformat(),
        "end_date": row["end_date"].isoformat(),
        "status": row["status"],
    }


def summarize_blocked_range(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "start_date": row["start_date"].isoformat(),
        "end_date": row["end_date"].isoformat(),
        "reason": row.get("reason"),
    }


def intervals_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """True iff half-open [a_start, a_end) and [b_start, b_end) share at least one day."""
    return a_start < b_end and a_end > b_start


def validate_interval(start: date, end: date) -> None:
    """
    Reject empty and inverted intervals.

    Raises:
        ValidationError: if start >= end
    """
    if start >= end:
        raise ValidationError(
            "end date must be after start date",
            start_date=start.isoformat(),
            end_date=end.isoformat(),
        )


def check_availability(
    conn: Connection,
    resource_id: str,
    start: date,
    end: date,
    exclude_reservation_id: Optional[str] = None,
) -> AvailabilityResult:
    """
    Report whether [start, end) is free on a resource.

    Conflicts are never raised; the full set of overlapping active
    reservations and blocked ranges is returned so callers can report it.

    Args:
        conn: Active connection; run inside the writing transaction when the
            answer is used to insert a reservation
        resource_id: Resource to check
        start: First night (inclusive)
        end: Checkout day (exclusive)
        exclude_reservation_id: Reservation to ignore when re-checking its own move

    Returns:
        AvailabilityResult

    Raises:
        ValidationError: if start >= end
        ResourceNotFound: if the resource is unknown to the catalog
    """
    validate_interval(start, end)

    resource = get_resource(conn, resource_id)
    if resource is None:
        raise ResourceNotFound("resource not found", resource_id=resource_id)
    if not resource["is_active"]:
        return AvailabilityResult(available=False, reason="resource_inactive")

    conflicts = find_overlapping_reservations(
        conn, resource_id, start, end, exclude_reservation_id=exclude_reservation_id
    )
    blocked = find_overlapping_blocked_ranges(conn, resource_id, start, end)

    if conflicts or blocked:
        logger.debug(
            "availability_conflict",
            resource_id=resource_id,
            start_date=start.isoformat(),
            end_date=end.isoformat(),
            conflicts=len(conflicts),
            blocked_ranges=len(blocked),
        )
        reason = "reserved" if conflicts else "blocked"
        return AvailabilityResult(
            available=False, conflicts=conflicts, blocked_ranges=blocked, reason=reason
        )

    return AvailabilityResult(available=True)


def is_available(
    engine: Engine,
    resource_id: str,
    start: date,
    end: date,
    exclude_reservation_id: Optional[str] = None,
) -> AvailabilityResult:
    """Read-only availability check on its own connection."""
    with engine.connect() as conn:
        return check_availability(conn, resource_id, start, end, exclude_reservation_id)
