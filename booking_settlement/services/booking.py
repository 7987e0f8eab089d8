"""
Reservation lifecycle: create, reschedule, cancel, and owner blocked ranges.

Creation runs the availability check and the insert in one transaction with
the resource row locked. The reservation_nights primary key backs this up at
the store level: if two requests still race, the loser's insert fails with an
IntegrityError that is reported as a conflict naming the winner.
"""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Optional

import structlog
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from booking_settlement.db.readers.reservations import find_night_holders, get_reservation
from booking_settlement.db.readers.resources import get_resource
from booking_settlement.db.writers.blocked_ranges import (
    deactivate_blocked_range,
    insert_blocked_range,
)
from booking_settlement.db.writers.reservations import (
    insert_reservation,
    nights_between,
    update_reservation_dates,
    update_reservation_status,
)
from booking_settlement.errors import (
    NotFoundError,
    ReservationConflict,
    ReservationNotFound,
    ResourceNotFound,
    ValidationError,
)
from booking_settlement.metrics import reservation_conflicts, reservations_created
from booking_settlement.models.reservations import ACTIVE_STATUSES
from booking_settlement.pricing.calculator import PriceBreakdown, price_breakdown, refund_amount
from booking_settlement.services.availability import (
    AvailabilityResult,
    check_availability,
    summarize_blocked_range,
    summarize_reservation,
    validate_interval,
)
from booking_settlement.utils.datetime import utc_today

logger = structlog.get_logger(__name__)


def _price_columns(price: PriceBreakdown) -> dict[str, Any]:
    return {
        "nights": price.nights,
        "subtotal": price.subtotal,
        "cleaning_fee": price.cleaning_fee,
        "service_fee": price.service_fee,
        "taxes": price.taxes,
        "total_price": price.total,
    }


def _quote_for(resource: dict[str, Any], start: date, end: date) -> PriceBreakdown:
    return price_breakdown(
        resource["nightly_rate"], start, end, two_night_rate=resource["two_night_rate"]
    )


def _raise_conflict(result: AvailabilityResult, resource_id: str) -> None:
    reservation_conflicts.labels(source="check").inc()
    if result.reason == "resource_inactive":
        raise ValidationError("resource is not accepting reservations", resource_id=resource_id)
    raise ReservationConflict(
        "requested dates are not available",
        conflicts=[summarize_reservation(r) for r in result.conflicts],
        blocked_ranges=[summarize_blocked_range(b) for b in result.blocked_ranges],
    )


def _store_conflict(
    engine: Engine, resource_id: str, start: date, end: date, exclude: Optional[str] = None
) -> ReservationConflict:
    """Build the conflict for an insert that lost the night-claim race."""
    reservation_conflicts.labels(source="store").inc()
    with engine.connect() as conn:
        holders = find_night_holders(conn, resource_id, nights_between(start, end))
        winners = [
            get_reservation(conn, holder) for holder in holders if holder != exclude
        ]
    conflicts = [summarize_reservation(w) for w in winners if w is not None]
    logger.warning(
        "reservation_store_conflict",
        resource_id=resource_id,
        start_date=start.isoformat(),
        end_date=end.isoformat(),
        conflicting_ids=[c["id"] for c in conflicts],
    )
    return ReservationConflict("requested dates are not available", conflicts=conflicts)


def quote(engine: Engine, resource_id: str, start: date, end: date) -> PriceBreakdown:
    """Price a stay exactly as create_reservation would."""
    validate_interval(start, end)
    with engine.connect() as conn:
        resource = get_resource(conn, resource_id)
    if resource is None:
        raise ResourceNotFound("resource not found", resource_id=resource_id)
    return _quote_for(resource, start, end)


def create_reservation(
    engine: Engine,
    resource_id: str,
    requester_id: str,
    start: date,
    end: date,
    guests: int,
    today: Optional[date] = None,
) -> dict[str, Any]:
    """
    Book [start, end) on a resource for a requester.

    The reservation starts as status=pending, payment_status=pending.

    Args:
        engine: SQLAlchemy Engine
        resource_id: Resource to book
        requester_id: Booking user
        start: First night
        end: Checkout day (exclusive)
        guests: Number of guests/participants
        today: Reference date for "not in the past" (defaults to UTC today)

    Returns:
        dict[str, Any]: The stored reservation row

    Raises:
        ValidationError: bad interval, guest count or inactive resource
        ResourceNotFound: unknown resource
        ReservationConflict: overlap with an active reservation or blocked range
    """
    validate_interval(start, end)
    if start < (today or utc_today()):
        raise ValidationError("start date is in the past", start_date=start.isoformat())
    if guests < 1:
        raise ValidationError("at least one guest is required", guests=guests)

    reservation_id = str(uuid.uuid4())

    try:
        with engine.begin() as conn:
            resource = get_resource(conn, resource_id, for_update=True)
            if resource is None:
                raise ResourceNotFound("resource not found", resource_id=resource_id)
            if guests > resource["max_capacity"]:
                raise ValidationError(
                    "guest count exceeds resource capacity",
                    guests=guests,
                    max_capacity=resource["max_capacity"],
                )

            availability = check_availability(conn, resource_id, start, end)
            if not availability.available:
                _raise_conflict(availability, resource_id)

            price = _quote_for(resource, start, end)
            insert_reservation(
                conn,
                {
                    "id": reservation_id,
                    "resource_id": resource_id,
                    "requester_id": requester_id,
                    "start_date": start,
                    "end_date": end,
                    "guests": guests,
                    "status": "pending",
                    "payment_status": "pending",
                    "wallet_distributed": False,
                    "distribution_attempts": 0,
                    **_price_columns(price),
                },
            )
            reservation = get_reservation(conn, reservation_id)
    except IntegrityError:
        raise _store_conflict(engine, resource_id, start, end)

    reservations_created.labels(resource_kind=resource["kind"]).inc()
    logger.info(
        "reservation_created",
        reservation_id=reservation_id,
        resource_id=resource_id,
        start_date=start.isoformat(),
        end_date=end.isoformat(),
        total=str(price.total),
    )
    if reservation is None:
        raise ReservationNotFound("reservation not found", reservation_id=reservation_id)
    return reservation


def reschedule_reservation(
    engine: Engine,
    reservation_id: str,
    start: date,
    end: date,
    today: Optional[date] = None,
) -> dict[str, Any]:
    """
    Move an unpaid reservation to new dates and reprice it.

    The reservation's own nights are ignored by the availability check.

    Raises:
        ReservationNotFound: unknown reservation
        ValidationError: bad interval, or payment already started
        ReservationConflict: new dates overlap another reservation or block
    """
    validate_interval(start, end)
    if start < (today or utc_today()):
        raise ValidationError("start date is in the past", start_date=start.isoformat())

    try:
        with engine.begin() as conn:
            reservation = get_reservation(conn, reservation_id, for_update=True)
            if reservation is None:
                raise ReservationNotFound("reservation not found", reservation_id=reservation_id)
            if reservation["status"] != "pending" or reservation["payment_status"] != "pending":
                raise ValidationError(
                    "only unpaid pending reservations can be rescheduled",
                    status=reservation["status"],
                    payment_status=reservation["payment_status"],
                )

            resource = get_resource(conn, reservation["resource_id"], for_update=True)
            if resource is None:
                raise ResourceNotFound(
                    "resource not found", resource_id=reservation["resource_id"]
                )

            availability = check_availability(
                conn,
                reservation["resource_id"],
                start,
                end,
                exclude_reservation_id=reservation_id,
            )
            if not availability.available:
                _raise_conflict(availability, reservation["resource_id"])

            price = _quote_for(resource, start, end)
            update_reservation_dates(conn, reservation, start, end, _price_columns(price))
            updated = get_reservation(conn, reservation_id)
    except IntegrityError:
        raise _store_conflict(
            engine, reservation["resource_id"], start, end, exclude=reservation_id
        )

    logger.info(
        "reservation_rescheduled",
        reservation_id=reservation_id,
        start_date=start.isoformat(),
        end_date=end.isoformat(),
        total=str(price.total),
    )
    if updated is None:
        raise ReservationNotFound("reservation not found", reservation_id=reservation_id)
    return updated


def cancel_reservation(
    engine: Engine,
    reservation_id: str,
    cancelled_by: str,
    as_of: Optional[date] = None,
) -> tuple[dict[str, Any], Decimal]:
    """
    Cancel an active reservation and compute the refund owed.

    Unpaid reservations get payment_status=cancelled. For paid ones the
    payment status stays completed until a refund is reconciled.

    Returns:
        tuple: (updated reservation row, refund amount)

    Raises:
        ReservationNotFound: unknown reservation
        ValidationError: reservation not active or unknown role
    """
    with engine.begin() as conn:
        reservation = get_reservation(conn, reservation_id, for_update=True)
        if reservation is None:
            raise ReservationNotFound("reservation not found", reservation_id=reservation_id)
        if reservation["status"] not in ACTIVE_STATUSES:
            raise ValidationError(
                "reservation is not active", status=reservation["status"]
            )

        paid = reservation["payment_status"] == "completed"
        refund = (
            refund_amount(
                reservation["total_price"],
                reservation["start_date"],
                cancelled_by,
                as_of or utc_today(),
            )
            if paid
            else Decimal("0.00")
        )

        update_reservation_status(
            conn,
            reservation_id,
            status="cancelled",
            payment_status=None if paid else "cancelled",
            cancelled_by=cancelled_by,
            refund_amount=refund,
        )
        updated = get_reservation(conn, reservation_id)

    logger.info(
        "reservation_cancelled",
        reservation_id=reservation_id,
        cancelled_by=cancelled_by,
        refund_amount=str(refund),
    )
    if updated is None:
        raise ReservationNotFound("reservation not found", reservation_id=reservation_id)
    return updated, refund


def block_dates(
    engine: Engine,
    resource_id: str,
    start: date,
    end: date,
    reason: Optional[str] = None,
    created_by: Optional[str] = None,
) -> int:
    """
    Block [start, end) on a resource.

    Dates already held by an active reservation cannot be blocked.

    Returns:
        int: ID of the blocked range
    """
    validate_interval(start, end)
    with engine.begin() as conn:
        if get_resource(conn, resource_id, for_update=True) is None:
            raise ResourceNotFound("resource not found", resource_id=resource_id)

        availability = check_availability(conn, resource_id, start, end)
        if availability.conflicts:
            raise ReservationConflict(
                "dates overlap active reservations",
                conflicts=[summarize_reservation(r) for r in availability.conflicts],
            )

        blocked_range_id = insert_blocked_range(
            conn, resource_id, start, end, reason=reason, created_by=created_by
        )

    logger.info(
        "dates_blocked",
        resource_id=resource_id,
        blocked_range_id=blocked_range_id,
        start_date=start.isoformat(),
        end_date=end.isoformat(),
    )
    return blocked_range_id


def unblock_dates(engine: Engine, blocked_range_id: int) -> None:
    """
    Deactivate a blocked range.

    Raises:
        NotFoundError: no active blocked range with that ID
    """
    with engine.begin() as conn:
        if not deactivate_blocked_range(conn, blocked_range_id):
            raise NotFoundError(
                "active blocked range not found", blocked_range_id=blocked_range_id
            )
    logger.info("dates_unblocked", blocked_range_id=blocked_range_id)
