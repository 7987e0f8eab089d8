"""
Integration tests for availability checks and the reservation lifecycle.
"""

from __future__ import annotations

import random
from datetime import date
from decimal import Decimal
from typing import Any, Callable
from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.engine import Engine

from booking_settlement.db.readers.reservations import get_reservation
from booking_settlement.errors import (
    ReservationConflict,
    ReservationNotFound,
    ResourceNotFound,
    ValidationError,
)
from booking_settlement.models.reservations import ACTIVE_STATUSES, Reservation, ReservationNight
from booking_settlement.services import booking
from booking_settlement.services.availability import (
    AvailabilityResult,
    intervals_overlap,
    is_available,
)

FutureFn = Callable[[int], date]


def _book(engine: Engine, resource_id: str, future: FutureFn, start: int, end: int) -> dict:
    return booking.create_reservation(
        engine,
        resource_id=resource_id,
        requester_id="guest-1",
        start=future(start),
        end=future(end),
        guests=1,
    )


@pytest.mark.integration
def test_create_reservation_prices_and_stores_pending(
    engine: Engine, make_resource: Callable[..., str], future: FutureFn
) -> None:
    """Test that a new reservation is pending/pending with the quoted price."""
    resource_id = make_resource(nightly_rate="100.00")

    quote = booking.quote(engine, resource_id, future(10), future(13))
    reservation = _book(engine, resource_id, future, 10, 13)

    assert reservation["status"] == "pending"
    assert reservation["payment_status"] == "pending"
    assert reservation["wallet_distributed"] is False
    assert reservation["nights"] == 3
    assert reservation["total_price"] == Decimal("372.00") == quote.total


@pytest.mark.integration
def test_overlapping_reservation_rejected_with_conflicts(
    engine: Engine, make_resource: Callable[..., str], future: FutureFn
) -> None:
    """Test that overlap is refused and the existing booking is reported."""
    resource_id = make_resource()
    first = _book(engine, resource_id, future, 10, 13)

    with pytest.raises(ReservationConflict) as exc_info:
        _book(engine, resource_id, future, 12, 15)

    assert [c["id"] for c in exc_info.value.conflicts] == [first["id"]]


@pytest.mark.integration
def test_back_to_back_reservations_allowed(
    engine: Engine, make_resource: Callable[..., str], future: FutureFn
) -> None:
    """Test that checkout day can be the next check-in day."""
    resource_id = make_resource()
    _book(engine, resource_id, future, 10, 13)

    second = _book(engine, resource_id, future, 13, 15)

    assert second["status"] == "pending"


@pytest.mark.integration
def test_blocked_range_prevents_booking(
    engine: Engine, make_resource: Callable[..., str], future: FutureFn
) -> None:
    """Test that owner-blocked dates cannot be booked until unblocked."""
    resource_id = make_resource()
    blocked_id = booking.block_dates(engine, resource_id, future(20), future(25), reason="repairs")

    result = is_available(engine, resource_id, future(22), future(23))
    assert result.available is False
    assert result.reason == "blocked"
    assert [b["id"] for b in result.blocked_ranges] == [blocked_id]

    with pytest.raises(ReservationConflict) as exc_info:
        _book(engine, resource_id, future, 24, 27)
    assert exc_info.value.blocked_ranges[0]["reason"] == "repairs"

    booking.unblock_dates(engine, blocked_id)
    assert is_available(engine, resource_id, future(22), future(23)).available is True


@pytest.mark.integration
def test_cannot_block_dates_held_by_reservation(
    engine: Engine, make_resource: Callable[..., str], future: FutureFn
) -> None:
    """Test that blocking never overrides an active reservation."""
    resource_id = make_resource()
    _book(engine, resource_id, future, 10, 13)

    with pytest.raises(ReservationConflict):
        booking.block_dates(engine, resource_id, future(12), future(20))


@pytest.mark.integration
def test_invalid_requests_rejected(
    engine: Engine, make_resource: Callable[..., str], future: FutureFn
) -> None:
    """Test past dates, inverted intervals, capacity and inactive resources."""
    resource_id = make_resource(max_capacity=2)
    inactive_id = make_resource(is_active=False)

    with pytest.raises(ValidationError):
        _book(engine, resource_id, future, -2, 1)
    with pytest.raises(ValidationError):
        _book(engine, resource_id, future, 10, 10)
    with pytest.raises(ValidationError):
        booking.create_reservation(
            engine, resource_id, "guest-1", future(10), future(12), guests=3
        )
    with pytest.raises(ValidationError):
        _book(engine, inactive_id, future, 10, 12)
    with pytest.raises(ResourceNotFound):
        _book(engine, "no-such-resource", future, 10, 12)


@pytest.mark.integration
def test_race_loser_gets_conflict_naming_winner(
    engine: Engine, make_resource: Callable[..., str], future: FutureFn
) -> None:
    """
    Test the store-level guard.

    The availability check is forced to pass, as if two requests had checked
    before either inserted; the night claim still rejects the second insert.
    """
    resource_id = make_resource()
    winner = _book(engine, resource_id, future, 10, 14)

    with patch(
        "booking_settlement.services.booking.check_availability",
        return_value=AvailabilityResult(available=True),
    ):
        with pytest.raises(ReservationConflict) as exc_info:
            _book(engine, resource_id, future, 12, 16)

    assert [c["id"] for c in exc_info.value.conflicts] == [winner["id"]]
    with engine.connect() as conn:
        count = len(conn.execute(select(Reservation.id)).all())
    assert count == 1


@pytest.mark.integration
def test_cancelled_reservation_frees_its_dates(
    engine: Engine, make_resource: Callable[..., str], future: FutureFn
) -> None:
    """Test that cancelling releases the nights for a new booking."""
    resource_id = make_resource()
    first = _book(engine, resource_id, future, 10, 13)

    cancelled, refund = booking.cancel_reservation(engine, first["id"], "requester")

    assert cancelled["status"] == "cancelled"
    assert cancelled["payment_status"] == "cancelled"
    assert refund == Decimal("0.00")
    assert _book(engine, resource_id, future, 10, 13)["status"] == "pending"


@pytest.mark.integration
def test_cancel_paid_reservation_computes_refund(
    engine: Engine, make_reservation: Callable[..., dict[str, Any]]
) -> None:
    """Test that a paid requester cancellation well ahead refunds half."""
    reservation = make_reservation(start_in=10, paid=True)

    cancelled, refund = booking.cancel_reservation(engine, reservation["id"], "requester")

    assert refund == Decimal("186.00")
    assert cancelled["refund_amount"] == Decimal("186.00")
    assert cancelled["cancelled_by"] == "requester"
    assert cancelled["payment_status"] == "completed"


@pytest.mark.integration
def test_cancel_twice_rejected(
    engine: Engine, make_reservation: Callable[..., dict[str, Any]]
) -> None:
    """Test that only active reservations can be cancelled."""
    reservation = make_reservation()
    booking.cancel_reservation(engine, reservation["id"], "owner")

    with pytest.raises(ValidationError):
        booking.cancel_reservation(engine, reservation["id"], "owner")


@pytest.mark.integration
def test_reschedule_moves_nights_and_reprices(
    engine: Engine, make_resource: Callable[..., str], future: FutureFn
) -> None:
    """Test that a reservation may overlap its own old dates when moving."""
    resource_id = make_resource(nightly_rate="100.00")
    reservation = _book(engine, resource_id, future, 10, 13)

    moved = booking.reschedule_reservation(engine, reservation["id"], future(11), future(15))

    assert moved["start_date"] == future(11)
    assert moved["nights"] == 4
    assert moved["total_price"] > reservation["total_price"]
    with engine.connect() as conn:
        nights = conn.execute(
            select(ReservationNight.night).where(
                ReservationNight.reservation_id == reservation["id"]
            )
        ).scalars().all()
    assert sorted(nights) == [future(11), future(12), future(13), future(14)]
    assert is_available(engine, resource_id, future(10), future(11)).available is True


@pytest.mark.integration
def test_reschedule_into_other_reservation_rejected(
    engine: Engine, make_resource: Callable[..., str], future: FutureFn
) -> None:
    """Test that moving onto another booking's nights is a conflict."""
    resource_id = make_resource()
    first = _book(engine, resource_id, future, 10, 13)
    second = _book(engine, resource_id, future, 20, 23)

    with pytest.raises(ReservationConflict) as exc_info:
        booking.reschedule_reservation(engine, second["id"], future(12), future(14))

    assert [c["id"] for c in exc_info.value.conflicts] == [first["id"]]


@pytest.mark.integration
def test_random_booking_sequence_never_overlaps(
    engine: Engine, make_resource: Callable[..., str], future: FutureFn
) -> None:
    """Test that no sequence of requests leaves two active reservations overlapping."""
    rng = random.Random(1234)
    resource_id = make_resource()

    for _ in range(60):
        start = rng.randint(1, 60)
        try:
            reservation = _book(engine, resource_id, future, start, start + rng.randint(1, 6))
        except ReservationConflict:
            continue
        if rng.random() < 0.2:
            booking.cancel_reservation(engine, reservation["id"], "owner")

    with engine.connect() as conn:
        active = conn.execute(
            select(Reservation.start_date, Reservation.end_date).where(
                Reservation.status.in_(ACTIVE_STATUSES)
            )
        ).all()

    assert active
    for i, a in enumerate(active):
        for b in active[i + 1 :]:
            assert not intervals_overlap(a.start_date, a.end_date, b.start_date, b.end_date)


@pytest.mark.integration
def test_unknown_reservation_not_found(engine: Engine, future: FutureFn) -> None:
    """Test that cancel and reschedule name the missing reservation."""
    with pytest.raises(ReservationNotFound):
        booking.cancel_reservation(engine, "missing", "owner")
    with pytest.raises(ReservationNotFound):
        booking.reschedule_reservation(engine, "missing", future(10), future(12))


@pytest.mark.integration
def test_cancel_raises_not_found_when_row_vanishes(
    engine: Engine, make_reservation: Callable[..., dict[str, Any]]
) -> None:
    """Test that a reservation gone before the re-read raises instead of returning None."""
    reservation = make_reservation()
    with engine.connect() as conn:
        stored = get_reservation(conn, reservation["id"])

    with patch(
        "booking_settlement.services.booking.get_reservation", side_effect=[stored, None]
    ):
        with pytest.raises(ReservationNotFound) as excinfo:
            booking.cancel_reservation(engine, reservation["id"], "owner")

    assert excinfo.value.details == {"reservation_id": reservation["id"]}
