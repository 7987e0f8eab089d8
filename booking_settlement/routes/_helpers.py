"""
Internal helper functions for route handlers.

Converts domain errors into HTTP errors and rows into JSON-safe dicts.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from fastapi import HTTPException

from booking_settlement.errors import BookingSettlementError


def http_error(error: BookingSettlementError) -> HTTPException:
    """
    Map a domain error to an HTTPException.

    The body carries ``error`` (validation, conflict, not_found, gateway_*,
    dependency) so clients can tell retryable failures from bad input.

    Example:
        >>> http_error(ReservationConflict("taken", conflicts=[...])).detail
        {'detail': 'taken', 'error': 'conflict', 'conflicts': [...], 'blocked_ranges': []}
    """
    return HTTPException(status_code=error.status_code, detail=serialize(error.to_dict()))


def serialize(value: Any) -> Any:
    """Recursively render Decimals as strings and dates as ISO 8601."""
    if isinstance(value, dict):
        return {key.rstrip("_"): serialize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize(item) for item in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value
