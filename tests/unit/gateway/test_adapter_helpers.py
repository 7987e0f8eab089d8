"""
Unit tests for gateway request building and status parsing helpers.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from booking_settlement.errors import ValidationError
from booking_settlement.gateway.adapter import (
    build_metadata,
    format_phone_number,
    generate_transaction_id,
    parse_gateway_status,
    parse_timestamp,
)


@pytest.mark.unit
@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("+250 788-123-456", "250788123456"),
        ("0788123456", "250788123456"),
        ("788123456", "250788123456"),
        ("250788123456", "250788123456"),
    ],
)
def test_format_phone_number(raw: str, expected: str) -> None:
    """Test that numbers are normalised to digits with the country prefix."""
    assert format_phone_number(raw) == expected


@pytest.mark.unit
def test_format_phone_number_requires_digits() -> None:
    """Test that a number with no digits is rejected."""
    with pytest.raises(ValidationError):
        format_phone_number("+ -")


@pytest.mark.unit
def test_build_metadata_flags_identity_fields() -> None:
    """Test that user identifiers are marked PII and empty values dropped."""
    metadata = build_metadata({"internalReference": "r-1", "userId": "u-1", "note": None})

    assert [(m.fieldName, m.isPII) for m in metadata] == [
        ("internalReference", False),
        ("userId", True),
    ]


@pytest.mark.unit
def test_transaction_ids_are_unique() -> None:
    """Test that generated ids never repeat."""
    ids = {generate_transaction_id() for _ in range(1000)}

    assert len(ids) == 1000


@pytest.mark.unit
def test_parse_timestamp() -> None:
    """Test that provider timestamps become aware UTC datetimes."""
    assert parse_timestamp("2026-01-05T10:00:00Z") == datetime(
        2026, 1, 5, 10, 0, tzinfo=timezone.utc
    )
    assert parse_timestamp("not a date") is None
    assert parse_timestamp(None) is None


@pytest.mark.unit
def test_parse_gateway_status_completed() -> None:
    """Test extraction of ids and amount from a completed deposit."""
    status = parse_gateway_status(
        "d-1",
        {
            "depositId": "d-1",
            "status": "COMPLETED",
            "depositedAmount": "130650",
            "currency": "RWF",
            "correspondent": "MTN_MOMO_RWA",
            "receivedByPawaPay": "2026-01-05T10:00:00Z",
            "correspondentIds": {
                "PROVIDER_TRANSACTION_ID": "prov-9",
                "FINANCIAL_TRANSACTION_ID": "fin-9",
            },
        },
    )

    assert status.status == "COMPLETED"
    assert status.provider_transaction_id == "prov-9"
    assert status.financial_transaction_id == "fin-9"
    assert status.amount == "130650"
    assert status.failure is None


@pytest.mark.unit
def test_parse_gateway_status_failure_reason() -> None:
    """Test that failure details are kept for a failed transaction."""
    status = parse_gateway_status(
        "d-2",
        {
            "status": "FAILED",
            "failureReason": {
                "failureCode": "INSUFFICIENT_BALANCE",
                "failureMessage": "Not enough funds",
            },
        },
    )

    assert status.status == "FAILED"
    assert status.failure is not None
    assert status.failure.failureCode == "INSUFFICIENT_BALANCE"
