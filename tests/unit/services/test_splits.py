"""
Unit tests for wallet distribution split arithmetic.
"""

from __future__ import annotations

import random
from decimal import Decimal

import pytest

from booking_settlement.services.distribution import compute_splits, idempotency_key


def _amounts(total: str, **kwargs: object) -> dict[str, Decimal]:
    return {s.role: s.amount for s in compute_splits(Decimal(total), "host", **kwargs)}


@pytest.mark.unit
def test_property_with_agent_split() -> None:
    """Test the platform / agent / owner split of 1000."""
    assert _amounts("1000", agent_id="agent") == {
        "platform": Decimal("166.70"),
        "agent": Decimal("43.80"),
        "owner": Decimal("789.50"),
    }


@pytest.mark.unit
def test_property_without_agent_gives_agent_share_to_owner() -> None:
    """Test that with no agent the owner receives the combined share."""
    assert _amounts("1000", agent_id=None) == {
        "platform": Decimal("166.70"),
        "owner": Decimal("833.30"),
    }


@pytest.mark.unit
def test_tour_split() -> None:
    """Test that tours split 14% platform and 86% guide."""
    assert _amounts("1000", agent_id="agent", resource_kind="tour") == {
        "platform": Decimal("140.00"),
        "owner": Decimal("860.00"),
    }


@pytest.mark.unit
def test_splits_are_credited_to_the_right_wallets() -> None:
    """Test recipient ids on each split."""
    splits = compute_splits(Decimal("372"), "host", "agent", platform_owner="platform-wallet")

    assert [(s.role, s.owner_id) for s in splits] == [
        ("platform", "platform-wallet"),
        ("agent", "agent"),
        ("owner", "host"),
    ]


@pytest.mark.unit
@pytest.mark.parametrize("agent_id", ["agent", None])
def test_split_sum_within_one_cent_of_total(agent_id: object) -> None:
    """Test that independently rounded shares never drift more than a cent."""
    rng = random.Random(20260118)
    for _ in range(500):
        total = Decimal(rng.randint(1, 500_000)) / 100
        splits = compute_splits(total, "host", agent_id)  # type: ignore[arg-type]

        assert abs(sum(s.amount for s in splits) - total) <= Decimal("0.01")
        assert all(s.amount == s.amount.quantize(Decimal("0.01")) for s in splits)


@pytest.mark.unit
def test_zero_total_produces_no_splits() -> None:
    """Test that nothing is credited for a free reservation."""
    assert compute_splits(Decimal("0"), "host", "agent") == []


@pytest.mark.unit
def test_idempotency_key_is_per_reservation_and_role() -> None:
    """Test the ledger idempotency key format."""
    assert idempotency_key("r-1", "owner") == "distribution:r-1:owner"
    assert idempotency_key("r-1", "owner") != idempotency_key("r-1", "agent")
