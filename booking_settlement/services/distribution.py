"""
Wallet distribution: split a paid reservation's total across platform, agent
and owner wallets exactly once.

The reservation row is locked, ``wallet_distributed`` is flipped with a
compare-and-set update and every credit is appended to the ledger in the same
transaction. Either all splits land together with the flag, or none do and the
failure is recorded on the reservation for a later retry. Ledger entries carry
``distribution:<reservation_id>:<role>`` as a unique idempotency key, so even
a retry racing a stale flag cannot credit a recipient twice.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Any, Optional

import structlog
from sqlalchemy.engine import Engine

from booking_settlement.config import (
    DISTRIBUTION_WINDOW_DAYS,
    PLATFORM_WALLET_OWNER,
    SETTLEMENT_CURRENCY,
)
from booking_settlement.db.readers.reservations import (
    find_undistributed_reservations,
    get_reservation,
)
from booking_settlement.db.readers.resources import get_resource
from booking_settlement.db.writers.reservations import (
    claim_distribution,
    record_distribution_failure,
)
from booking_settlement.db.writers.wallets import CREDIT, apply_wallet_transaction
from booking_settlement.errors import ResourceNotFound
from booking_settlement.metrics import distributions, wallet_credits
from booking_settlement.utils.datetime import utc_now
from booking_settlement.utils.money import Number, round_cents, to_decimal

logger = structlog.get_logger(__name__)

PLATFORM = "platform"
AGENT = "agent"
OWNER = "owner"

# Property bookings
PLATFORM_SHARE = Decimal("0.1667")
AGENT_SHARE = Decimal("0.0438")
OWNER_SHARE_WITH_AGENT = Decimal("0.7895")
OWNER_SHARE_WITHOUT_AGENT = Decimal("0.8333")

# Tour bookings (the owner is the guide)
TOUR_PLATFORM_SHARE = Decimal("0.14")
TOUR_GUIDE_SHARE = Decimal("0.86")

LEDGER_LABELS = {
    PLATFORM: "PLATFORM_FEE",
    AGENT: "COMMISSION_EARNED",
    OWNER: "PAYMENT_RECEIVED",
}

# Reservations whose payment may be split into wallets
DISTRIBUTABLE_STATUSES = ("confirmed", "completed")

DISTRIBUTED = "distributed"
ALREADY_DISTRIBUTED = "already_distributed"
NOT_PAID = "not_paid"
NOT_ACTIVE = "not_active"
NOT_FOUND = "not_found"
ERROR = "error"


@dataclass(frozen=True)
class Split:
    role: str
    owner_id: str
    amount: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "owner_id": self.owner_id, "amount": str(self.amount)}


@dataclass
class DistributionResult:
    reservation_id: str
    success: bool
    reason: str
    splits: list[Split] = field(default_factory=list)
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reservation_id": self.reservation_id,
            "success": self.success,
            "reason": self.reason,
            "splits": [s.to_dict() for s in self.splits],
            "error": self.error,
        }


@dataclass
class BatchDistributionResult:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    details: list[DistributionResult] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "details": [d.to_dict() for d in self.details],
        }


def compute_splits(
    total: Number,
    owner_id: str,
    agent_id: Optional[str] = None,
    platform_owner: str = PLATFORM_WALLET_OWNER,
    resource_kind: str = "property",
) -> list[Split]:
    """
    Split a total across recipients, each share rounded half-up to cents.

    Shares are rounded independently, so their sum may differ from the total
    by one cent. Zero amounts are dropped.

    Example:
        >>> [str(s.amount) for s in compute_splits(Decimal("1000"), "host", "agent")]
        ['166.70', '43.80', '789.50']
    """
    amount = to_decimal(total)

    if resource_kind == "tour":
        shares = [
            (PLATFORM, platform_owner, TOUR_PLATFORM_SHARE),
            (OWNER, owner_id, TOUR_GUIDE_SHARE),
        ]
    elif agent_id:
        shares = [
            (PLATFORM, platform_owner, PLATFORM_SHARE),
            (AGENT, agent_id, AGENT_SHARE),
            (OWNER, owner_id, OWNER_SHARE_WITH_AGENT),
        ]
    else:
        shares = [
            (PLATFORM, platform_owner, PLATFORM_SHARE),
            (OWNER, owner_id, OWNER_SHARE_WITHOUT_AGENT),
        ]

    splits = [
        Split(role, recipient, round_cents(amount * share)) for role, recipient, share in shares
    ]
    return [s for s in splits if s.amount > 0]


def idempotency_key(reservation_id: str, role: str) -> str:
    return f"distribution:{reservation_id}:{role}"


class Distributor:
    """
    Applies wallet distribution for paid reservations.

    Example:
        >>> result = Distributor(engine).distribute(reservation_id)
        >>> result.reason
        'distributed'
    """

    def __init__(
        self,
        engine: Engine,
        platform_owner: str = PLATFORM_WALLET_OWNER,
        currency: str = SETTLEMENT_CURRENCY,
    ):
        self.engine = engine
        self.platform_owner = platform_owner
        self.currency = currency

    def distribute(self, reservation_id: str) -> DistributionResult:
        """
        Credit each recipient's wallet for a completed reservation.

        Returns:
            DistributionResult: success with reason "distributed", or a no-op
                with "already_distributed", "not_paid", "not_active" or "not_found",
                or a failure with "error" after the attempt was recorded
        """
        log = logger.bind(reservation_id=reservation_id)

        try:
            with self.engine.begin() as conn:
                reservation = get_reservation(conn, reservation_id, for_update=True)
                if reservation is None:
                    return self._skip(reservation_id, NOT_FOUND)
                if reservation["wallet_distributed"]:
                    return self._skip(reservation_id, ALREADY_DISTRIBUTED)
                if reservation["payment_status"] != "completed":
                    return self._skip(reservation_id, NOT_PAID)
                if reservation["status"] not in DISTRIBUTABLE_STATUSES:
                    return self._skip(reservation_id, NOT_ACTIVE)

                resource = get_resource(conn, reservation["resource_id"])
                if resource is None:
                    raise ResourceNotFound(
                        "resource not found", resource_id=reservation["resource_id"]
                    )

                if not claim_distribution(conn, reservation_id):
                    return self._skip(reservation_id, ALREADY_DISTRIBUTED)

                splits = compute_splits(
                    reservation["total_price"],
                    owner_id=resource["owner_id"],
                    agent_id=resource["agent_id"],
                    platform_owner=self.platform_owner,
                    resource_kind=resource["kind"],
                )
                for split in splits:
                    label = LEDGER_LABELS[split.role]
                    entry = apply_wallet_transaction(
                        conn,
                        owner_id=split.owner_id,
                        direction=CREDIT,
                        amount=split.amount,
                        currency=self.currency,
                        idempotency_key=idempotency_key(reservation_id, split.role),
                        external_reference=reservation_id,
                        description=f"{label} - {reservation_id}",
                    )
                    if entry is not None:
                        wallet_credits.labels(role=split.role).inc()

        except Exception as e:
            log.exception("distribution_failed", error=str(e))
            with self.engine.begin() as conn:
                record_distribution_failure(conn, reservation_id, str(e))
            distributions.labels(reason=ERROR).inc()
            return DistributionResult(reservation_id, success=False, reason=ERROR, error=str(e))

        distributions.labels(reason=DISTRIBUTED).inc()
        log.info(
            "distribution_completed",
            total=str(reservation["total_price"]),
            splits=[s.to_dict() for s in splits],
        )
        return DistributionResult(reservation_id, success=True, reason=DISTRIBUTED, splits=splits)

    def _skip(self, reservation_id: str, reason: str) -> DistributionResult:
        distributions.labels(reason=reason).inc()
        logger.info("distribution_skipped", reservation_id=reservation_id, reason=reason)
        return DistributionResult(reservation_id, success=False, reason=reason)

    def find_undistributed(
        self, window_days: int = DISTRIBUTION_WINDOW_DAYS, limit: Optional[int] = None
    ) -> list[dict[str, Any]]:
        """Paid, confirmed reservations from the last ``window_days`` with no distribution."""
        since = utc_now() - timedelta(days=window_days)
        with self.engine.connect() as conn:
            return find_undistributed_reservations(conn, since, limit=limit)

    def distribute_all(
        self, window_days: int = DISTRIBUTION_WINDOW_DAYS, limit: Optional[int] = None
    ) -> BatchDistributionResult:
        """
        Backfill distribution for every undistributed reservation in the window.

        Each reservation is independent; one failure does not stop the batch.
        """
        pending = self.find_undistributed(window_days=window_days, limit=limit)
        logger.info("distribution_backfill_started", count=len(pending))

        batch = BatchDistributionResult()
        for reservation in pending:
            result = self.distribute(reservation["id"])
            batch.processed += 1
            if result.success:
                batch.succeeded += 1
            else:
                batch.failed += 1
            batch.details.append(result)

        logger.info(
            "distribution_backfill_completed",
            processed=batch.processed,
            succeeded=batch.succeeded,
            failed=batch.failed,
        )
        return batch
