"""
Reconciliation of gateway transaction state against internal records.

``Reconciler.reconcile`` is safe to call on any schedule or on demand:

1. load the persisted transaction and its version
2. ask the gateway for the live status
3. write the new status with ``UPDATE ... WHERE version = <seen>``
4. if the status did not change, stop
5. apply the reservation and wallet effects of the change in the same
   transaction (a FAILED payout credits its wallet debit back)
6. after commit, run distribution and dispatch notifications

Only the caller whose versioned update wins performs steps 5-6, so two
concurrent reconciles of one transaction cannot both trigger distribution.
Terminal transactions (COMPLETED, FAILED) are never polled again.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional

import structlog
from sqlalchemy.engine import Connection, Engine

from booking_settlement.config import (
    PLATFORM_WALLET_OWNER,
    RECONCILE_BATCH_SIZE,
    RECONCILE_MAX_AGE_HOURS,
)
from booking_settlement.db.readers.payment_transactions import (
    find_pending_transactions,
    get_transaction,
)
from booking_settlement.db.readers.reservations import get_reservation
from booking_settlement.db.readers.resources import get_resource
from booking_settlement.db.writers.payment_transactions import update_transaction_if_version
from booking_settlement.db.writers.reservations import update_reservation_status
from booking_settlement.db.writers.wallets import reverse_payout_debit
from booking_settlement.errors import TransactionNotFound
from booking_settlement.gateway.adapter import PaymentGatewayAdapter, parse_timestamp
from booking_settlement.gateway.schemas import GatewayStatus
from booking_settlement.metrics import reconciliations
from booking_settlement.models.payment_transactions import TERMINAL_STATUSES
from booking_settlement.models.reservations import ACTIVE_STATUSES
from booking_settlement.services import notifications as events
from booking_settlement.services.distribution import DistributionResult, Distributor
from booking_settlement.services.notifications import Notification, Notifier
from booking_settlement.utils.datetime import utc_now

logger = structlog.get_logger(__name__)

CHANGED = "changed"
UNCHANGED = "unchanged"
TERMINAL = "terminal"
LOST_RACE = "lost_race"
UNKNOWN_AT_PROVIDER = "unknown_at_provider"


@dataclass
class ReconcileResult:
    transaction_id: str
    transaction_type: str
    previous_status: str
    new_status: str
    outcome: str
    reservation_id: Optional[str] = None
    reservation_found: Optional[bool] = None
    distribution: Optional[DistributionResult] = None
    notifications_sent: int = 0

    @property
    def changed(self) -> bool:
        return self.outcome == CHANGED

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction_id": self.transaction_id,
            "transaction_type": self.transaction_type,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "changed": self.changed,
            "outcome": self.outcome,
            "reservation_id": self.reservation_id,
            "reservation_found": self.reservation_found,
            "distribution": self.distribution.to_dict() if self.distribution else None,
            "notifications_sent": self.notifications_sent,
        }


@dataclass
class _Effects:
    """What a committed status change asks for once the transaction is closed."""

    reservation_found: Optional[bool] = None
    distribute: bool = False
    notifications: list[Notification] = field(default_factory=list)


def status_update_values(
    transaction: dict[str, Any], live: GatewayStatus
) -> dict[str, Any]:
    """
    Column values to persist from a gateway answer.

    Identifiers and failure details are only written when the provider
    supplied them. completed_at is stamped iff the new status is COMPLETED.
    """
    values: dict[str, Any] = {"status": live.status}

    if live.provider_transaction_id:
        values["provider_transaction_id"] = live.provider_transaction_id
    if live.financial_transaction_id:
        values["financial_transaction_id"] = live.financial_transaction_id
    if live.correspondent and not transaction.get("correspondent"):
        values["correspondent"] = live.correspondent
    if live.failure is not None:
        values["failure_code"] = live.failure.failureCode
        values["failure_message"] = live.failure.failureMessage
    if live.received_by_provider and transaction.get("received_by_provider_at") is None:
        values["received_by_provider_at"] = parse_timestamp(live.received_by_provider)
    if live.status == "COMPLETED":
        values["completed_at"] = utc_now()

    return values


class Reconciler:
    """
    Brings PaymentTransactions and their reservations in line with the gateway.

    Example:
        >>> reconciler = Reconciler(engine, adapter, Distributor(engine), Notifier())
        >>> reconciler.reconcile(transaction_id).outcome
        'changed'
    """

    def __init__(
        self,
        engine: Engine,
        adapter: PaymentGatewayAdapter,
        distributor: Distributor,
        notifier: Notifier,
        operator_id: str = PLATFORM_WALLET_OWNER,
    ):
        self.engine = engine
        self.adapter = adapter
        self.distributor = distributor
        self.notifier = notifier
        self.operator_id = operator_id

    def reconcile(self, transaction_id: str) -> ReconcileResult:
        """
        Refresh one transaction from the gateway and apply the effects of a change.

        Returns:
            ReconcileResult

        Raises:
            TransactionNotFound: unknown transaction id
            GatewayUnavailable, GatewayTimeout: the gateway could not be asked;
                nothing was written
        """
        with self.engine.connect() as conn:
            transaction = get_transaction(conn, transaction_id)
        if transaction is None:
            raise TransactionNotFound("transaction not found", transaction_id=transaction_id)

        log = logger.bind(
            transaction_id=transaction_id, transaction_type=transaction["transaction_type"]
        )
        previous = transaction["status"]
        result = ReconcileResult(
            transaction_id=transaction_id,
            transaction_type=transaction["transaction_type"],
            previous_status=previous,
            new_status=previous,
            outcome=TERMINAL,
            reservation_id=transaction["internal_reference"],
        )

        if previous in TERMINAL_STATUSES:
            return self._finish(result, log)

        live = self.adapter.fetch_status(transaction)
        if live is None or live.status is None:
            log.info(
                "reconcile_status_unavailable",
                provider_status=live.provider_status if live else None,
            )
            result.outcome = UNKNOWN_AT_PROVIDER
            return self._finish(result, log)

        result.new_status = live.status
        values = status_update_values(transaction, live)

        if live.status == previous:
            # Same status: record new identifiers if any, no side effects
            if any(transaction.get(k) != v for k, v in values.items() if k != "status"):
                with self.engine.begin() as conn:
                    update_transaction_if_version(
                        conn, transaction_id, transaction["version"], values
                    )
            result.outcome = UNCHANGED
            return self._finish(result, log)

        with self.engine.begin() as conn:
            won = update_transaction_if_version(
                conn, transaction_id, transaction["version"], values
            )
            if not won:
                result.outcome = LOST_RACE
                return self._finish(result, log)

            effects = self._apply_effects(conn, transaction, live)

        result.outcome = CHANGED
        result.reservation_found = effects.reservation_found

        if effects.distribute and transaction["internal_reference"]:
            result.distribution = self.distributor.distribute(transaction["internal_reference"])

        result.notifications_sent = self.notifier.dispatch(effects.notifications)
        return self._finish(result, log)

    def _finish(self, result: ReconcileResult, log: Any) -> ReconcileResult:
        reconciliations.labels(
            transaction_type=result.transaction_type, outcome=result.outcome
        ).inc()
        log.info(
            "reconcile_finished",
            outcome=result.outcome,
            previous_status=result.previous_status,
            new_status=result.new_status,
        )
        return result

    def _apply_effects(
        self, conn: Connection, transaction: dict[str, Any], live: GatewayStatus
    ) -> _Effects:
        kind = transaction["transaction_type"]
        if kind == "DEPOSIT":
            return self._deposit_effects(conn, transaction, live)
        if kind == "REFUND":
            return self._refund_effects(conn, transaction, live)
        return self._payout_effects(conn, transaction, live)

    def _deposit_effects(
        self, conn: Connection, transaction: dict[str, Any], live: GatewayStatus
    ) -> _Effects:
        effects = _Effects()
        reservation_id = transaction["internal_reference"]
        reservation = (
            get_reservation(conn, reservation_id, for_update=True) if reservation_id else None
        )
        if reservation is None:
            logger.warning(
                "reconcile_reservation_not_found",
                transaction_id=transaction["id"],
                internal_reference=reservation_id,
            )
            effects.reservation_found = False
            return effects
        effects.reservation_found = True

        if live.status == "COMPLETED":
            if reservation["status"] in ACTIVE_STATUSES:
                update_reservation_status(
                    conn, reservation_id, status="confirmed", payment_status="completed"
                )
                effects.distribute = True
                effects.notifications.extend(self._confirmation_notices(conn, reservation))
            else:
                # Paid after the booking was cancelled; money needs a manual refund
                update_reservation_status(conn, reservation_id, payment_status="completed")
                logger.warning(
                    "deposit_completed_for_inactive_reservation",
                    reservation_id=reservation_id,
                    status=reservation["status"],
                )
                effects.notifications.append(
                    Notification(
                        events.PAYMENT_FAILED,
                        self.operator_id,
                        {
                            "reservationId": reservation_id,
                            "transactionId": transaction["id"],
                            "reason": "payment completed for inactive reservation",
                        },
                    )
                )

        elif live.status == "FAILED":
            if reservation["payment_status"] != "completed":
                status = "cancelled" if reservation["status"] in ACTIVE_STATUSES else None
                update_reservation_status(
                    conn, reservation_id, status=status, payment_status="failed"
                )
            message = live.failure.failureMessage if live.failure else None
            effects.notifications.append(
                Notification(
                    events.PAYMENT_FAILED,
                    reservation["requester_id"],
                    {
                        "reservationId": reservation_id,
                        "transactionId": transaction["id"],
                        "failureCode": live.failure.failureCode if live.failure else None,
                        "failureMessage": message,
                    },
                )
            )

        elif reservation["payment_status"] == "pending":
            update_reservation_status(conn, reservation_id, payment_status="processing")

        return effects

    def _confirmation_notices(
        self, conn: Connection, reservation: dict[str, Any]
    ) -> list[Notification]:
        payload = {
            "reservationId": reservation["id"],
            "resourceId": reservation["resource_id"],
            "startDate": reservation["start_date"].isoformat(),
            "endDate": reservation["end_date"].isoformat(),
            "total": str(reservation["total_price"]),
        }
        notices = [Notification(events.BOOKING_CONFIRMED, reservation["requester_id"], payload)]

        resource = get_resource(conn, reservation["resource_id"])
        if resource is not None:
            notices.append(
                Notification(events.NEW_BOOKING_FOR_OWNER, resource["owner_id"], payload)
            )
            if resource["agent_id"]:
                notices.append(
                    Notification(events.NEW_BOOKING_FOR_AGENT, resource["agent_id"], payload)
                )
        return notices

    def _refund_effects(
        self, conn: Connection, transaction: dict[str, Any], live: GatewayStatus
    ) -> _Effects:
        effects = _Effects()
        reservation_id = transaction["internal_reference"]
        reservation = (
            get_reservation(conn, reservation_id, for_update=True) if reservation_id else None
        )
        if reservation is None:
            logger.warning(
                "reconcile_reservation_not_found",
                transaction_id=transaction["id"],
                internal_reference=reservation_id,
            )
            effects.reservation_found = False
            return effects
        effects.reservation_found = True

        payload = {
            "reservationId": reservation_id,
            "transactionId": transaction["id"],
            "amount": str(transaction["settlement_amount"]),
        }
        if live.status == "COMPLETED":
            update_reservation_status(
                conn, reservation_id, status="refunded", payment_status="refunded"
            )
            effects.notifications.append(
                Notification(events.REFUND_COMPLETED, reservation["requester_id"], payload)
            )
        elif live.status == "FAILED":
            payload["failureMessage"] = live.failure.failureMessage if live.failure else None
            effects.notifications.append(
                Notification(events.REFUND_FAILED, self.operator_id, payload)
            )
        return effects

    def _payout_effects(
        self, conn: Connection, transaction: dict[str, Any], live: GatewayStatus
    ) -> _Effects:
        effects = _Effects()
        payload = {
            "transactionId": transaction["id"],
            "amount": str(transaction["settlement_amount"]),
            "currency": transaction["currency"],
        }
        if live.status == "COMPLETED":
            effects.notifications.append(
                Notification(events.PAYOUT_COMPLETED, transaction["internal_reference"], payload)
            )
        elif live.status == "FAILED":
            reversal = reverse_payout_debit(conn, transaction["id"])
            payload["failureMessage"] = live.failure.failureMessage if live.failure else None
            payload["walletCredited"] = reversal is not None
            effects.notifications.append(
                Notification(events.PAYOUT_FAILED, transaction["internal_reference"], payload)
            )
        return effects

    def reconcile_pending(
        self,
        max_age_hours: int = RECONCILE_MAX_AGE_HOURS,
        batch_size: int = RECONCILE_BATCH_SIZE,
    ) -> list[ReconcileResult]:
        """
        Reconcile every non-terminal transaction younger than ``max_age_hours``.

        A failure on one transaction is logged and does not stop the batch.
        """
        since = utc_now() - timedelta(hours=max_age_hours)
        with self.engine.connect() as conn:
            pending = find_pending_transactions(conn, since, limit=batch_size)

        logger.info("reconcile_pending_started", count=len(pending))

        results = []
        for transaction in pending:
            try:
                results.append(self.reconcile(transaction["id"]))
            except Exception as e:
                reconciliations.labels(
                    transaction_type=transaction["transaction_type"], outcome="error"
                ).inc()
                logger.exception(
                    "reconcile_failed", transaction_id=transaction["id"], error=str(e)
                )

        logger.info(
            "reconcile_pending_completed",
            checked=len(pending),
            changed=sum(1 for r in results if r.changed),
        )
        return results
