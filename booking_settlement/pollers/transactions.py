"""One polling pass over pending payment transactions."""

from typing import Optional

import structlog
from sqlalchemy.engine import Engine

from booking_settlement.gateway.adapter import PaymentGatewayAdapter
from booking_settlement.gateway.client import GatewayClient
from booking_settlement.services.distribution import BatchDistributionResult, Distributor
from booking_settlement.services.notifications import Notifier
from booking_settlement.services.reconciliation import ReconcileResult, Reconciler

logger = structlog.get_logger(__name__)


def build_reconciler(engine: Engine, client: Optional[GatewayClient] = None) -> Reconciler:
    adapter = PaymentGatewayAdapter(engine, client or GatewayClient())
    return Reconciler(engine, adapter, Distributor(engine), Notifier())


def poll_transactions(
    engine: Engine,
    reconciler: Optional[Reconciler] = None,
    dry_run: bool = False,
) -> tuple[list[ReconcileResult], Optional[BatchDistributionResult]]:
    """
    Reconcile pending transactions, then run distribution backfill.

    Args:
        engine: SQLAlchemy Engine
        reconciler: Reconciler to use (built from config when omitted)
        dry_run: If True, only report what would be processed

    Returns:
        tuple: reconcile results and the backfill summary (None on dry run)
    """
    reconciler = reconciler or build_reconciler(engine)

    if dry_run:
        pending = reconciler.distributor.find_undistributed()
        logger.info("[DRY RUN] skipping reconciliation", undistributed=len(pending))
        return [], None

    logger.info("transaction_poll_started")
    results = reconciler.reconcile_pending()
    backfill = reconciler.distributor.distribute_all()
    logger.info(
        "transaction_poll_completed",
        reconciled=len(results),
        changed=sum(1 for r in results if r.changed),
        distributed=backfill.succeeded,
    )
    return results, backfill
