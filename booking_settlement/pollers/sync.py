"""
Scheduled entry point: reconcile in-flight gateway transactions, then
backfill wallet distribution for paid reservations that missed it.

Run from cron or a Kubernetes CronJob:
    python -m booking_settlement.pollers.sync
"""

import structlog

from booking_settlement.config import DRY_RUN
from booking_settlement.db.engine import get_engine
from booking_settlement.logging_config import setup_logging
from booking_settlement.pollers.transactions import poll_transactions

setup_logging()
logger = structlog.get_logger(__name__)


def main() -> None:
    poll_transactions(get_engine(), dry_run=DRY_RUN)


if __name__ == "__main__":
    main()
