import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import argparse

import structlog

from booking_settlement.db.engine import get_engine
from booking_settlement.logging_config import setup_logging
from booking_settlement.services.distribution import Distributor

setup_logging()
logger = structlog.get_logger(__name__)


def main() -> None:
    """
    Distribute a single paid reservation into wallets.

    Usage:
        python scripts/distribute_one_reservation.py <reservation_id>
    """
    parser = argparse.ArgumentParser(description=main.__doc__)
    parser.add_argument("reservation_id")
    args = parser.parse_args()

    logger.info("manual_distribution_started", reservation_id=args.reservation_id)

    result = Distributor(get_engine()).distribute(args.reservation_id)
    logger.info("manual_distribution_finished", **result.to_dict())

    if result.reason == "error":
        sys.exit(1)


if __name__ == "__main__":
    main()
