"""
Outbound booking/payment notifications.

Core operations collect Notification events while they mutate state and hand
them to ``Notifier.dispatch`` only after their transaction has committed.
Delivery is best-effort: a failed send is logged and counted, never raised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import requests
import structlog

from booking_settlement.config import NOTIFICATION_API_URL
from booking_settlement.metrics import notifications

logger = structlog.get_logger(__name__)

NOTIFICATION_TIMEOUT = 10

BOOKING_CONFIRMED = "booking.confirmed"
NEW_BOOKING_FOR_OWNER = "booking.owner_notice"
NEW_BOOKING_FOR_AGENT = "booking.agent_notice"
PAYMENT_FAILED = "payment.failed"
REFUND_COMPLETED = "refund.completed"
REFUND_FAILED = "refund.failed"
PAYOUT_COMPLETED = "payout.completed"
PAYOUT_FAILED = "payout.failed"


@dataclass(frozen=True)
class Notification:
    event: str
    recipient_id: Optional[str]
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"event": self.event, "recipientId": self.recipient_id, "payload": self.payload}


class Notifier:
    """
    Sends notifications to the notification service.

    With no NOTIFICATION_API_URL configured, notifications are only logged.
    """

    def __init__(
        self,
        api_url: Optional[str] = NOTIFICATION_API_URL,
        session: Optional[requests.Session] = None,
    ):
        self.api_url = api_url.rstrip("/") if api_url else None
        self.session = session or requests.Session()

    def send(self, notification: Notification) -> None:
        """
        Deliver one notification.

        Raises:
            requests.RequestException: if delivery fails
        """
        if not self.api_url:
            logger.info(
                "notification_logged",
                notification_event=notification.event,
                recipient_id=notification.recipient_id,
            )
            notifications.labels(event=notification.event, status="logged").inc()
            return

        res = self.session.post(
            f"{self.api_url}/events", json=notification.to_dict(), timeout=NOTIFICATION_TIMEOUT
        )
        res.raise_for_status()
        notifications.labels(event=notification.event, status="sent").inc()

    def dispatch(self, batch: Iterable[Notification]) -> int:
        """
        Send every notification, isolating failures.

        Returns:
            int: Number of notifications delivered (or logged)
        """
        delivered = 0
        for notification in batch:
            try:
                self.send(notification)
                delivered += 1
            except Exception as e:
                notifications.labels(event=notification.event, status="failed").inc()
                logger.exception(
                    "notification_failed",
                    notification_event=notification.event,
                    recipient_id=notification.recipient_id,
                    error=str(e),
                )
        return delivered
