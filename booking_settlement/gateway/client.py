"""
HTTP client for the mobile-money payment gateway with retries, bounded
timeouts and metrics.

Every request carries a caller-generated transaction id, so resubmitting the
same request after a transient failure is safe: the provider deduplicates on
depositId/payoutId/refundId.
"""

from __future__ import annotations

import time
from typing import Any, Optional, cast

import requests
import structlog

from booking_settlement.config import GATEWAY_API_KEY, GATEWAY_BASE_URL, GATEWAY_TIMEOUT_SECONDS
from booking_settlement.errors import GatewayRejected, GatewayTimeout, GatewayUnavailable
from booking_settlement.metrics import gateway_latency, gateway_requests

logger = structlog.get_logger(__name__)

MAX_RETRIES = 2
RETRY_DELAY = 1.0

# Provider statuses mapped onto the internal vocabulary
STATUS_MAP = {
    "PENDING": "PENDING",
    "ACCEPTED": "ACCEPTED",
    "DUPLICATE_IGNORED": "ACCEPTED",
    "ENQUEUED": "SUBMITTED",
    "PROCESSING": "SUBMITTED",
    "SUBMITTED": "SUBMITTED",
    "IN_RECONCILIATION": "SUBMITTED",
    "COMPLETED": "COMPLETED",
    "FAILED": "FAILED",
    "REJECTED": "FAILED",
    "CANCELLED": "FAILED",
}

# Immediate answers that mean the request was refused, not queued
REJECTION_STATUSES = ("REJECTED",)


def should_retry(res: Optional[requests.Response], err: Optional[Exception]) -> bool:
    """
    Determine whether the request should be retried based on response or error.

    Args:
        res (Optional[requests.Response]): Response object if available.
        err (Optional[Exception]): Exception raised by the request, if any.

    Returns:
        bool: True if the request should be retried, False otherwise.
    """
    if res is not None and res.status_code == 429:
        return True
    if isinstance(err, (requests.Timeout, requests.ConnectionError)):
        return True
    if res is not None and 500 <= res.status_code < 600:
        return True
    return False


def normalize_status(provider_status: Optional[str]) -> Optional[str]:
    """Map a provider status to PENDING/ACCEPTED/SUBMITTED/COMPLETED/FAILED."""
    if provider_status is None:
        return None
    return STATUS_MAP.get(provider_status.upper())


def unwrap_status_payload(payload: Any) -> Optional[dict[str, Any]]:
    """
    Extract the transaction object from a status-check response.

    The provider has answered with a bare object, a one-element list, and a
    ``{"status": "FOUND", "data": {...}}`` envelope. Returns None when the
    transaction is unknown.
    """
    if isinstance(payload, list):
        return cast(dict[str, Any], payload[0]) if payload else None
    if not isinstance(payload, dict):
        return None
    if "data" in payload and isinstance(payload["data"], dict):
        return cast(dict[str, Any], payload["data"])
    if payload.get("status") == "NOT_FOUND":
        return None
    return payload


class GatewayClient:
    """
    Thin client over the gateway's REST endpoints.

    Example:
        >>> client = GatewayClient()
        >>> client.initiate_deposit({"depositId": "...", "amount": "130650", ...})
        {'depositId': '...', 'status': 'ACCEPTED', 'created': '...'}
    """

    def __init__(
        self,
        base_url: str = GATEWAY_BASE_URL,
        api_key: str = GATEWAY_API_KEY,
        timeout: float = GATEWAY_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            }
        )

    def request(
        self,
        method: str,
        path: str,
        endpoint: str,
        body: Optional[dict[str, Any]] = None,
    ) -> Any:
        """
        Send one request, retrying rate limits, timeouts and 5xx.

        Args:
            method: HTTP method
            path: Path below base_url, e.g. "/deposits"
            endpoint: Metrics label
            body: JSON body

        Returns:
            Any: Decoded JSON response

        Raises:
            GatewayTimeout: no answer within the timeout after all retries
            GatewayUnavailable: connection failure or 5xx after all retries
            GatewayRejected: 4xx answer (validation, auth, unknown id)
        """
        url = f"{self.base_url}{path}"
        retries = 0

        while True:
            res: Optional[requests.Response] = None
            try:
                start_time = time.time()
                res = self.session.request(method, url, json=body, timeout=self.timeout)
                latency = time.time() - start_time

                gateway_requests.labels(endpoint=endpoint, status_code=str(res.status_code)).inc()
                gateway_latency.labels(endpoint=endpoint).observe(latency)

                res.raise_for_status()
                return res.json()

            except requests.RequestException as err:
                if res is None:
                    label = "timeout" if isinstance(err, requests.Timeout) else "error"
                    gateway_requests.labels(endpoint=endpoint, status_code=label).inc()

                logger.warning(
                    "gateway_request_failed",
                    endpoint=endpoint,
                    method=method,
                    status_code=res.status_code if res is not None else None,
                    attempt=retries + 1,
                    error=str(err),
                )

                retries += 1
                if retries > self.max_retries or not should_retry(res, err):
                    raise self._translate(err, res, endpoint) from err
                time.sleep(self.retry_delay * retries)

    def _translate(
        self, err: Exception, res: Optional[requests.Response], endpoint: str
    ) -> Exception:
        # A connect timeout never reached the provider; a read timeout may have
        if isinstance(err, requests.ConnectTimeout):
            return GatewayUnavailable("gateway unreachable", endpoint=endpoint)
        if isinstance(err, requests.Timeout):
            return GatewayTimeout("gateway did not answer in time", endpoint=endpoint)
        if res is None:
            return GatewayUnavailable("gateway unreachable", endpoint=endpoint)
        if res.status_code >= 500 or res.status_code == 429:
            return GatewayUnavailable(
                "gateway unavailable", endpoint=endpoint, http_status=res.status_code
            )
        try:
            body = res.json()
        except ValueError:
            body = {"text": res.text[:500]}
        return GatewayRejected(
            "gateway rejected the request",
            status="REJECTED",
            endpoint=endpoint,
            http_status=res.status_code,
            response=body,
        )

    # Deposits

    def initiate_deposit(self, payload: dict[str, Any]) -> dict[str, Any]:
        return cast(dict[str, Any], self.request("POST", "/deposits", "deposits", payload))

    def get_deposit_status(self, deposit_id: str) -> Optional[dict[str, Any]]:
        return unwrap_status_payload(
            self.request("GET", f"/deposits/{deposit_id}", "deposits/status")
        )

    # Payouts

    def initiate_payout(self, payload: dict[str, Any]) -> dict[str, Any]:
        return cast(dict[str, Any], self.request("POST", "/payouts", "payouts", payload))

    def get_payout_status(self, payout_id: str) -> Optional[dict[str, Any]]:
        return unwrap_status_payload(
            self.request("GET", f"/payouts/{payout_id}", "payouts/status")
        )

    # Refunds

    def initiate_refund(self, payload: dict[str, Any]) -> dict[str, Any]:
        return cast(dict[str, Any], self.request("POST", "/refunds", "refunds", payload))

    def get_refund_status(self, refund_id: str) -> Optional[dict[str, Any]]:
        return unwrap_status_payload(
            self.request("GET", f"/refunds/{refund_id}", "refunds/status")
        )
