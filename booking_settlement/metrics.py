"""
Prometheus metrics for reservations, gateway calls, reconciliation and payouts.

Metrics are exposed via the /metrics endpoint for scraping by Prometheus.

Example:
    >>> from booking_settlement.metrics import reconciliations
    >>> reconciliations.labels(transaction_type="DEPOSIT", outcome="changed").inc()
"""

from __future__ import annotations

from prometheus_client import Counter, Histogram

# =============================================================================
# Reservation Metrics
# =============================================================================

reservations_created = Counter(
    "settlement_reservations_created_total",
    "Total number of reservations created",
    ["resource_kind"],
)
"""
Counter for reservations that were inserted.

Labels:
    resource_kind: property or tour
"""

reservation_conflicts = Counter(
    "settlement_reservation_conflicts_total",
    "Total number of reservation attempts rejected because of overlap",
    ["source"],
)
"""
Counter for rejected reservation attempts.

Labels:
    source: check (availability query found a conflict) or
        store (the night claim unique constraint fired)
"""

# =============================================================================
# Gateway Metrics
# =============================================================================

gateway_requests = Counter(
    "settlement_gateway_requests_total",
    "Total payment gateway requests made",
    ["endpoint", "status_code"],
)
"""
Counter for requests to the payment gateway.

Labels:
    endpoint: deposits, payouts, refunds (status checks are suffixed with /status)
    status_code: HTTP status code, or "timeout" / "error"
"""

gateway_latency = Histogram(
    "settlement_gateway_latency_seconds",
    "Payment gateway request latency in seconds",
    ["endpoint"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, float("inf")),
)
"""
Histogram for gateway request latency.

Buckets: 0.1s, 0.25s, 0.5s, 1s, 2.5s, 5s, 10s, 30s, +Inf
"""

exchange_rate_lookups = Counter(
    "settlement_exchange_rate_lookups_total",
    "Exchange rate lookups by source",
    ["source"],
)
"""
Counter for base-rate lookups.

Labels:
    source: cache, api, stale_cache or fallback
"""

# =============================================================================
# Reconciliation Metrics
# =============================================================================

reconciliations = Counter(
    "settlement_reconciliations_total",
    "Total reconciliation runs by outcome",
    ["transaction_type", "outcome"],
)
"""
Counter for reconcile() calls.

Labels:
    transaction_type: DEPOSIT, PAYOUT or REFUND
    outcome: changed, unchanged, terminal, lost_race, error
"""

# =============================================================================
# Distribution Metrics
# =============================================================================

distributions = Counter(
    "settlement_distributions_total",
    "Total wallet distribution attempts by reason",
    ["reason"],
)
"""
Counter for distribute() calls.

Labels:
    reason: distributed, already_distributed, not_paid, not_found, error
"""

wallet_credits = Counter(
    "settlement_wallet_credits_total",
    "Total wallet credits appended to the ledger",
    ["role"],
)
"""
Counter for ledger credits.

Labels:
    role: platform, agent, owner
"""

# =============================================================================
# Notification Metrics
# =============================================================================

notifications = Counter(
    "settlement_notifications_total",
    "Outbound notification deliveries",
    ["event", "status"],
)
"""
Counter for notification deliveries.

Labels:
    event: notification event name
    status: sent, logged or failed
"""
