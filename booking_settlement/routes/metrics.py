"""
Prometheus metrics endpoint.

Example:
    GET /metrics

    Response:
        # HELP settlement_reconciliations_total Total reconciliation runs by outcome
        # TYPE settlement_reconciliations_total counter
        settlement_reconciliations_total{outcome="changed",transaction_type="DEPOSIT"} 3.0
        ...
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter()


@router.get("/metrics", response_class=Response)
async def metrics() -> Any:
    """Expose metrics in the Prometheus text exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
