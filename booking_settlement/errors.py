"""
Exception hierarchy for booking settlement.

Routes map these to HTTP status codes through ``status_code`` and expose
``kind`` so callers can tell retryable dependency failures from bad input.
"""

from __future__ import annotations

from typing import Any


class BookingSettlementError(Exception):
    """Base class for all domain errors."""

    status_code = 500
    kind = "internal"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "error": self.kind, **self.details}


class ValidationError(BookingSettlementError):
    """Malformed interval, guest count, amount or an operation not allowed in the current state."""

    status_code = 400
    kind = "validation"


class ConflictError(BookingSettlementError):
    status_code = 409
    kind = "conflict"


class ReservationConflict(ConflictError):
    """Requested dates overlap an active reservation or blocked range."""

    def __init__(
        self,
        message: str,
        conflicts: list[dict[str, Any]] | None = None,
        blocked_ranges: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(
            message,
            conflicts=conflicts or [],
            blocked_ranges=blocked_ranges or [],
        )
        self.conflicts = conflicts or []
        self.blocked_ranges = blocked_ranges or []


class NotFoundError(BookingSettlementError):
    status_code = 404
    kind = "not_found"


class ResourceNotFound(NotFoundError):
    pass


class ReservationNotFound(NotFoundError):
    pass


class TransactionNotFound(NotFoundError):
    pass


class DependencyError(BookingSettlementError):
    """An external collaborator failed; the operation may be retried."""

    status_code = 503
    kind = "dependency"


class GatewayError(DependencyError):
    status_code = 502
    kind = "gateway"


class GatewayUnavailable(GatewayError):
    """The gateway could not be reached or answered with a server error."""

    status_code = 503
    kind = "gateway_unavailable"


class GatewayTimeout(GatewayError):
    """The request may have reached the provider but no answer came back in time."""

    status_code = 504
    kind = "gateway_timeout"


class GatewayRejected(GatewayError):
    """The provider refused the request (validation or business rule)."""

    status_code = 502
    kind = "gateway_rejected"

    def __init__(self, message: str, status: str | None = None, **details: Any) -> None:
        super().__init__(message, provider_status=status, **details)
        self.provider_status = status
