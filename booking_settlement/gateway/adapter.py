"""
Payment gateway adapter.

Builds deposit/payout/refund requests, submits them through GatewayClient and
records exactly one PaymentTransaction per initiated operation with the
provider's own status. Reservations are never touched here; reconciliation
moves them once the provider reports a terminal state.

Every initiation first claims a PENDING row, so a second deposit for the
same reservation fails with ConflictError before anything is sent. Payouts
also debit the recipient's wallet in that claim.

Initiation outcomes:
    - provider acknowledged: row updated with the normalised provider status
    - provider rejected or unreachable: row deleted and any payout debit
      credited back, GatewayRejected / GatewayUnavailable raised
    - read timeout: the request may have reached the provider, so the row is
      persisted as PENDING and left for reconciliation to resolve
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Optional

import structlog
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from booking_settlement.config import DEFAULT_COUNTRY_PREFIX, SETTLEMENT_CURRENCY
from booking_settlement.db.readers.payment_transactions import (
    find_transactions_for_reference,
    get_transaction,
)
from booking_settlement.db.readers.reservations import get_reservation
from booking_settlement.db.writers.payment_transactions import (
    acknowledge_transaction,
    delete_transaction,
    insert_transaction,
)
from booking_settlement.db.writers.wallets import debit_for_payout, reverse_payout_debit
from booking_settlement.errors import (
    ConflictError,
    GatewayRejected,
    GatewayTimeout,
    GatewayUnavailable,
    ReservationNotFound,
    TransactionNotFound,
    ValidationError,
)
from booking_settlement.gateway.client import (
    REJECTION_STATUSES,
    GatewayClient,
    normalize_status,
)
from booking_settlement.gateway.schemas import (
    AccountDetails,
    DepositRequest,
    FailureReason,
    GatewayStatus,
    MetadataField,
    Party,
    PayoutRequest,
    RefundRequest,
)
from booking_settlement.models.payment_transactions import TERMINAL_STATUSES
from booking_settlement.pricing.currency import (
    DEPOSIT,
    PAYOUT,
    CurrencyConverter,
    ExchangeRateProvider,
)
from booking_settlement.utils.datetime import as_utc
from booking_settlement.utils.money import Number, to_decimal

logger = structlog.get_logger(__name__)

# Metadata keys whose values identify a person
PII_KEY_MARKERS = ("user", "customer", "phone", "email")

CUSTOMER_MESSAGE = "Booking payment"


def generate_transaction_id() -> str:
    """Random UUID; never derived from time so retries cannot collide."""
    return str(uuid.uuid4())


def format_phone_number(phone: str, country_prefix: str = DEFAULT_COUNTRY_PREFIX) -> str:
    """
    Normalise an MSISDN to digits with the country prefix.

    Example:
        >>> format_phone_number("+250 788-123-456")
        '250788123456'
        >>> format_phone_number("0788123456")
        '250788123456'
    """
    digits = re.sub(r"\D", "", phone or "")
    if not digits:
        raise ValidationError("phone number is required")
    if digits.startswith(country_prefix):
        return digits
    if digits.startswith("0"):
        return country_prefix + digits[1:]
    return country_prefix + digits


def build_metadata(fields: dict[str, Any]) -> list[MetadataField]:
    """Turn key/value pairs into provider metadata, flagging identity fields as PII."""
    metadata = []
    for key, value in fields.items():
        if value is None:
            continue
        metadata.append(
            MetadataField(
                fieldName=key,
                fieldValue=str(value),
                isPII=any(marker in key.lower() for marker in PII_KEY_MARKERS),
            )
        )
    return metadata


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        logger.warning("gateway_timestamp_unparseable", value=value)
        return None


def parse_gateway_status(transaction_id: str, payload: dict[str, Any]) -> GatewayStatus:
    """Normalise a provider transaction object."""
    provider_status = payload.get("status")
    ids = payload.get("correspondentIds") or {}
    failure = payload.get("failureReason") or payload.get("rejectionReason")
    if isinstance(failure, dict):
        failure_reason: Optional[FailureReason] = FailureReason(
            failureCode=failure.get("failureCode") or failure.get("rejectionCode"),
            failureMessage=failure.get("failureMessage") or failure.get("rejectionMessage"),
        )
    elif failure:
        failure_reason = FailureReason(failureMessage=str(failure))
    else:
        failure_reason = None

    amount = payload.get("depositedAmount") or payload.get("amount") or payload.get(
        "requestedAmount"
    )
    return GatewayStatus(
        transaction_id=transaction_id,
        status=normalize_status(provider_status),
        provider_status=provider_status,
        provider_transaction_id=ids.get("PROVIDER_TRANSACTION_ID"),
        financial_transaction_id=ids.get("FINANCIAL_TRANSACTION_ID"),
        correspondent=payload.get("correspondent"),
        amount=str(amount) if amount is not None else None,
        currency=payload.get("currency"),
        received_by_provider=payload.get("receivedByPawaPay"),
        failure=failure_reason,
        raw=payload,
    )


@dataclass(frozen=True)
class PayoutInstruction:
    """One payout of a settlement-currency amount to a mobile money account."""

    recipient_id: str
    amount: Decimal
    phone_number: str
    provider: str
    internal_reference: Optional[str] = None


class PaymentGatewayAdapter:
    """
    Initiates gateway operations and persists their PaymentTransaction rows.

    Example:
        >>> adapter = PaymentGatewayAdapter(engine, GatewayClient())
        >>> tx = adapter.initiate_deposit(reservation_id, "0788123456", "MTN_MOMO_RWA")
        >>> tx["status"]
        'ACCEPTED'
    """

    def __init__(
        self,
        engine: Engine,
        client: GatewayClient,
        converter: Optional[CurrencyConverter] = None,
        rates: Optional[ExchangeRateProvider] = None,
        settlement_currency: str = SETTLEMENT_CURRENCY,
    ):
        self.engine = engine
        self.client = client
        self.converter = converter or CurrencyConverter()
        self.rates = rates or ExchangeRateProvider()
        self.settlement_currency = settlement_currency

    def _base_rate(self, base_rate: Optional[Number]) -> Decimal:
        if base_rate is not None:
            return to_decimal(base_rate)
        return self.rates.get_base_rate(self.settlement_currency, self.converter.currency)

    def _submit(
        self,
        row: dict[str, Any],
        send: Callable[[], dict[str, Any]],
        claim: Optional[Callable[[Connection], Any]] = None,
        release: Optional[Callable[[Connection], Any]] = None,
    ) -> dict[str, Any]:
        """
        Claim a PENDING transaction row, send the request and record the answer.

        The row is inserted before the request leaves, in the same transaction
        as ``claim``, so store constraints decide between concurrent callers.
        If the provider refuses or cannot be reached, the row is deleted and
        ``release`` undoes the claim.

        Raises:
            ConflictError: another in-flight transaction holds the claim
            GatewayRejected: the provider refused the request (nothing persisted)
            GatewayUnavailable: the provider was not reached (nothing persisted)
        """
        log = logger.bind(transaction_id=row["id"], transaction_type=row["transaction_type"])

        row["status"] = "PENDING"
        try:
            with self.engine.begin() as conn:
                insert_transaction(conn, row)
                if claim is not None:
                    claim(conn)
        except IntegrityError as e:
            log.warning("gateway_initiation_conflict", error=str(e.orig))
            raise ConflictError(
                "a transaction for this reference is already in progress",
                internal_reference=row["internal_reference"],
            )

        try:
            ack = send()
        except GatewayTimeout:
            log.warning("gateway_initiation_timed_out_recording_pending")
            return row
        except (GatewayRejected, GatewayUnavailable) as e:
            log.warning("gateway_initiation_failed", error=str(e), kind=e.kind)
            self._discard(row["id"], release)
            raise

        provider_status = ack.get("status")
        if provider_status in REJECTION_STATUSES:
            reason = ack.get("rejectionReason") or {}
            log.warning("gateway_initiation_rejected", reason=reason)
            self._discard(row["id"], release)
            raise GatewayRejected(
                "gateway rejected the request",
                status=provider_status,
                reason=reason,
            )

        status = normalize_status(provider_status)
        if status is None:
            log.warning("gateway_initiation_unknown_status", provider_status=provider_status)
            status = "PENDING"

        values: dict[str, Any] = {
            "status": status,
            "received_by_provider_at": parse_timestamp(
                ack.get("receivedByPawaPay") or ack.get("created")
            ),
        }
        if status == "COMPLETED":
            values["completed_at"] = values["received_by_provider_at"]

        with self.engine.begin() as conn:
            recorded = acknowledge_transaction(conn, row["id"], values)
            if not recorded:
                # Reconciliation got there first
                log.info("gateway_initiation_already_reconciled")
                stored = get_transaction(conn, row["id"])
                return stored if stored is not None else row

        row.update(values)
        log.info("gateway_initiation_acknowledged", status=status, provider_status=provider_status)
        return row

    def _discard(
        self, transaction_id: str, release: Optional[Callable[[Connection], Any]]
    ) -> None:
        with self.engine.begin() as conn:
            delete_transaction(conn, transaction_id)
            if release is not None:
                release(conn)

    def initiate_deposit(
        self,
        reservation_id: str,
        phone_number: str,
        provider: str,
        base_rate: Optional[Number] = None,
    ) -> dict[str, Any]:
        """
        Collect a reservation's total from the requester's mobile money account.

        Args:
            reservation_id: Reservation to pay for
            phone_number: Payer MSISDN, any formatting
            provider: Mobile money operator code
            base_rate: Settlement-to-local base rate; fetched when omitted

        Returns:
            dict[str, Any]: The persisted PaymentTransaction values

        Raises:
            ReservationNotFound: unknown reservation
            ValidationError: reservation is not awaiting payment
            ConflictError: a deposit for the reservation is already in flight
        """
        with self.engine.connect() as conn:
            reservation = get_reservation(conn, reservation_id)
            if reservation is None:
                raise ReservationNotFound("reservation not found", reservation_id=reservation_id)
            if reservation["status"] != "pending" or reservation["payment_status"] != "pending":
                raise ValidationError(
                    "reservation is not awaiting payment",
                    status=reservation["status"],
                    payment_status=reservation["payment_status"],
                )
            in_flight = [
                tx["id"]
                for tx in find_transactions_for_reference(conn, reservation_id, "DEPOSIT")
                if tx["status"] not in TERMINAL_STATUSES
            ]
        if in_flight:
            raise ConflictError(
                "a deposit is already in progress for this reservation",
                transaction_ids=in_flight,
            )

        total = to_decimal(reservation["total_price"])
        conversion = self.converter.to_local(total, DEPOSIT, self._base_rate(base_rate))
        phone = format_phone_number(phone_number)
        transaction_id = generate_transaction_id()

        metadata = build_metadata(
            {
                "internalReference": reservation_id,
                "userId": reservation["requester_id"],
                "resourceId": reservation["resource_id"],
            }
        )
        request = DepositRequest(
            depositId=transaction_id,
            amount=conversion.minor_units,
            currency=conversion.currency,
            payer=Party(accountDetails=AccountDetails(phoneNumber=phone, provider=provider)),
            customerMessage=CUSTOMER_MESSAGE,
            metadata=metadata,
        )

        row = {
            "id": transaction_id,
            "transaction_type": "DEPOSIT",
            "amount": conversion.minor_units,
            "currency": conversion.currency,
            "internal_reference": reservation_id,
            "correspondent": provider,
            "party_phone": phone,
            "metadata_": [m.model_dump() for m in metadata],
            "settlement_amount": total,
            "exchange_rate": conversion.rate,
        }
        return self._submit(row, lambda: self.client.initiate_deposit(request.model_dump()))

    def _payout_row(
        self, instruction: PayoutInstruction, base_rate: Decimal
    ) -> tuple[dict[str, Any], PayoutRequest]:
        amount = to_decimal(instruction.amount)
        if amount <= 0:
            raise ValidationError("payout amount must be positive", amount=str(amount))

        conversion = self.converter.to_local(amount, PAYOUT, base_rate)
        phone = format_phone_number(instruction.phone_number)
        transaction_id = generate_transaction_id()
        metadata = build_metadata(
            {
                "internalReference": instruction.internal_reference,
                "userId": instruction.recipient_id,
            }
        )
        request = PayoutRequest(
            payoutId=transaction_id,
            amount=conversion.minor_units,
            currency=conversion.currency,
            recipient=Party(
                accountDetails=AccountDetails(phoneNumber=phone, provider=instruction.provider)
            ),
            customerMessage="Payout",
            metadata=metadata,
        )
        row = {
            "id": transaction_id,
            "transaction_type": "PAYOUT",
            "amount": conversion.minor_units,
            "currency": conversion.currency,
            "internal_reference": instruction.internal_reference or instruction.recipient_id,
            "correspondent": instruction.provider,
            "party_phone": phone,
            "metadata_": [m.model_dump() for m in metadata],
            "settlement_amount": amount,
            "exchange_rate": conversion.rate,
        }
        return row, request

    def initiate_payout(
        self, instruction: PayoutInstruction, base_rate: Optional[Number] = None
    ) -> dict[str, Any]:
        """
        Withdraw from the recipient's wallet to their mobile money account.

        The wallet is debited in the same transaction that records the payout.
        The debit is credited back if the provider refuses or cannot be
        reached, or later when reconciliation sees the payout FAILED.

        Raises:
            ValidationError: the wallet cannot cover the amount
        """
        row, request = self._payout_row(instruction, self._base_rate(base_rate))
        transaction_id = row["id"]
        return self._submit(
            row,
            lambda: self.client.initiate_payout(request.model_dump()),
            claim=lambda conn: debit_for_payout(
                conn,
                instruction.recipient_id,
                row["settlement_amount"],
                self.settlement_currency,
                transaction_id,
            ),
            release=lambda conn: reverse_payout_debit(conn, transaction_id),
        )

    def initiate_bulk_payout(
        self, instructions: list[PayoutInstruction], base_rate: Optional[Number] = None
    ) -> list[dict[str, Any]]:
        """
        Submit several payouts, one PaymentTransaction each.

        A rejected or unreachable payout does not stop the batch; its entry
        carries ``error`` instead of a transaction.

        Returns:
            list[dict[str, Any]]: One entry per instruction, in order
        """
        rate = self._base_rate(base_rate)
        results: list[dict[str, Any]] = []
        for instruction in instructions:
            try:
                transaction = self.initiate_payout(instruction, rate)
                results.append(
                    {"recipient_id": instruction.recipient_id, "transaction": transaction}
                )
            except (GatewayRejected, GatewayUnavailable, ValidationError) as e:
                logger.warning(
                    "bulk_payout_item_failed",
                    recipient_id=instruction.recipient_id,
                    error=str(e),
                )
                results.append({"recipient_id": instruction.recipient_id, "error": e.to_dict()})

        logger.info(
            "bulk_payout_submitted",
            total=len(instructions),
            initiated=sum(1 for r in results if "transaction" in r),
        )
        return results

    def initiate_refund(
        self, deposit_transaction_id: str, settlement_amount: Optional[Number] = None
    ) -> dict[str, Any]:
        """
        Refund all or part of a completed deposit.

        The local amount is the deposit's minor-unit amount scaled by
        settlement_amount / deposit settlement amount, so the refund is paid at
        the rate the deposit was collected at.

        Raises:
            TransactionNotFound: unknown deposit
            ValidationError: not a completed deposit, or amount out of range
        """
        with self.engine.connect() as conn:
            deposit = get_transaction(conn, deposit_transaction_id)
        if deposit is None or deposit["transaction_type"] != "DEPOSIT":
            raise TransactionNotFound(
                "deposit not found", transaction_id=deposit_transaction_id
            )
        if deposit["status"] != "COMPLETED":
            raise ValidationError(
                "only completed deposits can be refunded", status=deposit["status"]
            )

        deposit_minor = Decimal(deposit["amount"])
        deposit_settlement = (
            to_decimal(deposit["settlement_amount"])
            if deposit["settlement_amount"] is not None
            else None
        )

        if settlement_amount is None or deposit_settlement is None:
            refund_minor = deposit_minor
            refund_settlement = deposit_settlement
        else:
            refund_settlement = to_decimal(settlement_amount)
            if refund_settlement <= 0 or refund_settlement > deposit_settlement:
                raise ValidationError(
                    "refund amount must be positive and at most the deposit",
                    amount=str(refund_settlement),
                    deposit_amount=str(deposit_settlement),
                )
            refund_minor = (deposit_minor * refund_settlement / deposit_settlement).quantize(
                Decimal(1), rounding=ROUND_HALF_UP
            )

        transaction_id = generate_transaction_id()
        metadata = build_metadata({"internalReference": deposit["internal_reference"]})
        request = RefundRequest(
            refundId=transaction_id,
            depositId=deposit_transaction_id,
            amount=str(int(refund_minor)),
            metadata=metadata,
        )
        row = {
            "id": transaction_id,
            "transaction_type": "REFUND",
            "amount": request.amount,
            "currency": deposit["currency"],
            "internal_reference": deposit["internal_reference"],
            "related_transaction_id": deposit_transaction_id,
            "correspondent": deposit["correspondent"],
            "party_phone": deposit["party_phone"],
            "metadata_": [m.model_dump() for m in metadata],
            "settlement_amount": refund_settlement,
            "exchange_rate": deposit["exchange_rate"],
        }
        return self._submit(row, lambda: self.client.initiate_refund(request.model_dump()))

    def fetch_status(self, transaction: dict[str, Any]) -> Optional[GatewayStatus]:
        """
        Ask the provider for the live state of a transaction.

        Returns:
            Optional[GatewayStatus]: None if the provider does not know the id

        Raises:
            GatewayUnavailable, GatewayTimeout: the provider could not be asked
        """
        lookups = {
            "DEPOSIT": self.client.get_deposit_status,
            "PAYOUT": self.client.get_payout_status,
            "REFUND": self.client.get_refund_status,
        }
        lookup = lookups.get(transaction["transaction_type"])
        if lookup is None:
            raise ValidationError(
                "unknown transaction type", transaction_type=transaction["transaction_type"]
            )

        try:
            payload = lookup(transaction["id"])
        except GatewayRejected as e:
            if e.details.get("http_status") == 404:
                return None
            raise

        if payload is None:
            return None
        return parse_gateway_status(transaction["id"], payload)
