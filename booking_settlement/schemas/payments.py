from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class DepositCreatePayload(BaseModel):
    """
    Schema for collecting a reservation's total from a mobile money account.
    """

    phone_number: str = Field(..., description="Payer phone number, any formatting")
    provider: str = Field(..., description="Mobile money operator code, e.g. MTN_MOMO_RWA")
    base_rate: Optional[Decimal] = Field(
        None, gt=0, description="Override the settlement-to-local base rate"
    )


class RefundCreatePayload(BaseModel):
    amount: Optional[Decimal] = Field(
        None, gt=0, description="Settlement amount to refund; the whole deposit when omitted"
    )


class PayoutCreatePayload(BaseModel):
    recipient_id: str = Field(..., description="User receiving the funds")
    amount: Decimal = Field(..., gt=0, description="Amount in the settlement currency")
    phone_number: str = Field(..., description="Recipient phone number")
    provider: str = Field(..., description="Mobile money operator code")
    internal_reference: Optional[str] = Field(None, description="Withdrawal or booking reference")


class BulkPayoutCreatePayload(BaseModel):
    payouts: list[PayoutCreatePayload] = Field(..., min_length=1, max_length=100)
    base_rate: Optional[Decimal] = Field(None, gt=0)
