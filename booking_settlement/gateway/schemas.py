"""
Wire models for the mobile-money gateway.

Field names follow the provider's camelCase JSON. Amounts are strings in the
currency's minor unit.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field


class MetadataField(BaseModel):
    fieldName: str
    fieldValue: str
    isPII: bool = False


class AccountDetails(BaseModel):
    phoneNumber: str = Field(..., description="MSISDN, digits only, with country prefix")
    provider: str = Field(..., description="Mobile money operator code, e.g. MTN_MOMO_RWA")


class Party(BaseModel):
    type: str = "MMO"
    accountDetails: AccountDetails


class DepositRequest(BaseModel):
    depositId: str
    amount: str
    currency: str
    payer: Party
    customerMessage: Optional[str] = Field(None, max_length=22)
    metadata: list[MetadataField] = Field(default_factory=list)


class PayoutRequest(BaseModel):
    payoutId: str
    amount: str
    currency: str
    recipient: Party
    customerMessage: Optional[str] = Field(None, max_length=22)
    metadata: list[MetadataField] = Field(default_factory=list)


class RefundRequest(BaseModel):
    refundId: str
    depositId: str
    amount: str
    metadata: list[MetadataField] = Field(default_factory=list)


class FailureReason(BaseModel):
    failureCode: Optional[str] = None
    failureMessage: Optional[str] = None


class GatewayStatus(BaseModel):
    """
    Provider answer normalised to the internal status vocabulary.

    ``status`` is one of PENDING, ACCEPTED, SUBMITTED, COMPLETED, FAILED, or
    None when the provider does not know the transaction.
    """

    transaction_id: str
    status: Optional[str] = None
    provider_status: Optional[str] = None
    provider_transaction_id: Optional[str] = None
    financial_transaction_id: Optional[str] = None
    correspondent: Optional[str] = None
    amount: Optional[str] = None
    currency: Optional[str] = None
    received_by_provider: Optional[str] = None
    failure: Optional[FailureReason] = None
    raw: dict[str, Any] = Field(default_factory=dict)
