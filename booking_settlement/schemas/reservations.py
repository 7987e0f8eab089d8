from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, Field


class StayPayload(BaseModel):
    """
    Schema for a date interval. end_date is the checkout day and is not a night.
    """

    start_date: date = Field(..., description="First night (inclusive)")
    end_date: date = Field(..., description="Checkout day (exclusive)")


class ReservationCreatePayload(StayPayload):
    resource_id: str = Field(..., description="Property or tour to book")
    requester_id: str = Field(..., description="Booking user")
    guests: int = Field(1, description="Number of guests or participants")


class ReservationCancelPayload(BaseModel):
    cancelled_by: Literal["owner", "requester"] = Field(
        ..., description="Role of the party cancelling"
    )
    initiate_refund: bool = Field(
        True, description="Submit the computed refund to the gateway when it is non-zero"
    )


class BlockedRangeCreatePayload(StayPayload):
    reason: Optional[str] = Field(None, max_length=255, description="Why the dates are blocked")
    created_by: Optional[str] = Field(None, description="Owner blocking the dates")
