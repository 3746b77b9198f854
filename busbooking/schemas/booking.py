from pydantic import Field
from typing import List, Optional, Union

from busbooking.schemas.common import StrictModel


class PassengerIn(StrictModel):
    name: str = Field(min_length=1, max_length=200)
    phone: str = Field(min_length=6, max_length=40)
    email: Optional[str] = Field(default=None, max_length=320)  # plain str to allow .local and other dev domains


class ReservationCreate(StrictModel):
    tripId: str
    seatNumbers: List[Union[str, int]] = Field(min_length=1, max_length=20)
    passenger: PassengerIn
    voucherCode: Optional[str] = None
    # book without the discount instead of failing when the voucher is refused
    voucherOptional: bool = False


class CancellationRequest(StrictModel):
    reason: Optional[str] = Field(default=None, max_length=500)
    # guest checkouts prove ownership with the phone used to book
    phone: Optional[str] = None


class CancellationDecision(StrictModel):
    note: Optional[str] = Field(default=None, max_length=500)


class RefundComplete(StrictModel):
    reference: Optional[str] = Field(default=None, max_length=100)
