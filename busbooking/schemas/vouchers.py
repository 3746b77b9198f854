from decimal import Decimal
from pydantic import Field
from typing import Optional

from busbooking.schemas.common import StrictModel


class VoucherValidateRequest(StrictModel):
    code: str = Field(min_length=1, max_length=64)
    companyId: Optional[str] = None
    orderAmount: Decimal = Field(ge=0)
