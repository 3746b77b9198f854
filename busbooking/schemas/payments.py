from pydantic import Field
from typing import Optional

from busbooking.schemas.common import StrictModel


class RedirectRequest(StrictModel):
    bankCode: Optional[str] = Field(default=None, max_length=30)
