from pydantic import Field
from typing import Literal, Optional

from busbooking.schemas.common import StrictModel


class TripStatusUpdate(StrictModel):
    status: Literal["SCHEDULED", "IN_PROGRESS", "COMPLETED", "CANCELLED"]
    note: Optional[str] = Field(default=None, max_length=1000)


class TripIssueReport(StrictModel):
    note: str = Field(min_length=1, max_length=4000)
