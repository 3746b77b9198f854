from decimal import Decimal
from sqlalchemy import String, Integer, Numeric, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from busbooking.db.session import Base

TRIP_SCHEDULED = "SCHEDULED"
TRIP_IN_PROGRESS = "IN_PROGRESS"
TRIP_COMPLETED = "COMPLETED"
TRIP_CANCELLED = "CANCELLED"

class Trip(Base):
    __tablename__ = "trips"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    company_id: Mapped[str] = mapped_column(String(36), index=True)
    bus_id: Mapped[str] = mapped_column(String(36), index=True)
    driver_user_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    from_label: Mapped[str] = mapped_column(String(120), default="")
    to_label: Mapped[str] = mapped_column(String(120), default="")
    departure_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    arrival_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    base_price: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    total_seats: Mapped[int] = mapped_column(Integer)

    status: Mapped[str] = mapped_column(String(20), default=TRIP_SCHEDULED, index=True)  # SCHEDULED, IN_PROGRESS, COMPLETED, CANCELLED
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
