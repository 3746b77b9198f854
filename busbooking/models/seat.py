from decimal import Decimal
from sqlalchemy import String, Numeric, Boolean, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from busbooking.db.session import Base

class Seat(Base):
    __tablename__ = "seats"
    __table_args__ = (
        UniqueConstraint("bus_id", "seat_number", name="uq_seat_bus_number"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    bus_id: Mapped[str] = mapped_column(String(36), index=True)
    seat_number: Mapped[str] = mapped_column(String(10))  # normalized, e.g. "01" or "A1"
    seat_type: Mapped[str] = mapped_column(String(12), default="STANDARD")  # STANDARD|VIP|SLEEPER
    price_multiplier: Mapped[Decimal] = mapped_column(Numeric(3, 2), default=Decimal("1.00"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
