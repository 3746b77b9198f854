from sqlalchemy import String, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from busbooking.db.session import Base

class Bus(Base):
    __tablename__ = "buses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    company_id: Mapped[str] = mapped_column(String(36), index=True)
    bus_number: Mapped[str] = mapped_column(String(30), unique=True)
    bus_type: Mapped[str] = mapped_column(String(40), default="STANDARD")  # free text, e.g. "Limousine 22 VIP"
    total_seats: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
