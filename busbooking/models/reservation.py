from decimal import Decimal
from sqlalchemy import String, Numeric, DateTime, JSON, Text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from busbooking.db.session import Base

BOOKING_CONFIRMED = "CONFIRMED"
BOOKING_CANCEL_REQUESTED = "CANCEL_REQUESTED"
BOOKING_CANCELLED = "CANCELLED"
BOOKING_COMPLETED = "COMPLETED"

# Reservations in these states hold their seats
SEAT_HOLDING_STATUSES = (BOOKING_CONFIRMED, BOOKING_CANCEL_REQUESTED, BOOKING_COMPLETED)

PAY_PENDING = "PENDING"
PAY_PAID = "PAID"
PAY_CANCELLED = "CANCELLED"
PAY_REFUND_PENDING = "REFUND_PENDING"
PAY_REFUNDED = "REFUNDED"

class Reservation(Base):
    __tablename__ = "reservations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_code: Mapped[str] = mapped_column(String(20), unique=True, index=True)

    trip_id: Mapped[str] = mapped_column(String(36), index=True)
    company_id: Mapped[str] = mapped_column(String(36), index=True)
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)  # null for guest checkout

    passenger_name: Mapped[str] = mapped_column(String(200))
    passenger_phone: Mapped[str] = mapped_column(String(40))
    passenger_email: Mapped[str | None] = mapped_column(String(320), nullable=True)

    seat_numbers: Mapped[list] = mapped_column(JSON)  # normalized seat numbers, never changed after insert

    total_price: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    voucher_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    payment_method: Mapped[str] = mapped_column(String(20), default="VNPAY")
    booking_status: Mapped[str] = mapped_column(String(20), default=BOOKING_CONFIRMED, index=True)
    payment_status: Mapped[str] = mapped_column(String(20), default=PAY_PENDING, index=True)

    cancel_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    refund_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc))

    @property
    def payable_amount(self) -> Decimal:
        return max(Decimal(self.total_price) - Decimal(self.discount_amount or 0), Decimal("0"))
