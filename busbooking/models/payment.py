from decimal import Decimal
from sqlalchemy import String, Numeric, DateTime, Index, text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from busbooking.db.session import Base

PAYMENT_PENDING = "PENDING"
PAYMENT_PAID = "PAID"
PAYMENT_FAILED = "FAILED"
PAYMENT_CANCELLED = "CANCELLED"
PAYMENT_REFUND_PENDING = "REFUND_PENDING"
PAYMENT_REFUNDED = "REFUNDED"

# Final for the gateway: callbacks never move a payment out of these
CALLBACK_TERMINAL = (PAYMENT_PAID, PAYMENT_FAILED, PAYMENT_CANCELLED, PAYMENT_REFUND_PENDING, PAYMENT_REFUNDED)

class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        # at most one open attempt per reservation
        Index(
            "uq_payments_one_pending", "reservation_id", unique=True,
            postgresql_where=text("status = 'PENDING'"),
            sqlite_where=text("status = 'PENDING'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    payment_code: Mapped[str] = mapped_column(String(30), unique=True, index=True)
    reservation_id: Mapped[str] = mapped_column(String(36), index=True)
    company_id: Mapped[str] = mapped_column(String(36), index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))  # payable after discount
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0"))
    voucher_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    payment_method: Mapped[str] = mapped_column(String(20), default="VNPAY")

    status: Mapped[str] = mapped_column(String(20), default=PAYMENT_PENDING, index=True)
    transaction_id: Mapped[str | None] = mapped_column(String(64), nullable=True)  # gateway-assigned
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
