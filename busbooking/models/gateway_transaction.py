from decimal import Decimal
from sqlalchemy import String, Numeric, DateTime, Boolean, JSON, Text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from busbooking.db.session import Base

class GatewayTransaction(Base):
    """One redirect/callback cycle with the payment processor for one Payment."""
    __tablename__ = "gateway_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    payment_id: Mapped[str] = mapped_column(String(36), unique=True, index=True)
    order_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)  # vnp_TxnRef, idempotency key

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    order_info: Mapped[str] = mapped_column(String(255), default="")
    payment_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    status: Mapped[str] = mapped_column(String(20), default="PENDING")  # PENDING, SUCCESS, FAILED
    result: Mapped[str | None] = mapped_column(String(30), nullable=True)  # mapped response taxonomy
    response_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    transaction_no: Mapped[str | None] = mapped_column(String(64), nullable=True)
    bank_code: Mapped[str | None] = mapped_column(String(30), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    signature_valid: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    raw_params: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
