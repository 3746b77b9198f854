from decimal import Decimal
from sqlalchemy import String, Integer, Numeric, DateTime, Boolean, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from busbooking.db.session import Base

class Voucher(Base):
    __tablename__ = "vouchers"
    __table_args__ = (
        UniqueConstraint("code", "company_id", name="uq_voucher_code_company"),
        CheckConstraint("usage_limit IS NULL OR used_count <= usage_limit", name="ck_voucher_used_within_limit"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    code: Mapped[str] = mapped_column(String(64), index=True)  # stored upper-case
    name: Mapped[str] = mapped_column(String(255), default="")
    company_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)  # null = global

    discount_type: Mapped[str] = mapped_column(String(10))  # PERCENT|AMOUNT
    discount_value: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    min_order_value: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    max_discount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    usage_per_user: Mapped[int | None] = mapped_column(Integer, nullable=True)
    used_count: Mapped[int] = mapped_column(Integer, default=0)  # written only by voucher_service

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))


class VoucherUsage(Base):
    __tablename__ = "voucher_usages"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    voucher_id: Mapped[str] = mapped_column(String(36), index=True)
    reservation_id: Mapped[str] = mapped_column(String(36), unique=True, index=True)
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    applied_discount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
