"""Voucher validation and redemption.

This module is the only writer of ``vouchers.used_count``. Increments and
decrements are single UPDATE statements so concurrent redemptions against
the last slot cannot both succeed.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime, time, timezone
from decimal import Decimal, ROUND_HALF_UP
from sqlalchemy.orm import Session
from sqlalchemy import select, update, func, or_, case

from busbooking.core.errors import ConflictError, NotFoundError, ValidationError
from busbooking.core.timeutil import as_utc, utcnow
from busbooking.models.voucher import Voucher, VoucherUsage

# Rejection reasons, in the order they are checked
NOT_FOUND = "NOT_FOUND"
INACTIVE = "INACTIVE"
NOT_STARTED = "NOT_STARTED"
EXPIRED = "EXPIRED"
SCOPE_MISMATCH = "SCOPE_MISMATCH"
EXHAUSTED = "EXHAUSTED"
USER_LIMIT = "USER_LIMIT"
MIN_ORDER = "MIN_ORDER"
ZERO_DISCOUNT = "ZERO_DISCOUNT"

_MESSAGES = {
    NOT_FOUND: "voucher not found",
    INACTIVE: "voucher is disabled",
    NOT_STARTED: "voucher is not valid yet",
    EXPIRED: "voucher has expired",
    SCOPE_MISMATCH: "voucher does not apply to this bus company",
    EXHAUSTED: "voucher has been fully used",
    USER_LIMIT: "you have already used this voucher the maximum number of times",
    MIN_ORDER: "order amount is below the voucher minimum",
    ZERO_DISCOUNT: "voucher gives no discount for this order",
}

CENT = Decimal("0.01")


@dataclass
class VoucherCheck:
    valid: bool
    voucher: Voucher | None = None
    discount: Decimal = Decimal("0")
    reason: str | None = None

    @property
    def message(self) -> str:
        return _MESSAGES.get(self.reason, "voucher is valid") if self.reason else "voucher is valid"

    def raise_for_reason(self):
        if self.valid:
            return
        if self.reason == NOT_FOUND:
            raise NotFoundError(self.message, reason=self.reason)
        if self.reason in (EXHAUSTED, USER_LIMIT):
            raise ConflictError(self.message, reason=self.reason)
        raise ValidationError(self.message, reason=self.reason)

    def to_dict(self) -> dict:
        v = self.voucher
        return {
            "valid": self.valid,
            "reason": self.reason,
            "message": self.message,
            "discountAmount": str(self.discount),
            "voucher": None if v is None else {
                "id": v.id,
                "code": v.code,
                "name": v.name,
                "companyId": v.company_id,
                "discountType": v.discount_type,
                "discountValue": str(v.discount_value),
                "minOrderValue": None if v.min_order_value is None else str(v.min_order_value),
                "maxDiscount": None if v.max_discount is None else str(v.max_discount),
                "usageLimit": v.usage_limit,
                "usagePerUser": v.usage_per_user,
                "usedCount": v.used_count,
            },
        }


def normalize_code(code: str | None) -> str:
    return code.strip().upper() if isinstance(code, str) else ""


def find_voucher_by_code(db: Session, code: str, company_id: str | None = None) -> Voucher | None:
    """Company voucher first, then a global one, then any voucher with that code."""
    normalized = normalize_code(code)
    if not normalized:
        return None
    if company_id is not None:
        exact = db.execute(
            select(Voucher).where(Voucher.code == normalized, Voucher.company_id == company_id).execution_options(populate_existing=True)
        ).scalars().first()
        if exact:
            return exact
        global_match = db.execute(
            select(Voucher).where(Voucher.code == normalized, Voucher.company_id.is_(None)).execution_options(populate_existing=True)
        ).scalars().first()
        if global_match:
            return global_match
    return db.execute(select(Voucher).where(Voucher.code == normalized).execution_options(populate_existing=True)).scalars().first()


def calculate_discount(voucher: Voucher, order_amount: Decimal) -> Decimal:
    """Discount for an order, never more than the order itself."""
    base = max(Decimal(order_amount), Decimal("0"))
    kind = (voucher.discount_type or "").upper()
    if kind == "PERCENT":
        raw = base * Decimal(voucher.discount_value) / Decimal(100)
        if voucher.max_discount is not None:
            raw = min(raw, Decimal(voucher.max_discount))
        discount = min(raw, base)
    elif kind in ("AMOUNT", "FIXED"):
        discount = min(Decimal(voucher.discount_value), base)
    else:
        return Decimal("0")
    return max(discount, Decimal("0")).quantize(CENT, rounding=ROUND_HALF_UP)


def _end_of_window(end: datetime) -> datetime:
    end = as_utc(end)
    # a bare date means the whole day
    if end.time() == time(0, 0):
        return datetime.combine(end.date(), time.max, tzinfo=timezone.utc)
    return end


def user_usage_count(db: Session, voucher_id: str, user_id: str) -> int:
    return db.execute(
        select(func.count(VoucherUsage.id)).where(
            VoucherUsage.voucher_id == voucher_id, VoucherUsage.user_id == user_id
        )
    ).scalar_one()


def validate_voucher(
    db: Session,
    code: str | None,
    company_id: str | None,
    order_amount: Decimal,
    user_id: str | None = None,
    voucher: Voucher | None = None,
    now: datetime | None = None,
) -> VoucherCheck:
    """Run the checks in order; the first failing one is the reported reason. No side effects."""
    now = now or utcnow()
    if voucher is None:
        voucher = find_voucher_by_code(db, code, company_id)
    if voucher is None:
        return VoucherCheck(False, reason=NOT_FOUND)

    if not voucher.is_active:
        return VoucherCheck(False, voucher, reason=INACTIVE)
    if voucher.start_date is not None and as_utc(voucher.start_date) > now:
        return VoucherCheck(False, voucher, reason=NOT_STARTED)
    if voucher.end_date is not None and _end_of_window(voucher.end_date) < now:
        return VoucherCheck(False, voucher, reason=EXPIRED)
    if voucher.company_id is not None and voucher.company_id != company_id:
        return VoucherCheck(False, voucher, reason=SCOPE_MISMATCH)
    if voucher.usage_limit is not None and (voucher.used_count or 0) >= voucher.usage_limit:
        return VoucherCheck(False, voucher, reason=EXHAUSTED)
    if voucher.usage_per_user is not None and user_id:
        if user_usage_count(db, voucher.id, user_id) >= voucher.usage_per_user:
            return VoucherCheck(False, voucher, reason=USER_LIMIT)

    amount = Decimal(order_amount)
    if voucher.min_order_value is not None and amount < Decimal(voucher.min_order_value):
        return VoucherCheck(False, voucher, reason=MIN_ORDER)

    discount = calculate_discount(voucher, amount)
    if discount <= 0:
        return VoucherCheck(False, voucher, reason=ZERO_DISCOUNT)
    return VoucherCheck(True, voucher, discount)


def redeem(db: Session, voucher: Voucher, reservation_id: str, user_id: str | None, discount: Decimal) -> VoucherUsage:
    """Consume one use of the voucher for a reservation. Runs in the caller's transaction; caller commits.

    Raises ConflictError when the last slot (or the user's allowance) was taken
    between validation and now.
    """
    # Serializes the per-user count below against other redemptions of this voucher
    db.execute(select(Voucher.id).where(Voucher.id == voucher.id).with_for_update()).scalar_one()

    if voucher.usage_per_user is not None and user_id:
        if user_usage_count(db, voucher.id, user_id) >= voucher.usage_per_user:
            raise ConflictError(_MESSAGES[USER_LIMIT], reason=USER_LIMIT)

    res = db.execute(
        update(Voucher)
        .where(
            Voucher.id == voucher.id,
            or_(Voucher.usage_limit.is_(None), Voucher.used_count < Voucher.usage_limit),
        )
        .values(used_count=Voucher.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise ConflictError(_MESSAGES[EXHAUSTED], reason=EXHAUSTED)
    db.expire(voucher, ["used_count"])

    usage = VoucherUsage(
        id=str(uuid.uuid4()),
        voucher_id=voucher.id,
        reservation_id=reservation_id,
        user_id=user_id,
        applied_discount=discount,
    )
    db.add(usage)
    return usage


def rollback_usage(db: Session, reservation_id: str) -> bool:
    """Give back the use consumed by a reservation. Returns False if it had none. Caller commits."""
    usage = db.execute(
        select(VoucherUsage).where(VoucherUsage.reservation_id == reservation_id)
    ).scalar_one_or_none()
    if not usage:
        return False
    db.execute(
        update(Voucher)
        .where(Voucher.id == usage.voucher_id)
        .values(used_count=case((Voucher.used_count > 0, Voucher.used_count - 1), else_=0))
        .execution_options(synchronize_session=False)
    )
    v = db.get(Voucher, usage.voucher_id)
    if v is not None:
        db.expire(v, ["used_count"])
    db.delete(usage)
    return True


def available_vouchers(db: Session, company_id: str | None, order_amount: Decimal, user_id: str | None = None) -> list[VoucherCheck]:
    """Active, in-window vouchers for a company plus global ones, each checked against the order."""
    now = utcnow()
    scope = Voucher.company_id.is_(None)
    if company_id is not None:
        scope = or_(scope, Voucher.company_id == company_id)
    rows = db.execute(
        select(Voucher).where(Voucher.is_active.is_(True), scope).order_by(Voucher.created_at.desc())
    ).scalars().all()

    out = []
    for v in rows:
        check = validate_voucher(db, v.code, company_id, order_amount, user_id, voucher=v, now=now)
        if check.reason in (NOT_STARTED, EXPIRED):
            continue
        out.append(check)
    return out
