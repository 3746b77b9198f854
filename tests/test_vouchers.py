from datetime import timedelta
from decimal import Decimal

import pytest

from busbooking.core.errors import ConflictError
from busbooking.core.timeutil import utcnow
from busbooking.models.voucher import Voucher, VoucherUsage
from busbooking.services import voucher_service
from busbooking.services.voucher_service import (
    EXHAUSTED, EXPIRED, INACTIVE, MIN_ORDER, NOT_FOUND, NOT_STARTED, SCOPE_MISMATCH, USER_LIMIT,
)

from conftest import COMPANY_ID, OTHER_COMPANY_ID, create_voucher, reload


def test_percent_discount_is_capped():
    v = Voucher(discount_type="PERCENT", discount_value=Decimal("20"), max_discount=Decimal("30000"))
    assert voucher_service.calculate_discount(v, Decimal("100000")) == Decimal("20000.00")
    assert voucher_service.calculate_discount(v, Decimal("500000")) == Decimal("30000.00")


def test_amount_discount_never_exceeds_order():
    v = Voucher(discount_type="AMOUNT", discount_value=Decimal("50000"), max_discount=None)
    assert voucher_service.calculate_discount(v, Decimal("80000")) == Decimal("50000.00")
    assert voucher_service.calculate_discount(v, Decimal("30000")) == Decimal("30000.00")


def test_code_is_normalized(db):
    create_voucher("SUMMER")
    check = voucher_service.validate_voucher(db, "  summer ", COMPANY_ID, Decimal("100000"))
    assert check.valid
    assert check.discount == Decimal("10000.00")


@pytest.mark.parametrize("fields,reason", [
    ({"is_active": False}, INACTIVE),
    ({"start_date": utcnow() + timedelta(days=1)}, NOT_STARTED),
    ({"end_date": utcnow() - timedelta(days=2)}, EXPIRED),
    ({"company_id": OTHER_COMPANY_ID}, SCOPE_MISMATCH),
    ({"usage_limit": 1, "used_count": 1}, EXHAUSTED),
    ({"min_order_value": Decimal("500000")}, MIN_ORDER),
])
def test_rejection_reasons(db, fields, reason):
    create_voucher("CODE", **fields)
    check = voucher_service.validate_voucher(db, "CODE", COMPANY_ID, Decimal("100000"))
    assert not check.valid
    assert check.reason == reason


def test_unknown_code(db):
    check = voucher_service.validate_voucher(db, "NOPE", COMPANY_ID, Decimal("100000"))
    assert check.reason == NOT_FOUND


def test_first_failing_check_is_reported(db):
    # inactive and exhausted: inactive is checked first
    create_voucher("BOTH", is_active=False, usage_limit=1, used_count=1)
    check = voucher_service.validate_voucher(db, "BOTH", COMPANY_ID, Decimal("100000"))
    assert check.reason == INACTIVE


def test_company_voucher_preferred_over_global(db):
    create_voucher("SHARED", discount_value=Decimal("5"))
    company = create_voucher("SHARED", company_id=COMPANY_ID, discount_value=Decimal("15"))
    check = voucher_service.validate_voucher(db, "SHARED", COMPANY_ID, Decimal("100000"))
    assert check.voucher.id == company.id
    assert check.discount == Decimal("15000.00")


def test_redeem_and_rollback_adjust_used_count(db):
    v = create_voucher("ONCE", usage_limit=2)
    voucher = db.get(Voucher, v.id)
    voucher_service.redeem(db, voucher, "res-1", "user-1", Decimal("1000"))
    db.commit()
    assert reload(Voucher, v.id).used_count == 1

    assert voucher_service.rollback_usage(db, "res-1") is True
    db.commit()
    assert reload(Voucher, v.id).used_count == 0
    assert db.query(VoucherUsage).count() == 0
    db.rollback()
    assert voucher_service.rollback_usage(db, "res-1") is False


def test_redeem_refuses_past_the_limit(db):
    v = create_voucher("LAST", usage_limit=1, used_count=1)
    voucher = db.get(Voucher, v.id)
    with pytest.raises(ConflictError):
        voucher_service.redeem(db, voucher, "res-2", None, Decimal("1000"))
    db.rollback()
    assert reload(Voucher, v.id).used_count == 1


def test_per_user_limit(db):
    v = create_voucher("PERUSER", usage_per_user=1)
    voucher = db.get(Voucher, v.id)
    voucher_service.redeem(db, voucher, "res-a", "user-1", Decimal("1000"))
    db.commit()

    check = voucher_service.validate_voucher(db, "PERUSER", COMPANY_ID, Decimal("100000"), user_id="user-1")
    assert check.reason == USER_LIMIT
    with pytest.raises(ConflictError):
        voucher_service.redeem(db, voucher, "res-b", "user-1", Decimal("1000"))
    db.rollback()
    # another user is unaffected
    assert voucher_service.validate_voucher(db, "PERUSER", COMPANY_ID, Decimal("100000"), user_id="user-2").valid


def test_rollback_floors_at_zero(db):
    v = create_voucher("FLOOR", used_count=0)
    db.add(VoucherUsage(id="u-1", voucher_id=v.id, reservation_id="res-z", user_id=None, applied_discount=Decimal("1")))
    db.commit()
    voucher_service.rollback_usage(db, "res-z")
    db.commit()
    assert reload(Voucher, v.id).used_count == 0


def test_available_vouchers_lists_company_and_global(db):
    create_voucher("GLOBAL")
    create_voucher("MINE", company_id=COMPANY_ID)
    create_voucher("THEIRS", company_id=OTHER_COMPANY_ID)
    create_voucher("OLD", end_date=utcnow() - timedelta(days=3))
    checks = voucher_service.available_vouchers(db, COMPANY_ID, Decimal("100000"))
    assert sorted(c.voucher.code for c in checks) == ["GLOBAL", "MINE"]
    assert all(c.valid for c in checks)
