from decimal import Decimal
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from busbooking.db.session import get_db
from busbooking.api.deps import get_optional_user
from busbooking.core.config import settings
from busbooking.core.errors import ValidationError
from busbooking.models.user import User
from busbooking.schemas.common import ok
from busbooking.schemas.vouchers import VoucherValidateRequest
from busbooking.services import voucher_service

router = APIRouter(prefix="/public/vouchers", tags=["vouchers"])


def _require_enabled():
    if not settings.VOUCHERS_ENABLED:
        raise ValidationError("vouchers are not accepted at the moment")


@router.post("/validate")
def validate_voucher(payload: VoucherValidateRequest, db: Session = Depends(get_db), user: User | None = Depends(get_optional_user)):
    _require_enabled()
    check = voucher_service.validate_voucher(
        db, payload.code, payload.companyId, payload.orderAmount, user.id if user else None
    )
    return ok(check.to_dict())


@router.get("")
def list_vouchers(
    orderAmount: Decimal = Query(ge=0),
    companyId: str | None = None,
    db: Session = Depends(get_db),
    user: User | None = Depends(get_optional_user),
):
    _require_enabled()
    checks = voucher_service.available_vouchers(db, companyId, orderAmount, user.id if user else None)
    return ok([c.to_dict() for c in checks])
