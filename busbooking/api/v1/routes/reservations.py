from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from sqlalchemy import select

from busbooking.db.session import get_db
from busbooking.api.deps import get_optional_user, owned_reservation
from busbooking.models.user import User
from busbooking.models.payment import Payment
from busbooking.schemas.booking import ReservationCreate, CancellationRequest
from busbooking.schemas.common import ok
from busbooking.services import booking_service
from busbooking.services.booking_service import reservation_to_dict, payment_to_dict

router = APIRouter(prefix="/public/reservations", tags=["reservations"])


def _actor(user: User | None) -> str:
    return user.id if user else "guest"


@router.post("", status_code=201)
def create_reservation(payload: ReservationCreate, db: Session = Depends(get_db), user: User | None = Depends(get_optional_user)):
    result = booking_service.create_reservation(
        db,
        trip_id=payload.tripId,
        seat_numbers=payload.seatNumbers,
        passenger=payload.passenger.model_dump(),
        voucher_code=payload.voucherCode,
        voucher_optional=payload.voucherOptional,
        user_id=user.id if user else None,
    )
    data = reservation_to_dict(result.reservation, result.payment)
    data["warnings"] = result.warnings
    return ok(data)


@router.get("/{code}")
def get_reservation(code: str, phone: str | None = None, db: Session = Depends(get_db), user: User | None = Depends(get_optional_user)):
    r = owned_reservation(db, code, user, phone)
    payments = db.execute(
        select(Payment).where(Payment.reservation_id == r.id).order_by(Payment.created_at.asc())
    ).scalars().all()
    data = reservation_to_dict(r)
    data["payments"] = [payment_to_dict(p) for p in payments]
    return ok(data)


@router.post("/{code}/cancel")
def request_cancellation(code: str, payload: CancellationRequest, db: Session = Depends(get_db), user: User | None = Depends(get_optional_user)):
    owned_reservation(db, code, user, payload.phone)
    db.rollback()
    r = booking_service.request_cancellation(db, code, _actor(user), reason=payload.reason)
    return ok(reservation_to_dict(r))


@router.post("/{code}/payments", status_code=201)
def create_payment_attempt(code: str, phone: str | None = None, db: Session = Depends(get_db), user: User | None = Depends(get_optional_user)):
    owned_reservation(db, code, user, phone)
    db.rollback()
    p = booking_service.create_payment_attempt(db, code, _actor(user))
    return ok(payment_to_dict(p))
