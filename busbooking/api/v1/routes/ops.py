from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from sqlalchemy import select

from busbooking.db.session import get_db
from busbooking.api.deps import require_roles, get_vnpay_client
from busbooking.models.user import User
from busbooking.models.reservation import Reservation
from busbooking.models.payment import Payment
from busbooking.models.gateway_transaction import GatewayTransaction
from busbooking.schemas.booking import CancellationDecision, RefundComplete
from busbooking.schemas.common import ok
from busbooking.services import booking_service, payment_service
from busbooking.services.booking_service import reservation_to_dict, payment_to_dict
from busbooking.services.vnpay_client import VNPayClient

router = APIRouter(prefix="/ops", tags=["ops"])

staff = require_roles("admin", "company")


def _check_company(user: User, company_id: str | None):
    if user.role == "company" and user.company_id != company_id:
        raise HTTPException(status_code=404, detail="Not found")


def _scoped_reservation(db: Session, code: str, user: User):
    r = db.execute(
        select(Reservation).where(Reservation.booking_code == code.strip().upper())
    ).scalar_one_or_none()
    if not r:
        raise HTTPException(status_code=404, detail="Reservation not found")
    _check_company(user, r.company_id)
    db.rollback()


@router.post("/reservations/{code}/cancellation/approve")
def approve_cancellation(code: str, payload: CancellationDecision, db: Session = Depends(get_db), user: User = Depends(staff)):
    _scoped_reservation(db, code, user)
    r = booking_service.approve_cancellation(db, code, user.id, note=payload.note)
    return ok(reservation_to_dict(r))


@router.post("/reservations/{code}/cancellation/reject")
def reject_cancellation(code: str, payload: CancellationDecision, db: Session = Depends(get_db), user: User = Depends(staff)):
    _scoped_reservation(db, code, user)
    r = booking_service.reject_cancellation(db, code, user.id, note=payload.note)
    return ok(reservation_to_dict(r))


@router.post("/reservations/{code}/refund/complete")
def complete_refund(code: str, payload: RefundComplete, db: Session = Depends(get_db), user: User = Depends(require_roles("admin"))):
    r = booking_service.complete_refund(db, code, user.id, reference=payload.reference)
    return ok(reservation_to_dict(r))


@router.post("/payments/{payment_id}/void")
def void_payment(payment_id: str, db: Session = Depends(get_db), user: User = Depends(staff)):
    p = db.get(Payment, payment_id)
    if not p:
        raise HTTPException(status_code=404, detail="Payment not found")
    _check_company(user, p.company_id)
    db.rollback()
    p = booking_service.void_payment(db, payment_id, user.id)
    return ok(payment_to_dict(p))


@router.post("/payments/{order_id}/reconcile")
def reconcile_payment(
    order_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(staff),
    client: VNPayClient = Depends(get_vnpay_client),
):
    tx = db.execute(select(GatewayTransaction).where(GatewayTransaction.order_id == order_id)).scalar_one_or_none()
    if tx:
        p = db.get(Payment, tx.payment_id)
        _check_company(user, p.company_id if p else None)
    db.rollback()
    outcome = payment_service.reconcile_payment(db, order_id, client=client)
    return ok({
        "orderId": order_id,
        "ackCode": outcome.ack_code,
        "paymentStatus": outcome.payment_status,
        "result": outcome.result,
        "applied": outcome.applied,
    })
