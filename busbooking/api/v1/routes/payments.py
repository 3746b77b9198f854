import logging
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from busbooking.db.session import get_db
from busbooking.api.deps import client_ip, ensure_reservation_access, get_optional_user, get_vnpay_client
from busbooking.core.config import settings
from busbooking.core.errors import SignatureError
from busbooking.models.payment import Payment, PAYMENT_PAID
from busbooking.models.reservation import Reservation
from busbooking.models.user import User
from busbooking.schemas.common import ok
from busbooking.schemas.payments import RedirectRequest
from busbooking.services import payment_service
from busbooking.services.vnpay_client import VNPayClient

logger = logging.getLogger(__name__)

router = APIRouter(tags=["payments"])


@router.post("/public/payments/{payment_id}/redirect")
def create_redirect(
    payment_id: str,
    request: Request,
    payload: RedirectRequest | None = None,
    phone: str | None = None,
    db: Session = Depends(get_db),
    user: User | None = Depends(get_optional_user),
    client: VNPayClient = Depends(get_vnpay_client),
):
    payment = db.get(Payment, payment_id)
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")
    ensure_reservation_access(db.get(Reservation, payment.reservation_id), user, phone)
    bank_code = payload.bankCode if payload else None
    return ok(payment_service.build_redirect(db, payment_id, client_ip(request), bank_code=bank_code, client=client))


@router.get("/payments/vnpay/ipn")
def vnpay_ipn(request: Request, db: Session = Depends(get_db), client: VNPayClient = Depends(get_vnpay_client)):
    """Server-to-server notification. Always answers 200 with an ack code; the gateway retries on 99."""
    params = dict(request.query_params)
    try:
        verified = client.verify_callback(params)
    except SignatureError:
        return payment_service.ack_for(payment_service.ACK_INVALID_SIGNATURE)
    try:
        outcome = payment_service.apply_callback(db, verified, source="ipn")
    except Exception:
        logger.exception("ipn for order %r failed", params.get("vnp_TxnRef"))
        return payment_service.ack_for(payment_service.ACK_UNKNOWN_ERROR)
    return outcome.ack


@router.get("/payments/vnpay/return")
def vnpay_return(request: Request, db: Session = Depends(get_db), client: VNPayClient = Depends(get_vnpay_client)):
    """Browser lands here after the gateway; apply the same result, then send the user to the frontend."""
    base = settings.FRONTEND_URL.rstrip("/")
    params = dict(request.query_params)
    try:
        verified = client.verify_callback(params)
    except SignatureError:
        return RedirectResponse(f"{base}/payment/failed?reason=signature", status_code=302)
    try:
        outcome = payment_service.apply_callback(db, verified, source="return")
    except Exception:
        logger.exception("return for order %r failed", params.get("vnp_TxnRef"))
        return RedirectResponse(f"{base}/payment/failed?reason=error", status_code=302)

    code = outcome.booking_code or ""
    if outcome.payment_status == PAYMENT_PAID:
        return RedirectResponse(f"{base}/payment/success?code={code}", status_code=302)
    return RedirectResponse(f"{base}/payment/failed?code={code}&result={outcome.result or ''}", status_code=302)
