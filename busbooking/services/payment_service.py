"""Payment reconciliation: redirects out, callbacks in.

A callback is applied at most once per order: the idempotency check runs
under the same reservation/payment row locks as the state change, so
duplicate or reordered deliveries serialize and the later ones see a
terminal payment and change nothing.
"""
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from sqlalchemy.orm import Session
from sqlalchemy import select

from busbooking.core.errors import ExternalUnavailable, ForbiddenTransition, NotFoundError
from busbooking.core.timeutil import as_utc, utcnow
from busbooking.models.gateway_transaction import GatewayTransaction
from busbooking.models.payment import (
    Payment,
    CALLBACK_TERMINAL,
    PAYMENT_PENDING,
    PAYMENT_PAID,
    PAYMENT_FAILED,
    PAYMENT_CANCELLED,
)
from busbooking.models.reservation import PAY_PENDING, PAY_PAID
from busbooking.services import vnpay_client
from busbooking.services.audit_service import log_audit
from busbooking.services.booking_service import lock_reservation
from busbooking.services.email_service import notify_reservation_paid
from busbooking.services.vnpay_client import VNPayClient, VerifiedCallback

logger = logging.getLogger(__name__)

GATEWAY_ACTOR = "vnpay"

# Acknowledgement codes the gateway expects back from the IPN endpoint
ACK_CONFIRMED = "00"
ACK_ORDER_NOT_FOUND = "01"
ACK_ALREADY_PROCESSED = "02"
ACK_INVALID_AMOUNT = "04"
ACK_INVALID_SIGNATURE = "97"
ACK_UNKNOWN_ERROR = "99"

_ACK_MESSAGES = {
    ACK_CONFIRMED: "Confirm Success",
    ACK_ORDER_NOT_FOUND: "Order not found",
    ACK_ALREADY_PROCESSED: "Order already confirmed",
    ACK_INVALID_AMOUNT: "Invalid amount",
    ACK_INVALID_SIGNATURE: "Invalid signature",
    ACK_UNKNOWN_ERROR: "Unknown error",
}


@dataclass
class CallbackOutcome:
    ack_code: str
    payment_status: str | None = None
    result: str | None = None
    booking_code: str | None = None
    applied: bool = False

    @property
    def ack(self) -> dict:
        return {"RspCode": self.ack_code, "Message": _ACK_MESSAGES[self.ack_code]}


def ack_for(code: str) -> dict:
    return {"RspCode": code, "Message": _ACK_MESSAGES[code]}


def build_redirect(db: Session, payment_id: str, ip_addr: str, bank_code: str | None = None, client: VNPayClient | None = None) -> dict:
    """Return a signed gateway URL for a pending payment.

    One gateway order per payment; a still-valid URL is handed back again.
    An expired one needs a new payment attempt.
    """
    client = client or VNPayClient()
    try:
        payment = db.get(Payment, payment_id)
        if not payment:
            raise NotFoundError("payment not found")
        r = lock_reservation(db, reservation_id=payment.reservation_id)
        payment = db.execute(select(Payment).where(Payment.id == payment_id).with_for_update().execution_options(populate_existing=True)).scalar_one()
        if payment.status != PAYMENT_PENDING:
            raise ForbiddenTransition(f"payment is {payment.status}", paymentStatus=payment.status)

        now = utcnow()
        tx = db.execute(select(GatewayTransaction).where(GatewayTransaction.payment_id == payment.id)).scalar_one_or_none()
        if tx is not None:
            if as_utc(tx.expires_at) > now and tx.payment_url:
                db.commit()
                return _redirect_dict(tx)
            raise ForbiddenTransition("payment link has expired; create a new payment attempt")

        order_id = vnpay_client.new_order_id()
        order_info = f"Thanh toan ve {r.booking_code}"
        req = client.build_payment_url(order_id, payment.amount, order_info, ip_addr, bank_code=bank_code, now=now)
        tx = GatewayTransaction(
            id=str(uuid.uuid4()),
            payment_id=payment.id,
            order_id=order_id,
            amount=payment.amount,
            order_info=order_info,
            payment_url=req.url,
            expires_at=req.expires_at,
            status="PENDING",
        )
        db.add(tx)
        log_audit(db, r.user_id or "guest", "payment.redirect_created", "payment", payment.id, {
            "order_id": order_id,
            "amount": payment.amount,
        })
        db.commit()
    except Exception:
        db.rollback()
        raise
    return _redirect_dict(tx)


def _redirect_dict(tx: GatewayTransaction) -> dict:
    return {
        "paymentId": tx.payment_id,
        "orderId": tx.order_id,
        "paymentUrl": tx.payment_url,
        "expiresAt": as_utc(tx.expires_at).isoformat(),
    }


def apply_callback(db: Session, verified: VerifiedCallback, source: str = "ipn") -> CallbackOutcome:
    """Apply a verified gateway result to its payment, exactly once."""
    notify = None
    try:
        tx = db.execute(
            select(GatewayTransaction).where(GatewayTransaction.order_id == verified.order_id)
        ).scalar_one_or_none()
        if tx is None:
            logger.info("callback for unknown order %r ignored (%s)", verified.order_id, source)
            db.rollback()
            return CallbackOutcome(ACK_ORDER_NOT_FOUND)

        payment = db.get(Payment, tx.payment_id)
        r = lock_reservation(db, reservation_id=payment.reservation_id)
        payment = db.execute(select(Payment).where(Payment.id == tx.payment_id).with_for_update().execution_options(populate_existing=True)).scalar_one()
        tx = db.execute(
            select(GatewayTransaction).where(GatewayTransaction.id == tx.id).with_for_update().execution_options(populate_existing=True)
        ).scalar_one()

        result = verified.result

        if payment.status in CALLBACK_TERMINAL:
            outcome = CallbackOutcome(ACK_ALREADY_PROCESSED, payment.status, tx.result or result, r.booking_code)
            if payment.status == PAYMENT_CANCELLED and result == vnpay_client.SUCCESS and tx.status == "PENDING":
                # Money arrived for a voided attempt; record it once for a manual refund
                tx.status = "SUCCESS"
                tx.result = result
                tx.response_code = verified.response_code
                tx.transaction_no = verified.transaction_no
                tx.signature_valid = True
                tx.raw_params = verified.raw
                log_audit(db, GATEWAY_ACTOR, "payment.paid_after_cancel", "payment", payment.id, {
                    "order_id": tx.order_id,
                    "booking_code": r.booking_code,
                    "amount": verified.amount,
                    "transaction_no": verified.transaction_no,
                })
                logger.warning("order %s paid after its payment was cancelled", tx.order_id)
                db.commit()
            else:
                db.rollback()
            return outcome

        if Decimal(verified.amount) != Decimal(tx.amount):
            log_audit(db, GATEWAY_ACTOR, "payment.amount_mismatch", "payment", payment.id, {
                "order_id": tx.order_id,
                "expected": tx.amount,
                "received": verified.amount,
            })
            outcome = CallbackOutcome(ACK_INVALID_AMOUNT, payment.status, None, r.booking_code)
            logger.warning("order %s amount mismatch: expected %s got %s", tx.order_id, tx.amount, verified.amount)
            db.commit()
            return outcome

        now = utcnow()
        tx.result = result
        tx.response_code = verified.response_code
        tx.transaction_no = verified.transaction_no
        tx.bank_code = verified.bank_code
        tx.signature_valid = True
        tx.raw_params = verified.raw

        if result == vnpay_client.SUCCESS:
            tx.status = "SUCCESS"
            tx.paid_at = verified.pay_date or now
            payment.status = PAYMENT_PAID
            payment.transaction_id = verified.transaction_no
            payment.paid_at = verified.pay_date or now
            if r.payment_status == PAY_PENDING:
                r.payment_status = PAY_PAID
                notify = r
        else:
            # the reservation stays bookable for another attempt
            tx.status = "FAILED"
            payment.status = PAYMENT_FAILED

        log_audit(db, GATEWAY_ACTOR, f"payment.{payment.status.lower()}", "payment", payment.id, {
            "order_id": tx.order_id,
            "booking_code": r.booking_code,
            "result": result,
            "response_code": verified.response_code,
            "source": source,
        })
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("order %s -> %s (%s)", tx.order_id, payment.status, result)
    if notify is not None:
        notify_reservation_paid(db, notify)
    return CallbackOutcome(ACK_CONFIRMED, payment.status, result, r.booking_code, applied=True)


def reconcile_payment(db: Session, order_id: str, client: VNPayClient | None = None) -> CallbackOutcome:
    """Ask the gateway about an order and apply its answer through the callback path."""
    client = client or VNPayClient()
    tx = db.execute(select(GatewayTransaction).where(GatewayTransaction.order_id == order_id)).scalar_one_or_none()
    if tx is None:
        raise NotFoundError("order not found")
    created = as_utc(tx.created_at)
    payment_id = tx.payment_id
    # no transaction stays open across the gateway call
    db.rollback()

    out = client.query_transaction(order_id, created)
    verified = vnpay_client.callback_from_query(out)
    if verified is None:
        payment = db.get(Payment, payment_id)
        return CallbackOutcome(ACK_CONFIRMED, payment.status if payment else None, None)
    if not verified.order_id:
        verified.order_id = order_id
    elif verified.order_id != order_id:
        raise ExternalUnavailable(f"gateway answered for order {verified.order_id!r} instead of {order_id!r}")
    return apply_callback(db, verified, source="querydr")
