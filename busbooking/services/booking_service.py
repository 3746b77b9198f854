"""Reservation orchestration: create, cancel, refund and payment attempts.

Every public function here owns its transaction: it commits on success and
rolls back on any exception. Row locks are always taken in the order
trip -> reservation -> payment -> voucher.
"""
import logging
import random
import string
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from sqlalchemy.orm import Session
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from busbooking.core.config import settings
from busbooking.core.errors import ConflictError, ForbiddenTransition, NotFoundError, ValidationError
from busbooking.core.timeutil import as_utc, utcnow
from busbooking.models.trip import Trip, TRIP_SCHEDULED
from busbooking.models.reservation import (
    Reservation,
    BOOKING_CONFIRMED,
    BOOKING_CANCEL_REQUESTED,
    BOOKING_CANCELLED,
    BOOKING_COMPLETED,
    PAY_PENDING,
    PAY_PAID,
    PAY_CANCELLED,
    PAY_REFUND_PENDING,
    PAY_REFUNDED,
)
from busbooking.models.payment import (
    Payment,
    PAYMENT_PENDING,
    PAYMENT_PAID,
    PAYMENT_CANCELLED,
    PAYMENT_REFUND_PENDING,
    PAYMENT_REFUNDED,
)
from busbooking.services import voucher_service
from busbooking.services.audit_service import log_audit
from busbooking.services.email_service import notify_cancellation, notify_reservation_paid
from busbooking.services.seat_inventory import check_availability, normalize_requested_seats, seat_map

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# (hours before departure, share refunded), first match wins
REFUND_TIERS = ((24, Decimal("1.00")), (6, Decimal("0.50")))

SYSTEM_ACTOR = "system"


@dataclass
class BookingResult:
    reservation: Reservation
    payment: Payment
    warnings: list[str] = field(default_factory=list)


def make_booking_code() -> str:
    return "BK" + "".join(random.choices(string.ascii_uppercase + string.digits, k=8))


def make_payment_code() -> str:
    return "PAY-" + "".join(random.choices(string.ascii_uppercase + string.digits, k=10))


def _unique_code(db: Session, column, make) -> str:
    for _ in range(10):
        code = make()
        if not db.execute(select(column).where(column == code)).first():
            return code
    raise ConflictError("could not allocate a unique code")


def _lock_trip(db: Session, trip_id: str) -> Trip:
    trip = db.execute(select(Trip).where(Trip.id == trip_id).with_for_update().execution_options(populate_existing=True)).scalar_one_or_none()
    if not trip:
        raise NotFoundError("trip not found")
    return trip


def lock_reservation(db: Session, *, booking_code: str | None = None, reservation_id: str | None = None) -> Reservation:
    q = select(Reservation)
    if booking_code is not None:
        q = q.where(Reservation.booking_code == booking_code.strip().upper())
    else:
        q = q.where(Reservation.id == reservation_id)
    r = db.execute(q.with_for_update().execution_options(populate_existing=True)).scalar_one_or_none()
    if not r:
        raise NotFoundError("reservation not found")
    return r


def _payments_for(db: Session, reservation_id: str, status: str | None = None) -> list[Payment]:
    q = select(Payment).where(Payment.reservation_id == reservation_id)
    if status is not None:
        q = q.where(Payment.status == status)
    return list(db.execute(q.order_by(Payment.created_at.asc()).with_for_update().execution_options(populate_existing=True)).scalars().all())


def _new_payment(db: Session, r: Reservation) -> Payment:
    p = Payment(
        id=str(uuid.uuid4()),
        payment_code=_unique_code(db, Payment.payment_code, make_payment_code),
        reservation_id=r.id,
        company_id=r.company_id,
        amount=r.payable_amount,
        discount_amount=r.discount_amount or Decimal("0"),
        voucher_id=r.voucher_id,
        payment_method=r.payment_method,
        status=PAYMENT_PENDING,
    )
    db.add(p)
    return p


def gross_price(trip: Trip, seats: list[str], seats_by_number: dict) -> Decimal:
    base = Decimal(trip.base_price)
    total = sum((base * seats_by_number[s].price_multiplier for s in seats), Decimal("0"))
    return total.quantize(CENT, rounding=ROUND_HALF_UP)


def refund_amount_for(r: Reservation, departure: datetime, now: datetime | None = None) -> Decimal:
    now = now or utcnow()
    hours = (as_utc(departure) - now).total_seconds() / 3600
    for min_hours, share in REFUND_TIERS:
        if hours >= min_hours:
            return (r.payable_amount * share).quantize(CENT, rounding=ROUND_HALF_UP)
    return Decimal("0.00")


def create_reservation(
    db: Session,
    trip_id: str,
    seat_numbers: list,
    passenger: dict,
    voucher_code: str | None = None,
    voucher_optional: bool = False,
    user_id: str | None = None,
) -> BookingResult:
    """Hold seats on a trip and open a pending payment, or change nothing.

    passenger: {"name", "phone", "email"}. With voucher_optional a rejected
    voucher books without the discount and adds a warning instead of failing.
    """
    name = (passenger.get("name") or "").strip()
    phone = (passenger.get("phone") or "").strip()
    if not name or not phone:
        raise ValidationError("passenger name and phone are required")

    warnings: list[str] = []
    try:
        # Held until commit; concurrent bookings on this trip queue here
        trip = _lock_trip(db, trip_id)
        if trip.status != TRIP_SCHEDULED:
            raise ForbiddenTransition(f"trip is {trip.status} and no longer accepts bookings", tripStatus=trip.status)
        if as_utc(trip.departure_time) <= utcnow():
            raise ForbiddenTransition("trip has already departed")

        seats = normalize_requested_seats(trip, seat_numbers)
        seats_by_number = seat_map(db, trip)
        unknown = [s for s in seats if s not in seats_by_number]
        if unknown:
            raise ValidationError(f"unknown seats: {', '.join(unknown)}", unknown=unknown)
        check_availability(db, trip, seats)

        total = gross_price(trip, seats, seats_by_number)

        check = None
        code = voucher_service.normalize_code(voucher_code)
        if code:
            if not settings.VOUCHERS_ENABLED:
                if not voucher_optional:
                    raise ValidationError("vouchers are not accepted at the moment")
                warnings.append("vouchers are not accepted at the moment; booked without discount")
            else:
                check = voucher_service.validate_voucher(db, code, trip.company_id, total, user_id)
                if not check.valid:
                    if not voucher_optional:
                        check.raise_for_reason()
                    warnings.append(f"{check.message}; booked without discount")
                    check = None

        r = Reservation(
            id=str(uuid.uuid4()),
            booking_code=_unique_code(db, Reservation.booking_code, make_booking_code),
            trip_id=trip.id,
            company_id=trip.company_id,
            user_id=user_id,
            passenger_name=name,
            passenger_phone=phone,
            passenger_email=(passenger.get("email") or None),
            seat_numbers=seats,
            total_price=total,
            discount_amount=Decimal("0.00"),
            voucher_id=None,
            payment_method="VNPAY",
            booking_status=BOOKING_CONFIRMED,
            payment_status=PAY_PENDING,
        )

        if check is not None:
            try:
                voucher_service.redeem(db, check.voucher, r.id, user_id, check.discount)
                r.voucher_id = check.voucher.id
                r.discount_amount = check.discount
            except ConflictError as e:
                # redeem changes nothing when it refuses
                if not voucher_optional:
                    raise
                warnings.append(f"{e.detail}; booked without discount")

        db.add(r)
        settled = r.payable_amount <= 0
        if settled:
            # nothing left to collect; the voucher covered the whole fare
            r.payment_method = "VOUCHER"
            r.payment_status = PAY_PAID
        payment = _new_payment(db, r)
        if settled:
            payment.status = PAYMENT_PAID
            payment.paid_at = utcnow()
            log_audit(db, user_id or "guest", "payment.paid", "payment", payment.id, {
                "booking_code": r.booking_code,
                "amount": payment.amount,
                "source": "voucher",
            })

        log_audit(db, user_id or "guest", "reservation.created", "reservation", r.id, {
            "booking_code": r.booking_code,
            "trip_id": trip.id,
            "seats": seats,
            "total_price": total,
            "discount": r.discount_amount,
            "voucher_id": r.voucher_id,
        })
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("reservation %s created on trip %s seats=%s", r.booking_code, r.trip_id, seats)
    if settled:
        notify_reservation_paid(db, r)
    return BookingResult(r, payment, warnings)


def _cancel_unpaid(db: Session, r: Reservation, reason: str | None, actor_id: str):
    """Release seats, void open payments and give back the voucher use. Caller holds the reservation lock."""
    r.booking_status = BOOKING_CANCELLED
    r.payment_status = PAY_CANCELLED
    r.cancel_reason = reason
    for p in _payments_for(db, r.id, PAYMENT_PENDING):
        p.status = PAYMENT_CANCELLED
    voucher_returned = voucher_service.rollback_usage(db, r.id)
    log_audit(db, actor_id, "reservation.cancelled", "reservation", r.id, {
        "booking_code": r.booking_code,
        "reason": reason,
        "voucher_returned": voucher_returned,
    })


def _cancel_paid_with_refund(db: Session, r: Reservation, refund: Decimal, reason: str | None, actor_id: str):
    r.booking_status = BOOKING_CANCELLED
    r.cancel_reason = reason or r.cancel_reason
    r.refund_amount = refund
    if refund > 0:
        r.payment_status = PAY_REFUND_PENDING
        for p in _payments_for(db, r.id, PAYMENT_PAID):
            p.status = PAYMENT_REFUND_PENDING
    log_audit(db, actor_id, "reservation.cancel_approved", "reservation", r.id, {
        "booking_code": r.booking_code,
        "refund_amount": refund,
        "payment_status": r.payment_status,
    })


def _departure_of(db: Session, r: Reservation) -> datetime:
    trip = db.get(Trip, r.trip_id)
    if not trip:
        raise NotFoundError("trip not found")
    return as_utc(trip.departure_time)


def _after_commit_notify(db: Session, r: Reservation):
    notify_cancellation(db, r)


def request_cancellation(
    db: Session,
    booking_code: str,
    actor_id: str,
    reason: str | None = None,
    enforce_cutoff: bool = True,
    unpaid_only: bool = False,
) -> Reservation:
    """Cancel an unpaid reservation outright, or put a paid one up for approval.

    unpaid_only refuses paid reservations instead (the stale checkout sweeper).
    """
    try:
        r = lock_reservation(db, booking_code=booking_code)
        if r.booking_status != BOOKING_CONFIRMED:
            raise ForbiddenTransition(f"reservation is {r.booking_status}", bookingStatus=r.booking_status)

        if enforce_cutoff:
            hours_left = (_departure_of(db, r) - utcnow()).total_seconds() / 3600
            if hours_left < settings.CANCELLATION_CUTOFF_HOURS:
                raise ForbiddenTransition(
                    f"cancellation closes {settings.CANCELLATION_CUTOFF_HOURS}h before departure"
                )

        if unpaid_only and r.payment_status != PAY_PENDING:
            raise ForbiddenTransition(f"payment is {r.payment_status}", paymentStatus=r.payment_status)

        if r.payment_status == PAY_PENDING:
            _cancel_unpaid(db, r, reason, actor_id)
        elif r.payment_status == PAY_PAID:
            r.booking_status = BOOKING_CANCEL_REQUESTED
            r.cancel_reason = reason
            log_audit(db, actor_id, "reservation.cancel_requested", "reservation", r.id, {
                "booking_code": r.booking_code,
                "reason": reason,
            })
        else:
            raise ForbiddenTransition(f"payment is {r.payment_status}", paymentStatus=r.payment_status)
        db.commit()
    except Exception:
        db.rollback()
        raise

    if r.booking_status == BOOKING_CANCELLED:
        _after_commit_notify(db, r)
    return r


def approve_cancellation(db: Session, booking_code: str, actor_id: str, note: str | None = None) -> Reservation:
    try:
        r = lock_reservation(db, booking_code=booking_code)
        if r.booking_status != BOOKING_CANCEL_REQUESTED:
            raise ForbiddenTransition(f"reservation is {r.booking_status}, not CANCEL_REQUESTED", bookingStatus=r.booking_status)
        if note:
            r.notes = note
        if r.payment_status == PAY_PAID:
            refund = refund_amount_for(r, _departure_of(db, r))
            _cancel_paid_with_refund(db, r, refund, r.cancel_reason, actor_id)
        else:
            _cancel_unpaid(db, r, r.cancel_reason, actor_id)
        db.commit()
    except Exception:
        db.rollback()
        raise

    _after_commit_notify(db, r)
    return r


def reject_cancellation(db: Session, booking_code: str, actor_id: str, note: str | None = None) -> Reservation:
    try:
        r = lock_reservation(db, booking_code=booking_code)
        if r.booking_status != BOOKING_CANCEL_REQUESTED:
            raise ForbiddenTransition(f"reservation is {r.booking_status}, not CANCEL_REQUESTED", bookingStatus=r.booking_status)
        r.booking_status = BOOKING_CONFIRMED
        if note:
            r.notes = note
        log_audit(db, actor_id, "reservation.cancel_rejected", "reservation", r.id, {
            "booking_code": r.booking_code,
            "note": note,
        })
        db.commit()
    except Exception:
        db.rollback()
        raise

    _after_commit_notify(db, r)
    return r


def complete_refund(db: Session, booking_code: str, actor_id: str, reference: str | None = None) -> Reservation:
    """Record that the money owed on a cancelled reservation has been paid back."""
    try:
        r = lock_reservation(db, booking_code=booking_code)
        if r.payment_status != PAY_REFUND_PENDING:
            raise ForbiddenTransition(f"payment is {r.payment_status}, not REFUND_PENDING", paymentStatus=r.payment_status)
        r.payment_status = PAY_REFUNDED
        for p in _payments_for(db, r.id, PAYMENT_REFUND_PENDING):
            p.status = PAYMENT_REFUNDED
        log_audit(db, actor_id, "reservation.refunded", "reservation", r.id, {
            "booking_code": r.booking_code,
            "refund_amount": r.refund_amount,
            "reference": reference,
        })
        db.commit()
    except Exception:
        db.rollback()
        raise
    return r


def create_payment_attempt(db: Session, booking_code: str, actor_id: str) -> Payment:
    """Open a new PENDING payment after an earlier attempt failed or was voided."""
    try:
        r = lock_reservation(db, booking_code=booking_code)
        if r.booking_status != BOOKING_CONFIRMED or r.payment_status != PAY_PENDING:
            raise ForbiddenTransition(
                f"reservation is {r.booking_status}/{r.payment_status}; nothing to pay",
                bookingStatus=r.booking_status,
                paymentStatus=r.payment_status,
            )
        if _payments_for(db, r.id, PAYMENT_PENDING):
            raise ConflictError("reservation already has a pending payment")
        p = _new_payment(db, r)
        log_audit(db, actor_id, "payment.created", "payment", p.id, {"booking_code": r.booking_code, "amount": p.amount})
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("reservation already has a pending payment")
    except Exception:
        db.rollback()
        raise
    return p


def void_payment(db: Session, payment_id: str, actor_id: str) -> Payment:
    try:
        p = db.get(Payment, payment_id)
        if not p:
            raise NotFoundError("payment not found")
        lock_reservation(db, reservation_id=p.reservation_id)
        p = db.execute(select(Payment).where(Payment.id == payment_id).with_for_update().execution_options(populate_existing=True)).scalar_one()
        if p.status != PAYMENT_PENDING:
            raise ForbiddenTransition(f"payment is {p.status}", paymentStatus=p.status)
        p.status = PAYMENT_CANCELLED
        log_audit(db, actor_id, "payment.voided", "payment", p.id, {"payment_code": p.payment_code})
        db.commit()
    except Exception:
        db.rollback()
        raise
    return p


def cancel_reservations_for_trip(db: Session, trip: Trip, actor_id: str) -> list[Reservation]:
    """Cancel every reservation still holding seats on a cancelled trip. Caller holds the trip lock and commits."""
    affected = []
    ids = db.execute(
        select(Reservation.id).where(
            Reservation.trip_id == trip.id,
            Reservation.booking_status.in_((BOOKING_CONFIRMED, BOOKING_CANCEL_REQUESTED)),
        )
    ).scalars().all()
    for rid in ids:
        r = lock_reservation(db, reservation_id=rid)
        reason = "trip cancelled by operator"
        if r.payment_status == PAY_PAID:
            _cancel_paid_with_refund(db, r, r.payable_amount, reason, actor_id)
        else:
            _cancel_unpaid(db, r, reason, actor_id)
        affected.append(r)
    return affected


def complete_reservations_for_trip(db: Session, trip: Trip, actor_id: str) -> int:
    """Mark paid reservations of a finished trip COMPLETED. Caller commits."""
    rows = db.execute(
        select(Reservation).where(
            Reservation.trip_id == trip.id,
            Reservation.booking_status == BOOKING_CONFIRMED,
            Reservation.payment_status == PAY_PAID,
        ).with_for_update().execution_options(populate_existing=True)
    ).scalars().all()
    for r in rows:
        r.booking_status = BOOKING_COMPLETED
    if rows:
        log_audit(db, actor_id, "trip.reservations_completed", "trip", trip.id, {"count": len(rows)})
    return len(rows)


def stale_unpaid_reservations(db: Session, older_than_minutes: int) -> list[str]:
    """Booking codes of unpaid reservations whose latest payment attempt is older than the timeout."""
    cutoff = utcnow().timestamp() - older_than_minutes * 60
    last_attempt = (
        select(Payment.reservation_id, func.max(Payment.created_at).label("last_at"))
        .group_by(Payment.reservation_id)
        .subquery()
    )
    rows = db.execute(
        select(Reservation.booking_code, last_attempt.c.last_at)
        .join(last_attempt, last_attempt.c.reservation_id == Reservation.id)
        .where(Reservation.booking_status == BOOKING_CONFIRMED, Reservation.payment_status == PAY_PENDING)
    ).all()
    return [code for code, last_at in rows if as_utc(last_at).timestamp() < cutoff]


def reservation_to_dict(r: Reservation, payment: Payment | None = None) -> dict:
    out = {
        "id": r.id,
        "bookingCode": r.booking_code,
        "tripId": r.trip_id,
        "companyId": r.company_id,
        "passengerName": r.passenger_name,
        "passengerPhone": r.passenger_phone,
        "passengerEmail": r.passenger_email,
        "seatNumbers": list(r.seat_numbers or []),
        "totalPrice": str(r.total_price),
        "discountAmount": str(r.discount_amount or Decimal("0")),
        "payableAmount": str(r.payable_amount),
        "voucherId": r.voucher_id,
        "bookingStatus": r.booking_status,
        "paymentStatus": r.payment_status,
        "cancelReason": r.cancel_reason,
        "refundAmount": None if r.refund_amount is None else str(r.refund_amount),
        "createdAt": r.created_at.isoformat() if r.created_at else None,
    }
    if payment is not None:
        out["payment"] = payment_to_dict(payment)
    return out


def payment_to_dict(p: Payment) -> dict:
    return {
        "id": p.id,
        "paymentCode": p.payment_code,
        "reservationId": p.reservation_id,
        "amount": str(p.amount),
        "discountAmount": str(p.discount_amount or Decimal("0")),
        "status": p.status,
        "transactionId": p.transaction_id,
        "paidAt": p.paid_at.isoformat() if p.paid_at else None,
    }
