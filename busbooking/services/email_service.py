"""Passenger notifications.

Every message is written to ``email_logs`` first and then sent once inline;
anything that does not go out is picked up again by the queue worker.
"""
import logging
import smtplib
import uuid
from datetime import datetime, timezone
from email.message import EmailMessage
from sqlalchemy.orm import Session
import requests

from busbooking.core.config import settings
from busbooking.models.email_log import EmailLog
from busbooking.models.reservation import Reservation

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"

# email_logs.status values
QUEUED = "queued"
SENT = "sent"
FAILED = "failed"


def _set_status(db: Session, email_id: str, status: str):
    log = db.get(EmailLog, email_id)
    if log is None:
        return
    log.status = status
    if status == SENT:
        log.sent_at = datetime.now(timezone.utc)
    db.commit()


def queue_email(db: Session, to_email: str, subject: str, body: str, related_booking_code: str = "") -> str:
    """Store the message, then try to deliver it right away. Commits on its own."""
    email_id = str(uuid.uuid4())
    db.add(EmailLog(
        id=email_id,
        to_email=to_email,
        subject=subject,
        body=body,
        status=QUEUED,
        related_booking_code=related_booking_code,
    ))
    db.commit()

    try:
        send_email(to_email, subject, body)
    except Exception:
        logger.warning("email %s to %s not sent, left for the queue worker", email_id, to_email, exc_info=True)
        _set_status(db, email_id, FAILED)
    else:
        _set_status(db, email_id, SENT)
    return email_id


def send_email(to_email: str, subject: str, body: str):
    """SendGrid when an API key is configured, SMTP otherwise (MailHog locally)."""
    if settings.SENDGRID_API_KEY:
        _send_via_sendgrid(to_email, subject, body)
    else:
        _send_via_smtp(to_email, subject, body)


def _send_via_smtp(to_email: str, subject: str, body: str):
    msg = EmailMessage()
    msg["From"] = settings.SMTP_FROM
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body)
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10) as smtp:
        if settings.SMTP_USERNAME:
            smtp.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        smtp.send_message(msg)


def _send_via_sendgrid(to_email: str, subject: str, body: str):
    resp = requests.post(
        SENDGRID_URL,
        json={
            "personalizations": [{"to": [{"email": to_email}]}],
            "from": {"email": settings.SENDGRID_FROM_EMAIL or settings.SMTP_FROM},
            "subject": subject,
            "content": [{"type": "text/plain", "value": body}],
        },
        headers={"Authorization": f"Bearer {settings.SENDGRID_API_KEY}"},
        timeout=20,
    )
    if resp.status_code >= 400:
        raise RuntimeError(f"SendGrid rejected the message ({resp.status_code}): {resp.text}")


def process_pending_emails(db: Session, limit: int = 50) -> dict:
    """Retry up to `limit` queued or failed messages, oldest first. Returns counts."""
    batch = (
        db.query(EmailLog)
        .filter(EmailLog.status.in_([QUEUED, FAILED]), EmailLog.body.isnot(None), EmailLog.body != "")
        .order_by(EmailLog.created_at.asc())
        .limit(limit)
        .all()
    )
    counts = {"processed": len(batch), "sent": 0, "failed": 0}
    for log in batch:
        try:
            send_email(log.to_email, log.subject, log.body)
        except Exception:
            logger.warning("retry of email %s failed", log.id, exc_info=True)
            log.status = FAILED
            counts["failed"] += 1
        else:
            log.status = SENT
            log.sent_at = datetime.now(timezone.utc)
            counts["sent"] += 1
    if batch:
        db.commit()
    return counts


def _notify(db: Session, r: Reservation, subject: str, lines: list[str]):
    # Runs after the business commit; a failure here must not surface to the caller
    if not r.passenger_email:
        return
    body = "\n".join([f"Hello {r.passenger_name},", ""] + lines + ["", f"Booking code: {r.booking_code}"])
    try:
        queue_email(db, r.passenger_email, subject, body, related_booking_code=r.booking_code)
    except Exception:
        logger.exception("could not queue notification for %s", r.booking_code)
        db.rollback()


def notify_reservation_paid(db: Session, r: Reservation):
    seats = ", ".join(r.seat_numbers or [])
    _notify(db, r, f"Payment received - {r.booking_code}", [
        "We have received your payment. Your seats are confirmed.",
        f"Seats: {seats}",
        f"Amount paid: {r.payable_amount}",
    ])


def notify_cancellation(db: Session, r: Reservation):
    lines = [f"Your booking is now {r.booking_status}."]
    if r.cancel_reason:
        lines.append(f"Reason: {r.cancel_reason}")
    if r.refund_amount:
        lines.append(f"Refund amount: {r.refund_amount} ({r.payment_status})")
    _notify(db, r, f"Booking update - {r.booking_code}", lines)
