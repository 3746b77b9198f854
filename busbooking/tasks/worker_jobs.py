import logging
from sqlalchemy.orm import Session

from busbooking.core.config import settings
from busbooking.core.errors import DomainError
from busbooking.db.session import SessionLocal, engine
from busbooking.db.schema import SchemaState, resolve_schema_state
from busbooking.services import booking_service
from busbooking.services.email_service import process_pending_emails

logger = logging.getLogger(__name__)

_schema_state: SchemaState | None = None


def load_schema_state(force: bool = False) -> SchemaState:
    global _schema_state
    if _schema_state is None or force:
        _schema_state = resolve_schema_state(engine)
    return _schema_state


def _skip_reason() -> str | None:
    if not load_schema_state().is_current:
        return "schema_not_current"
    return None


def expire_stale_checkouts(timeout_minutes: int | None = None) -> dict:
    """Cancel unpaid reservations whose checkout was abandoned; releases seats and vouchers."""
    timeout = timeout_minutes if timeout_minutes is not None else settings.PENDING_PAYMENT_TIMEOUT_MINUTES
    if not timeout:
        return {"skipped": True, "reason": "disabled"}
    reason = _skip_reason()
    if reason:
        return {"skipped": True, "reason": reason}

    db: Session = SessionLocal()
    try:
        codes = booking_service.stale_unpaid_reservations(db, timeout)
        db.rollback()
        expired, failed = 0, 0
        for code in codes:
            try:
                booking_service.request_cancellation(
                    db, code, booking_service.SYSTEM_ACTOR,
                    reason=f"payment not completed within {timeout} minutes",
                    enforce_cutoff=False,
                    unpaid_only=True,
                )
                expired += 1
            except DomainError as e:
                # paid or cancelled since the scan
                logger.info("stale checkout %s skipped: %s", code, e.detail)
                failed += 1
        if expired:
            logger.info("expired %d stale checkouts", expired)
        return {"expired": expired, "skipped": failed}
    finally:
        db.close()


def process_email_queue(limit: int = 50) -> dict:
    reason = _skip_reason()
    if reason:
        return {"skipped": True, "reason": reason}
    db: Session = SessionLocal()
    try:
        return process_pending_emails(db, limit=limit)
    finally:
        db.close()
