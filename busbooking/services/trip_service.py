import logging
import uuid
from sqlalchemy.orm import Session
from sqlalchemy import select

from busbooking.core.errors import AccessDenied, ForbiddenTransition, NotFoundError, ValidationError
from busbooking.core.timeutil import utcnow
from busbooking.models.trip import Trip, TRIP_SCHEDULED, TRIP_IN_PROGRESS, TRIP_COMPLETED, TRIP_CANCELLED
from busbooking.models.trip_log import TripStatusLog
from busbooking.models.trip_report import TripReport
from busbooking.models.user import User
from busbooking.services.audit_service import log_audit
from busbooking.services.booking_service import cancel_reservations_for_trip, complete_reservations_for_trip
from busbooking.services.email_service import notify_cancellation

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    TRIP_SCHEDULED: {TRIP_IN_PROGRESS, TRIP_CANCELLED},
    TRIP_IN_PROGRESS: {TRIP_COMPLETED, TRIP_CANCELLED},
    TRIP_COMPLETED: set(),
    TRIP_CANCELLED: set(),
}


def _check_operator(trip: Trip, actor: User):
    if actor.role == "admin":
        return
    if actor.role == "driver" and trip.driver_user_id == actor.id:
        return
    if actor.role == "company" and actor.company_id and actor.company_id == trip.company_id:
        return
    raise AccessDenied("not allowed to operate this trip")


def update_trip_status(db: Session, trip_id: str, actor: User, new_status: str, note: str | None = None) -> Trip:
    new_status = (new_status or "").strip().upper()
    if new_status not in ALLOWED_TRANSITIONS:
        raise ValidationError(f"unknown trip status {new_status!r}")

    cancelled = []
    try:
        trip = db.execute(
            select(Trip).where(Trip.id == trip_id).with_for_update().execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if not trip:
            raise NotFoundError("trip not found")
        _check_operator(trip, actor)

        previous = trip.status
        if new_status == previous:
            db.commit()
            return trip
        if new_status not in ALLOWED_TRANSITIONS.get(previous, set()):
            raise ForbiddenTransition(
                f"cannot move trip from {previous} to {new_status}",
                currentStatus=previous,
                allowed=sorted(ALLOWED_TRANSITIONS.get(previous, set())),
            )

        now = utcnow()
        trip.status = new_status
        if new_status == TRIP_IN_PROGRESS:
            trip.started_at = now
        elif new_status in (TRIP_COMPLETED, TRIP_CANCELLED):
            trip.ended_at = now

        db.add(TripStatusLog(
            id=str(uuid.uuid4()),
            trip_id=trip.id,
            actor_user_id=actor.id,
            previous_status=previous,
            new_status=new_status,
            note=note,
        ))

        if new_status == TRIP_CANCELLED:
            cancelled = cancel_reservations_for_trip(db, trip, actor.id)
        elif new_status == TRIP_COMPLETED:
            complete_reservations_for_trip(db, trip, actor.id)

        log_audit(db, actor.id, "trip.status_changed", "trip", trip.id, {
            "from": previous,
            "to": new_status,
            "note": note,
            "reservations_cancelled": len(cancelled),
        })
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("trip %s %s -> %s by %s", trip.id, previous, new_status, actor.id)
    for r in cancelled:
        notify_cancellation(db, r)
    return trip


def report_trip_issue(db: Session, trip_id: str, actor: User, note: str) -> TripReport:
    note = (note or "").strip()
    if not note:
        raise ValidationError("report note must not be empty")
    try:
        trip = db.get(Trip, trip_id)
        if not trip:
            raise NotFoundError("trip not found")
        _check_operator(trip, actor)
        report = TripReport(
            id=str(uuid.uuid4()),
            trip_id=trip.id,
            driver_user_id=actor.id,
            company_id=trip.company_id,
            note=note,
        )
        db.add(report)
        log_audit(db, actor.id, "trip.issue_reported", "trip", trip.id, {"report_id": report.id})
        db.commit()
    except Exception:
        db.rollback()
        raise
    return report


def trip_status_history(db: Session, trip_id: str, actor: User) -> list[TripStatusLog]:
    try:
        trip = db.get(Trip, trip_id)
        if not trip:
            raise NotFoundError("trip not found")
        _check_operator(trip, actor)
        rows = list(db.execute(
            select(TripStatusLog).where(TripStatusLog.trip_id == trip_id).order_by(TripStatusLog.created_at.asc())
        ).scalars().all())
        # nothing written; ends the transaction and keeps the rows loaded
        db.commit()
    except Exception:
        db.rollback()
        raise
    return rows
