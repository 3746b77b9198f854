from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from busbooking.db.session import get_db
from busbooking.api.deps import require_roles
from busbooking.models.user import User
from busbooking.schemas.common import ok
from busbooking.schemas.trips import TripStatusUpdate, TripIssueReport
from busbooking.services import trip_service

router = APIRouter(prefix="/driver/trips", tags=["driver"])

operator = require_roles("driver", "company", "admin")


def _trip_dict(t) -> dict:
    return {
        "id": t.id,
        "status": t.status,
        "departureTime": t.departure_time.isoformat() if t.departure_time else None,
        "startedAt": t.started_at.isoformat() if t.started_at else None,
        "endedAt": t.ended_at.isoformat() if t.ended_at else None,
    }


@router.post("/{trip_id}/status")
def update_status(trip_id: str, payload: TripStatusUpdate, db: Session = Depends(get_db), user: User = Depends(operator)):
    trip = trip_service.update_trip_status(db, trip_id, user, payload.status, note=payload.note)
    return ok(_trip_dict(trip))


@router.get("/{trip_id}/status-log")
def status_log(trip_id: str, db: Session = Depends(get_db), user: User = Depends(operator)):
    rows = trip_service.trip_status_history(db, trip_id, user)
    return ok([
        {
            "previousStatus": x.previous_status,
            "newStatus": x.new_status,
            "actorUserId": x.actor_user_id,
            "note": x.note,
            "createdAt": x.created_at.isoformat() if x.created_at else None,
        }
        for x in rows
    ])


@router.post("/{trip_id}/reports", status_code=201)
def report_issue(trip_id: str, payload: TripIssueReport, db: Session = Depends(get_db), user: User = Depends(operator)):
    report = trip_service.report_trip_issue(db, trip_id, user, payload.note)
    return ok({"id": report.id, "tripId": report.trip_id, "note": report.note})
