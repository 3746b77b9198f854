from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from busbooking.db.session import get_db
from busbooking.core.errors import NotFoundError
from busbooking.models.trip import Trip
from busbooking.schemas.common import ok
from busbooking.services.seat_inventory import seat_availability

router = APIRouter(prefix="/public/trips", tags=["trips"])


@router.get("/{trip_id}/seats")
def trip_seats(trip_id: str, db: Session = Depends(get_db)):
    trip = db.get(Trip, trip_id)
    if not trip:
        raise NotFoundError("trip not found")
    seats = seat_availability(db, trip)
    return ok({
        "tripId": trip.id,
        "status": trip.status,
        "totalSeats": trip.total_seats,
        "available": sum(1 for s in seats if s["available"]),
        "seats": seats,
    })
