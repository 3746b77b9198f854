"""Seat map and occupancy for a trip.

Occupancy is always recomputed from the reservations ledger; there is no
seats-available counter to drift out of sync.
"""
import uuid
from dataclasses import dataclass
from decimal import Decimal
from sqlalchemy.orm import Session
from sqlalchemy import select

from busbooking.core.errors import ConflictError, ValidationError
from busbooking.models.bus import Bus
from busbooking.models.seat import Seat
from busbooking.models.trip import Trip
from busbooking.models.reservation import Reservation, SEAT_HOLDING_STATUSES

SEAT_MULTIPLIERS = {
    "STANDARD": Decimal("1.00"),
    "SLEEPER": Decimal("1.10"),
    "VIP": Decimal("1.20"),
}


@dataclass(frozen=True)
class SeatInfo:
    seat_number: str
    seat_type: str
    price_multiplier: Decimal


def seat_number_pad_length(total_seats: int) -> int:
    return max(2, len(str(max(int(total_seats or 0), 1))))


def normalize_seat_number(raw, pad_length: int = 2) -> str:
    """'1', 1 and '01' are the same seat; 'a1 ' and 'A1' are the same seat."""
    s = str(raw).strip().upper()
    if s.isdigit():
        return str(int(s)).zfill(pad_length)
    return s


def seat_type_from_bus_type(bus_type: str | None) -> str:
    t = (bus_type or "").upper()
    if "SLEEPER" in t or "GIUONG" in t:
        return "SLEEPER"
    if "VIP" in t or "LIMOUSINE" in t:
        return "VIP"
    return "STANDARD"


def multiplier_from_seat_type(seat_type: str) -> Decimal:
    return SEAT_MULTIPLIERS.get(seat_type, Decimal("1.00"))


def ensure_seats_for_bus(db: Session, bus: Bus) -> int:
    """Create any missing seats 01..N for a bus. Returns how many were added. Caller commits."""
    pad = seat_number_pad_length(bus.total_seats)
    existing = set(db.execute(select(Seat.seat_number).where(Seat.bus_id == bus.id)).scalars().all())
    seat_type = seat_type_from_bus_type(bus.bus_type)
    added = 0
    for n in range(1, int(bus.total_seats) + 1):
        num = str(n).zfill(pad)
        if num in existing:
            continue
        db.add(Seat(
            id=str(uuid.uuid4()),
            bus_id=bus.id,
            seat_number=num,
            seat_type=seat_type,
            price_multiplier=multiplier_from_seat_type(seat_type),
            is_active=True,
        ))
        added += 1
    return added


def seat_map(db: Session, trip: Trip) -> dict[str, SeatInfo]:
    """Active seats of the trip's bus keyed by normalized seat number.

    A bus without seat rows gets a plain 01..N map at multiplier 1.0.
    """
    pad = seat_number_pad_length(trip.total_seats)
    rows = db.execute(
        select(Seat).where(Seat.bus_id == trip.bus_id, Seat.is_active.is_(True))
    ).scalars().all()
    if rows:
        out = {}
        for s in rows:
            num = normalize_seat_number(s.seat_number, pad)
            out[num] = SeatInfo(num, s.seat_type, Decimal(s.price_multiplier))
        return out
    return {
        str(n).zfill(pad): SeatInfo(str(n).zfill(pad), "STANDARD", Decimal("1.00"))
        for n in range(1, int(trip.total_seats) + 1)
    }


def held_seat_numbers(db: Session, trip: Trip) -> set[str]:
    pad = seat_number_pad_length(trip.total_seats)
    rows = db.execute(
        select(Reservation.seat_numbers).where(
            Reservation.trip_id == trip.id,
            Reservation.booking_status.in_(SEAT_HOLDING_STATUSES),
        )
    ).scalars().all()
    held = set()
    for seats in rows:
        for s in seats or []:
            held.add(normalize_seat_number(s, pad))
    return held


def normalize_requested_seats(trip: Trip, seat_numbers) -> list[str]:
    if not seat_numbers:
        raise ValidationError("at least one seat is required")
    pad = seat_number_pad_length(trip.total_seats)
    out = []
    for raw in seat_numbers:
        num = normalize_seat_number(raw, pad)
        if not num:
            raise ValidationError("seat number must not be empty")
        if num in out:
            raise ValidationError(f"seat {num} requested twice", seats=[num])
        out.append(num)
    return out


def check_availability(db: Session, trip: Trip, seat_numbers) -> list[str]:
    """Return the requested seats normalized, or raise ConflictError listing the held ones.

    Read-only. Callers that go on to insert must hold the trip row lock.
    """
    requested = normalize_requested_seats(trip, seat_numbers)
    held = held_seat_numbers(db, trip)
    conflicts = [s for s in requested if s in held]
    if conflicts:
        raise ConflictError(f"seats already taken: {', '.join(conflicts)}", conflicts=conflicts)
    return requested


def seat_availability(db: Session, trip: Trip) -> list[dict]:
    held = held_seat_numbers(db, trip)
    return [
        {
            "seatNumber": info.seat_number,
            "seatType": info.seat_type,
            "priceMultiplier": str(info.price_multiplier),
            "price": str((Decimal(trip.base_price) * info.price_multiplier).quantize(Decimal("0.01"))),
            "available": info.seat_number not in held,
        }
        for info in sorted(seat_map(db, trip).values(), key=lambda i: i.seat_number)
    ]
