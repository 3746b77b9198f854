from decimal import Decimal

import pytest

from busbooking.core.errors import ConflictError, ValidationError
from busbooking.models.bus import Bus
from busbooking.models.seat import Seat
from busbooking.models.trip import Trip
from busbooking.services import booking_service
from busbooking.services.seat_inventory import (
    check_availability,
    ensure_seats_for_bus,
    held_seat_numbers,
    normalize_seat_number,
    seat_availability,
    seat_number_pad_length,
    seat_type_from_bus_type,
)

from conftest import PASSENGER, create_trip


@pytest.mark.parametrize("raw,pad,expected", [
    ("1", 2, "01"),
    (1, 2, "01"),
    ("01", 2, "01"),
    (" 7 ", 3, "007"),
    ("a1", 2, "A1"),
    (" B12 ", 2, "B12"),
])
def test_normalize_seat_number(raw, pad, expected):
    assert normalize_seat_number(raw, pad) == expected


def test_pad_length_grows_with_bus_size():
    assert seat_number_pad_length(9) == 2
    assert seat_number_pad_length(45) == 2
    assert seat_number_pad_length(120) == 3


def test_seat_type_from_bus_type():
    assert seat_type_from_bus_type("Giuong nam 40 SLEEPER") == "SLEEPER"
    assert seat_type_from_bus_type("Limousine 22") == "VIP"
    assert seat_type_from_bus_type(None) == "STANDARD"


def test_ensure_seats_for_bus_is_idempotent(db):
    bus = Bus(id="bus-x", company_id="c", bus_number="X-1", bus_type="Sleeper 12", total_seats=12)
    db.add(bus)
    assert ensure_seats_for_bus(db, bus) == 12
    db.commit()
    assert ensure_seats_for_bus(db, bus) == 0
    seats = db.query(Seat).filter(Seat.bus_id == "bus-x").all()
    assert sorted(s.seat_number for s in seats)[:2] == ["01", "02"]
    assert {s.seat_type for s in seats} == {"SLEEPER"}
    assert {Decimal(s.price_multiplier) for s in seats} == {Decimal("1.10")}


def test_held_seats_come_from_reservations(db):
    trip = create_trip(total_seats=5)
    booking_service.create_reservation(db, trip.id, ["1", "02"], PASSENGER)
    t = db.get(Trip, trip.id)
    assert held_seat_numbers(db, t) == {"01", "02"}


def test_check_availability_reports_conflicts(db):
    trip = create_trip(total_seats=5)
    booking_service.create_reservation(db, trip.id, ["03"], PASSENGER)
    t = db.get(Trip, trip.id)
    with pytest.raises(ConflictError) as ei:
        check_availability(db, t, [3, "4"])
    assert ei.value.extra["conflicts"] == ["03"]
    assert check_availability(db, t, ["4", "5"]) == ["04", "05"]


def test_duplicate_seats_after_normalization_are_rejected(db):
    trip = create_trip(total_seats=5)
    t = db.get(Trip, trip.id)
    with pytest.raises(ValidationError):
        check_availability(db, t, ["1", "01"])


def test_cancelled_reservation_releases_seats(db):
    trip = create_trip(total_seats=5)
    res = booking_service.create_reservation(db, trip.id, ["01"], PASSENGER)
    booking_service.request_cancellation(db, res.reservation.booking_code, "guest")
    t = db.get(Trip, trip.id)
    assert held_seat_numbers(db, t) == set()


def test_seat_availability_listing(db):
    trip = create_trip(total_seats=3, base_price="200000")
    booking_service.create_reservation(db, trip.id, ["02"], PASSENGER)
    t = db.get(Trip, trip.id)
    seats = seat_availability(db, t)
    assert [s["seatNumber"] for s in seats] == ["01", "02", "03"]
    assert [s["available"] for s in seats] == [True, False, True]
    assert seats[0]["price"] == "200000.00"
