from decimal import Decimal

import pytest

from busbooking.core.errors import AccessDenied, ForbiddenTransition, NotFoundError, ValidationError
from busbooking.models.payment import Payment
from busbooking.models.reservation import Reservation
from busbooking.models.trip import Trip
from busbooking.models.trip_log import TripStatusLog
from busbooking.models.voucher import Voucher
from busbooking.services import booking_service, trip_service

from conftest import COMPANY_ID, OTHER_COMPANY_ID, PASSENGER, create_trip, create_user, create_voucher, reload


def _paid_booking(db, trip, seat):
    res = booking_service.create_reservation(db, trip.id, [seat], PASSENGER)
    db.get(Payment, res.payment.id).status = "PAID"
    db.get(Reservation, res.reservation.id).payment_status = "PAID"
    db.commit()
    return res


def test_driver_runs_assigned_trip(db):
    driver = create_user("driver", company_id=COMPANY_ID)
    trip = create_trip(driver_user_id=driver.id)

    t = trip_service.update_trip_status(db, trip.id, driver, "in_progress", note="left the station")
    assert t.status == "IN_PROGRESS"
    assert t.started_at is not None
    t = trip_service.update_trip_status(db, trip.id, driver, "COMPLETED")
    assert t.status == "COMPLETED"
    assert t.ended_at is not None

    history = trip_service.trip_status_history(db, trip.id, driver)
    assert [(h.previous_status, h.new_status) for h in history] == [
        ("SCHEDULED", "IN_PROGRESS"),
        ("IN_PROGRESS", "COMPLETED"),
    ]
    assert history[0].note == "left the station"
    assert history[0].actor_user_id == driver.id


def test_status_history_is_limited_to_the_trip_operators(db):
    driver = create_user("driver", company_id=COMPANY_ID)
    other_driver = create_user("driver", company_id=COMPANY_ID)
    staff = create_user("company", company_id=COMPANY_ID)
    outsider = create_user("company", company_id=OTHER_COMPANY_ID)
    trip = create_trip(driver_user_id=driver.id)
    trip_service.update_trip_status(db, trip.id, driver, "IN_PROGRESS")

    assert len(trip_service.trip_status_history(db, trip.id, staff)) == 1
    for actor in (other_driver, outsider):
        with pytest.raises(AccessDenied):
            trip_service.trip_status_history(db, trip.id, actor)
    with pytest.raises(NotFoundError):
        trip_service.trip_status_history(db, "no-such-trip", staff)


def test_same_status_is_a_no_op(db):
    admin = create_user("admin")
    trip = create_trip()
    t = trip_service.update_trip_status(db, trip.id, admin, "SCHEDULED")
    assert t.status == "SCHEDULED"
    assert db.query(TripStatusLog).count() == 0


@pytest.mark.parametrize("path", [
    ["COMPLETED"],
    ["IN_PROGRESS", "SCHEDULED"],
    ["CANCELLED", "IN_PROGRESS"],
])
def test_illegal_transitions(db, path):
    admin = create_user("admin")
    trip = create_trip()
    for status in path[:-1]:
        trip_service.update_trip_status(db, trip.id, admin, status)
    with pytest.raises(ForbiddenTransition):
        trip_service.update_trip_status(db, trip.id, admin, path[-1])


def test_unknown_status_and_trip(db):
    admin = create_user("admin")
    trip = create_trip()
    with pytest.raises(ValidationError):
        trip_service.update_trip_status(db, trip.id, admin, "FLYING")
    with pytest.raises(NotFoundError):
        trip_service.update_trip_status(db, "missing", admin, "IN_PROGRESS")


def test_operator_scope(db):
    trip = create_trip(company_id=COMPANY_ID)
    other_driver = create_user("driver", company_id=COMPANY_ID)
    other_company = create_user("company", company_id=OTHER_COMPANY_ID)
    own_company = create_user("company", company_id=COMPANY_ID)

    for actor in (other_driver, other_company):
        with pytest.raises(AccessDenied):
            trip_service.update_trip_status(db, trip.id, actor, "IN_PROGRESS")
    assert reload(Trip, trip.id).status == "SCHEDULED"

    assert trip_service.update_trip_status(db, trip.id, own_company, "IN_PROGRESS").status == "IN_PROGRESS"


def test_cancelling_trip_cancels_its_reservations(db, outbox):
    admin = create_user("admin")
    trip = create_trip()
    v = create_voucher("TRIPV", usage_limit=10)
    unpaid = booking_service.create_reservation(db, trip.id, ["01"], PASSENGER, voucher_code="TRIPV")
    paid = _paid_booking(db, trip, "02")
    assert reload(Voucher, v.id).used_count == 1

    trip_service.update_trip_status(db, trip.id, admin, "CANCELLED", note="bus broke down")

    u = reload(Reservation, unpaid.reservation.id)
    assert (u.booking_status, u.payment_status) == ("CANCELLED", "CANCELLED")
    assert reload(Payment, unpaid.payment.id).status == "CANCELLED"
    assert reload(Voucher, v.id).used_count == 0

    p = reload(Reservation, paid.reservation.id)
    assert (p.booking_status, p.payment_status) == ("CANCELLED", "REFUND_PENDING")
    assert Decimal(p.refund_amount) == Decimal(p.total_price)
    assert reload(Payment, paid.payment.id).status == "REFUND_PENDING"
    assert len(outbox) == 2


def test_completing_trip_completes_paid_reservations(db):
    admin = create_user("admin")
    trip = create_trip()
    paid = _paid_booking(db, trip, "01")
    unpaid = booking_service.create_reservation(db, trip.id, ["02"], PASSENGER)

    trip_service.update_trip_status(db, trip.id, admin, "IN_PROGRESS")
    trip_service.update_trip_status(db, trip.id, admin, "COMPLETED")

    assert reload(Reservation, paid.reservation.id).booking_status == "COMPLETED"
    assert reload(Reservation, unpaid.reservation.id).booking_status == "CONFIRMED"


def test_report_issue(db):
    driver = create_user("driver", company_id=COMPANY_ID)
    trip = create_trip(driver_user_id=driver.id)
    report = trip_service.report_trip_issue(db, trip.id, driver, "  flat tyre near Bao Loc ")
    assert report.note == "flat tyre near Bao Loc"
    assert report.company_id == COMPANY_ID

    with pytest.raises(ValidationError):
        trip_service.report_trip_issue(db, trip.id, driver, "   ")
    stranger = create_user("driver", company_id=COMPANY_ID)
    with pytest.raises(AccessDenied):
        trip_service.report_trip_issue(db, trip.id, stranger, "not my bus")
