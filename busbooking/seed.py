import logging
import uuid
from datetime import timedelta
from decimal import Decimal

from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, ProgrammingError

from busbooking.db.session import SessionLocal
from busbooking.core.config import settings
from busbooking.core.timeutil import utcnow
from busbooking.models.user import User
from busbooking.models.bus import Bus
from busbooking.models.trip import Trip
from busbooking.models.voucher import Voucher
from busbooking.services.seat_inventory import ensure_seats_for_bus

logger = logging.getLogger(__name__)

DEMO_COMPANY_ID = "00000000-0000-0000-0000-00000000c0de"


def ensure_user(db: Session, email: str, role: str, name: str, company_id: str | None = None) -> User:
    u = db.query(User).filter(User.email == email).first()
    if u:
        return u
    u = User(id=str(uuid.uuid4()), email=email, full_name=name, role=role, company_id=company_id, is_active=True)
    db.add(u)
    db.commit()
    return u


def ensure_bus(db: Session, bus_number: str, bus_type: str, total_seats: int) -> Bus:
    bus = db.query(Bus).filter(Bus.bus_number == bus_number).first()
    if not bus:
        bus = Bus(id=str(uuid.uuid4()), company_id=DEMO_COMPANY_ID, bus_number=bus_number, bus_type=bus_type, total_seats=total_seats)
        db.add(bus)
        db.flush()
    added = ensure_seats_for_bus(db, bus)
    db.commit()
    if added:
        logger.info("[seed] bus %s: %d seats created", bus_number, added)
    return bus


def run(db=None):
    if db is None:
        db = SessionLocal()
    try:
        # If migrations haven't been applied yet, seeding must not crash the API.
        try:
            db.execute(text("SELECT 1 FROM users LIMIT 1"))
        except (ProgrammingError, OperationalError):
            db.rollback()
            logger.warning("[seed] users table not found yet. Skipping seeding (run alembic upgrade head).")
            return

        if settings.ENV not in ("local", "dev", "demo"):
            return

        ensure_user(db, "admin@busbooking.local", "admin", "Admin")
        ensure_user(db, "company@busbooking.local", "company", "Demo Bus Co.", company_id=DEMO_COMPANY_ID)
        driver = ensure_user(db, "driver@busbooking.local", "driver", "Demo Driver", company_id=DEMO_COMPANY_ID)

        bus = ensure_bus(db, "51B-000.01", "Limousine 22 VIP", 22)

        if not db.query(Trip).filter(Trip.bus_id == bus.id).first():
            dep = (utcnow() + timedelta(days=2)).replace(minute=0, second=0, microsecond=0)
            db.add(Trip(
                id=str(uuid.uuid4()),
                company_id=DEMO_COMPANY_ID,
                bus_id=bus.id,
                driver_user_id=driver.id,
                from_label="Ho Chi Minh",
                to_label="Da Lat",
                departure_time=dep,
                arrival_time=dep + timedelta(hours=7),
                base_price=Decimal("300000"),
                total_seats=bus.total_seats,
            ))
            db.commit()

        if not db.query(Voucher).filter(Voucher.code == "WELCOME10").first():
            db.add(Voucher(
                id=str(uuid.uuid4()),
                code="WELCOME10",
                name="10% off your first trip",
                discount_type="PERCENT",
                discount_value=Decimal("10"),
                max_discount=Decimal("50000"),
                usage_limit=100,
                usage_per_user=1,
            ))
            db.commit()
    finally:
        db.close()


if __name__ == "__main__":
    run()
