import os
import tempfile
import uuid
from datetime import timedelta
from decimal import Decimal

_tmpdir = tempfile.mkdtemp(prefix="busbooking-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmpdir, 'test.db')}"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["SCHEMA_CHECK"] = "false"
os.environ["VNP_TMN_CODE"] = "TESTTMN1"
os.environ["VNP_HASH_SECRET"] = "TESTHASHSECRET0123456789"
os.environ["FRONTEND_URL"] = "http://frontend.test"
os.environ.pop("PENDING_PAYMENT_TIMEOUT_MINUTES", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from busbooking.core.security import create_access_token  # noqa: E402
from busbooking.core.timeutil import utcnow  # noqa: E402
from busbooking.db.base import Base  # noqa: E402
from busbooking.db.session import SessionLocal, engine  # noqa: E402
from busbooking.models.bus import Bus  # noqa: E402
from busbooking.models.seat import Seat  # noqa: E402
from busbooking.models.trip import Trip  # noqa: E402
from busbooking.models.user import User  # noqa: E402
from busbooking.models.voucher import Voucher  # noqa: E402
from busbooking.services import email_service  # noqa: E402
from busbooking.services.seat_inventory import ensure_seats_for_bus  # noqa: E402
from busbooking.services.vnpay_client import VNPayClient, VNPayConfig  # noqa: E402

COMPANY_ID = "company-1"
OTHER_COMPANY_ID = "company-2"
HASH_SECRET = os.environ["VNP_HASH_SECRET"]


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    """Captures outgoing mail instead of talking to SMTP."""
    sent = []
    monkeypatch.setattr(email_service, "send_email", lambda to, subject, body: sent.append((to, subject, body)))
    return sent


@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


def reload(model, pk):
    """Fresh read in its own short transaction; safe to call between API requests."""
    with SessionLocal() as s:
        return s.get(model, pk)


@pytest.fixture
def vnpay():
    return VNPayClient(VNPayConfig(
        tmn_code="TESTTMN1",
        hash_secret=HASH_SECRET,
        pay_url="https://sandbox.vnpayment.test/paymentv2/vpcpay.html",
        return_url="http://testserver/api/v1/payments/vnpay/return",
        api_url="https://sandbox.vnpayment.test/merchant_webapi/api/transaction",
    ))


def create_user(role: str, company_id: str | None = None, email: str | None = None) -> User:
    with SessionLocal() as s:
        u = User(
            id=str(uuid.uuid4()),
            email=email or f"{role}-{uuid.uuid4().hex[:8]}@example.test",
            full_name=role.title(),
            role=role,
            company_id=company_id,
            is_active=True,
        )
        s.add(u)
        s.commit()
        return u


def create_trip(
    seat_numbers: list[str] | None = None,
    total_seats: int = 10,
    base_price: str = "100000",
    departs_in: timedelta = timedelta(days=3),
    status: str = "SCHEDULED",
    company_id: str = COMPANY_ID,
    bus_type: str = "STANDARD",
    driver_user_id: str | None = None,
) -> Trip:
    """A trip on a fresh bus. Explicit seat_numbers get STANDARD seats; otherwise seats 01..N are generated."""
    with SessionLocal() as s:
        n = len(seat_numbers) if seat_numbers else total_seats
        bus = Bus(id=str(uuid.uuid4()), company_id=company_id, bus_number=uuid.uuid4().hex[:12], bus_type=bus_type, total_seats=n)
        s.add(bus)
        if seat_numbers:
            for num in seat_numbers:
                s.add(Seat(id=str(uuid.uuid4()), bus_id=bus.id, seat_number=num, seat_type="STANDARD", price_multiplier=Decimal("1.00")))
        else:
            ensure_seats_for_bus(s, bus)
        trip = Trip(
            id=str(uuid.uuid4()),
            company_id=company_id,
            bus_id=bus.id,
            driver_user_id=driver_user_id,
            from_label="Ho Chi Minh",
            to_label="Da Lat",
            departure_time=utcnow() + departs_in,
            base_price=Decimal(base_price),
            total_seats=n,
            status=status,
        )
        s.add(trip)
        s.commit()
        return trip


def create_voucher(code: str = "SAVE10", **kw) -> Voucher:
    fields = dict(
        id=str(uuid.uuid4()),
        code=code,
        name=code,
        company_id=None,
        discount_type="PERCENT",
        discount_value=Decimal("10"),
        used_count=0,
        is_active=True,
    )
    fields.update(kw)
    with SessionLocal() as s:
        v = Voucher(**fields)
        s.add(v)
        s.commit()
        return v


def auth(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


PASSENGER = {"name": "Nguyen Van A", "phone": "0901234567", "email": "a@example.test"}


@pytest.fixture
def client():
    from busbooking.main import app
    with TestClient(app) as c:
        yield c


def signed_query_answer(**fields) -> dict:
    """A querydr answer as the gateway would sign it with the test secret."""
    from busbooking.services import vnpay_client
    out = {
        "vnp_ResponseId": uuid.uuid4().hex,
        "vnp_Command": "querydr",
        "vnp_ResponseCode": "00",
        "vnp_Message": "QueryDR Success",
        "vnp_TmnCode": "TESTTMN1",
        "vnp_TransactionType": "01",
    }
    out.update(fields)
    out["vnp_SecureHash"] = vnpay_client._hmac_sha512_hex(HASH_SECRET, vnpay_client.query_response_data(out))
    return out


class FakeResponse:
    def __init__(self, payload, status=200):
        self._payload = payload
        self.status_code = status

    def raise_for_status(self):
        import requests
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code}")

    def json(self):
        return self._payload


def run_concurrently(*targets):
    """Start each target on its own thread and session at the same moment; returns results or exceptions."""
    import threading
    barrier = threading.Barrier(len(targets))
    results = [None] * len(targets)

    def runner(i, fn):
        barrier.wait()
        s = SessionLocal()
        try:
            results[i] = fn(s)
        except Exception as e:
            results[i] = e
        finally:
            s.close()

    threads = [threading.Thread(target=runner, args=(i, fn)) for i, fn in enumerate(targets)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return results
