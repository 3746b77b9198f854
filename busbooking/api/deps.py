from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.orm import Session

from busbooking.db.session import get_db
from busbooking.core.security import decode_token
from busbooking.models.reservation import Reservation
from busbooking.models.user import User

bearer = HTTPBearer(auto_error=False)


def _user_from_token(token: str, db: Session) -> User:
    try:
        payload = decode_token(token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db.get(User, payload.get("sub"))
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return user


def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return _user_from_token(creds.credentials, db)


def get_optional_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> User | None:
    """Guest checkout is allowed; a bad token is still rejected."""
    if not creds:
        return None
    return _user_from_token(creds.credentials, db)


def require_roles(*roles: str):
    def _guard(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user
    return _guard


def client_ip(request: Request) -> str:
    fwd = request.headers.get("x-forwarded-for")
    if fwd:
        return fwd.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"


def get_vnpay_client():
    from busbooking.services.vnpay_client import VNPayClient
    return VNPayClient()


def ensure_reservation_access(r: Reservation | None, user: User | None, phone: str | None) -> Reservation:
    """Staff of the company, the booking account, or whoever knows the passenger phone."""
    if r:
        if user is not None and (user.role == "admin" or (user.role == "company" and user.company_id == r.company_id)):
            return r
        if user is not None and r.user_id == user.id:
            return r
        if phone and phone.strip() == r.passenger_phone:
            return r
    # same answer for "missing" and "not yours"
    raise HTTPException(status_code=404, detail="Reservation not found")


def owned_reservation(db: Session, code: str, user: User | None, phone: str | None) -> Reservation:
    r = db.execute(
        select(Reservation).where(Reservation.booking_code == code.strip().upper())
    ).scalar_one_or_none()
    return ensure_reservation_access(r, user, phone)
