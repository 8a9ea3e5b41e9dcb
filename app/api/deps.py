from dataclasses import dataclass
import logging

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.core.security import ROLES, decode_token
from app.models.booking import Booking
from app.services.booking_engine import BookingEngine
from app.services.errors import BookingError
from app.services.payment_gateway import PaymentGatewayClient

logger = logging.getLogger(__name__)

bearer = HTTPBearer(auto_error=False)


@dataclass
class Principal:
    """Acting user as asserted by the identity provider."""

    id: str
    role: str
    name: str = ""


def get_current_user(creds: HTTPAuthorizationCredentials | None = Depends(bearer)) -> Principal:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(creds.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    user_id = payload.get("sub")
    role = payload.get("role")
    if not user_id or role not in ROLES:
        raise HTTPException(status_code=401, detail="Invalid token claims")
    return Principal(id=str(user_id), role=role, name=str(payload.get("name") or ""))

def require_roles(*roles: str):
    def _guard(user: Principal = Depends(get_current_user)) -> Principal:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user
    return _guard


def _schedule_expiry(booking: Booking) -> None:
    from app.tasks.jobs import schedule_expiry
    schedule_expiry(booking.id, booking.expiry_time)


def get_booking_engine(db: Session = Depends(get_db)) -> BookingEngine:
    return BookingEngine(db, on_created=_schedule_expiry)


def get_payment_gateway() -> PaymentGatewayClient:
    return PaymentGatewayClient.from_settings()


def http_error(e: BookingError) -> HTTPException:
    if e.status_code >= 500:
        logger.warning("request failed: %s", e)
    return HTTPException(status_code=e.status_code, detail=str(e))
