from dataclasses import dataclass
from datetime import datetime

from app.models.booking import Booking
from app.services.booking_engine import BookingEngine
from app.services.booking_status import BookingStatus
from app.services.clock import as_utc
from app.services.errors import NotFound, StaleTransition

STALE_MESSAGE = "This request already expired or was resolved"


class RequestClosed(StaleTransition):
    """StaleTransition worded for the partner."""

    def __init__(self, cause: StaleTransition):
        super().__init__(cause.booking_id, cause.status, STALE_MESSAGE)


@dataclass
class PendingRequest:
    booking: Booking
    remaining_seconds: int


def remaining_seconds(booking: Booking, now: datetime) -> int:
    left = (as_utc(booking.expiry_time) - as_utc(now)).total_seconds()
    return max(0, int(left))


class PartnerResponseHandler:
    """Accept/decline surface for one shop. Holds no state of its own."""

    def __init__(self, engine: BookingEngine, shop_id: str):
        self.engine = engine
        self.shop_id = shop_id

    def pending(self) -> list[PendingRequest]:
        now = self.engine.now()
        held = self.engine.store.query_by_shop(self.shop_id, status=BookingStatus.PAYMENT_HELD.value)
        items = [PendingRequest(b, remaining_seconds(b, now)) for b in held]
        items.sort(key=lambda p: as_utc(p.booking.expiry_time))
        return items

    def _owned(self, booking_id: str) -> Booking:
        b = self.engine.store.get(booking_id)
        if b is None or b.shop_id != self.shop_id:
            raise NotFound(f"booking {booking_id} not found")
        return b

    def accept(self, booking_id: str) -> Booking:
        self._owned(booking_id)
        try:
            return self.engine.confirm(booking_id, actor=self.shop_id)
        except StaleTransition as e:
            raise RequestClosed(e) from e

    def decline(self, booking_id: str, reason: str) -> Booking:
        self._owned(booking_id)
        try:
            return self.engine.reject(booking_id, reason, actor=self.shop_id)
        except StaleTransition as e:
            raise RequestClosed(e) from e
