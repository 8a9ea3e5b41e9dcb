"""Read-only notification projection.

Merges booking change events and admin broadcasts for one user. Nothing here
is authoritative: the list can be rebuilt from the two sources at any time.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from sqlalchemy.orm import Session

from app.models.booking_event import BookingEvent
from app.models.broadcast import Broadcast
from app.services.booking_store import BookingStore
from app.services.clock import as_utc

# The same event reads differently to the shop and to the customer who booked.
_TITLES = {
    "partner": {
        "payment_held": "New booking request",
        "confirmed": "Request accepted",
        "rejected": "Request declined",
        "failed": "Request expired, customer refunded",
        "cancelled": "Booking cancelled by customer",
    },
    "customer": {
        "payment_held": "Booking request sent",
        "confirmed": "Booking confirmed",
        "rejected": "Booking declined",
        "failed": "Auto-refund issued",
        "cancelled": "Booking cancelled",
    },
}


@dataclass
class Notification:
    id: str
    kind: str  # booking | broadcast
    title: str
    body: str
    created_at: datetime
    booking_id: str | None = None
    status: str | None = None


@dataclass
class NotificationSnapshot:
    items: list[Notification] = field(default_factory=list)
    cue: bool = False

    @property
    def size(self) -> int:
        return len(self.items)


def from_event(e: BookingEvent, role: str = "customer") -> Notification:
    titles = _TITLES.get(role, _TITLES["customer"])
    return Notification(
        id=f"booking:{e.id}",
        kind="booking",
        title=titles.get(e.status, e.status),
        body=e.message or "",
        created_at=as_utc(e.created_at),
        booking_id=e.booking_id,
        status=e.status,
    )


def from_broadcast(b: Broadcast) -> Notification:
    return Notification(
        id=f"broadcast:{b.id}",
        kind="broadcast",
        title=b.title,
        body=b.body or "",
        created_at=as_utc(b.created_at),
    )


def build_notifications(
    events: Iterable[BookingEvent],
    broadcasts: Iterable[Broadcast],
    dismissed: Iterable[str] = (),
    role: str = "customer",
) -> list[Notification]:
    hidden = set(dismissed)
    merged = [from_event(e, role) for e in events] + [from_broadcast(b) for b in broadcasts]
    merged = [n for n in merged if n.id not in hidden]
    merged.sort(key=lambda n: (n.created_at, n.id), reverse=True)
    return merged


class NotificationFeed:
    """Tracks the previous snapshot size so callers can play a cue on growth."""

    def __init__(self, previous_size: int | None = None):
        self.previous_size = previous_size

    def update(self, items: list[Notification]) -> NotificationSnapshot:
        cue = self.previous_size is not None and len(items) > self.previous_size
        self.previous_size = len(items)
        return NotificationSnapshot(items=items, cue=cue)


def notifications_for(db: Session, user_id: str, role: str, dismissed: Iterable[str] = (), limit: int = 200) -> list[Notification]:
    store = BookingStore(db)
    if role == "partner":
        events = store.recent_events(shop_id=user_id, limit=limit)
    elif role == "customer":
        events = store.recent_events(customer_id=user_id, limit=limit)
    else:
        events = []
    audiences = ["all", role]
    broadcasts = (
        db.query(Broadcast)
        .filter(Broadcast.audience.in_(audiences))
        .order_by(Broadcast.created_at.desc())
        .limit(limit)
        .all()
    )
    return build_notifications(events, broadcasts, dismissed, role=role)
