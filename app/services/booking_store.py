"""Persistence for bookings and their change feed.

The engine never writes booking state through the ORM identity map after
creation: every transition goes through `conditional_update`, which is a
single UPDATE guarded by the expected prior status.
"""
from contextlib import contextmanager
from datetime import datetime
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError, InterfaceError
from sqlalchemy.orm import Session

from app.models.booking import Booking
from app.models.booking_event import BookingEvent
from app.models.charge import Charge
from app.services.booking_status import BookingStatus
from app.services.errors import TransientError

logger = logging.getLogger(__name__)


@contextmanager
def store_errors(db: Session):
    """Roll back and re-raise connectivity failures as TransientError."""
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        db.rollback()
        logger.warning("booking store unavailable: %s", e)
        raise TransientError("booking store unavailable, please retry") from e


class BookingStore:
    def __init__(self, db: Session):
        self.db = db

    def get(self, booking_id: str) -> Booking | None:
        with store_errors(self.db):
            return self.db.get(Booking, booking_id, populate_existing=True)

    def find_by_idempotency_key(self, key: str) -> Booking | None:
        with store_errors(self.db):
            return self.db.execute(
                select(Booking).where(Booking.idempotency_key == key)
            ).scalar_one_or_none()

    def create(self, booking: Booking, message: str = "") -> Booking:
        """Stage a new record and its creation event; flushed so constraint violations surface here."""
        with store_errors(self.db):
            self.db.add(booking)
            self.db.flush()
            self.record_event(booking, booking.status, message)
            return booking

    def conditional_update(
        self,
        booking_id: str,
        expected_status: str,
        patch: dict,
        *criteria,
    ) -> bool:
        """Apply `patch` iff the row still has `expected_status` (and `criteria` hold).

        Returns False on conflict. Nothing is committed here.
        """
        stmt = (
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == expected_status, *criteria)
            .values(**patch)
            .execution_options(synchronize_session=False)
        )
        with store_errors(self.db):
            result = self.db.execute(stmt)
        return result.rowcount == 1

    def record_event(self, booking: Booking, status: str, message: str = "") -> None:
        self.db.add(BookingEvent(
            booking_id=booking.id,
            customer_id=booking.customer_id,
            shop_id=booking.shop_id,
            status=status,
            message=message,
        ))

    def find_charge(self, client_ref: str) -> Charge | None:
        with store_errors(self.db):
            return self.db.execute(
                select(Charge).where(Charge.client_ref == client_ref)
            ).scalar_one_or_none()

    def record_charge(self, charge: Charge) -> Charge:
        """Commit a charge outcome on its own, ahead of any booking write."""
        with store_errors(self.db):
            self.db.add(charge)
            try:
                self.db.commit()
            except IntegrityError as e:
                # A concurrent retry of the same checkout recorded first.
                self.db.rollback()
                raise TransientError("checkout is already being processed, please retry") from e
        return charge

    def commit(self) -> None:
        with store_errors(self.db):
            self.db.commit()

    def query_by_shop(self, shop_id: str, status: str | None = None) -> list[Booking]:
        q = select(Booking).where(Booking.shop_id == shop_id)
        if status:
            q = q.where(Booking.status == status)
        with store_errors(self.db):
            return list(self.db.execute(q.order_by(Booking.created_at.desc())).scalars())

    def query_by_customer(self, customer_id: str, status: str | None = None) -> list[Booking]:
        q = select(Booking).where(Booking.customer_id == customer_id)
        if status:
            q = q.where(Booking.status == status)
        with store_errors(self.db):
            return list(self.db.execute(q.order_by(Booking.created_at.desc())).scalars())

    def slot_taken(self, shop_id: str, date_str: str, time_str: str) -> bool:
        q = select(Booking.id).where(
            Booking.shop_id == shop_id,
            Booking.date_str == date_str,
            Booking.time_str == time_str,
            Booking.status.in_([BookingStatus.PAYMENT_HELD.value, BookingStatus.CONFIRMED.value]),
        ).limit(1)
        with store_errors(self.db):
            return self.db.execute(q).first() is not None

    def expired_hold_ids(self, now: datetime, limit: int = 500) -> list[str]:
        q = (
            select(Booking.id)
            .where(Booking.status == BookingStatus.PAYMENT_HELD.value, Booking.expiry_time < now)
            .order_by(Booking.expiry_time.asc())
            .limit(limit)
        )
        with store_errors(self.db):
            return list(self.db.execute(q).scalars())

    def changes(
        self,
        after: int = 0,
        shop_id: str | None = None,
        customer_id: str | None = None,
        limit: int = 100,
    ) -> list[BookingEvent]:
        """Events past the `after` cursor, oldest first, filtered by party."""
        q = select(BookingEvent).where(BookingEvent.id > after)
        if shop_id:
            q = q.where(BookingEvent.shop_id == shop_id)
        if customer_id:
            q = q.where(BookingEvent.customer_id == customer_id)
        q = q.order_by(BookingEvent.id.asc()).limit(min(max(limit, 1), 1000))
        with store_errors(self.db):
            return list(self.db.execute(q).scalars())

    def recent_events(self, shop_id: str | None = None, customer_id: str | None = None, limit: int = 200) -> list[BookingEvent]:
        q = select(BookingEvent)
        if shop_id:
            q = q.where(BookingEvent.shop_id == shop_id)
        if customer_id:
            q = q.where(BookingEvent.customer_id == customer_id)
        q = q.order_by(BookingEvent.id.desc()).limit(limit)
        with store_errors(self.db):
            return list(self.db.execute(q).scalars())
