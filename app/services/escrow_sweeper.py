from datetime import datetime
from typing import Callable
import logging

from sqlalchemy.exc import ProgrammingError
from sqlalchemy.orm import Session

from app.services.booking_engine import BookingEngine
from app.services.clock import utcnow
from app.services.errors import NotFound, StaleTransition

logger = logging.getLogger(__name__)


def sweep(db: Session, now: Callable[[], datetime] = utcnow, limit: int = 500) -> dict:
    """Force every overdue escrow hold through the auto-refund transition.

    Safe to run from several workers at once: each expiry is a conditional
    update, so a hold resolved elsewhere in the meantime is just counted as
    stale.
    """
    engine = BookingEngine(db, now=now)
    scanned, expired, stale = 0, 0, 0
    # `limit` is a batch size; keep going until the backlog is drained.
    while True:
        try:
            due = engine.store.expired_hold_ids(now(), limit=limit)
        except ProgrammingError:
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}

        batch_expired = 0
        for booking_id in due:
            try:
                engine.expire(booking_id)
                batch_expired += 1
            except (StaleTransition, NotFound):
                stale += 1
        scanned += len(due)
        expired += batch_expired
        if len(due) < limit or batch_expired == 0:
            break
    if expired:
        logger.info("escrow sweep expired %d hold(s), %d already resolved", expired, stale)
    return {"scanned": scanned, "expired": expired, "stale": stale}


def expire_one(db: Session, booking_id: str, now: Callable[[], datetime] = utcnow) -> dict:
    """Deadline task for a single hold; a no-op if it was resolved first."""
    try:
        booking = BookingEngine(db, now=now).expire(booking_id)
    except StaleTransition as e:
        return {"bookingId": booking_id, "expired": False, "status": e.status}
    except NotFound:
        return {"bookingId": booking_id, "expired": False, "status": None}
    return {"bookingId": booking_id, "expired": True, "status": booking.status}
