from sqlalchemy.orm import Session
from sqlalchemy.exc import ProgrammingError
from app.db.session import SessionLocal
from app.services import escrow_sweeper
from app.services.payment_gateway import PaymentGatewayClient
from app.services.refund_service import process_pending_refunds

def sweep_escrow_holds() -> dict:
    db: Session = SessionLocal()
    try:
        return escrow_sweeper.sweep(db)
    finally:
        db.close()

def expire_booking(booking_id: str) -> dict:
    db: Session = SessionLocal()
    try:
        return escrow_sweeper.expire_one(db, booking_id)
    finally:
        db.close()


def process_refund_queue(limit: int = 50) -> dict:
    """Send queued/failed refunds. Run periodically via Celery beat."""
    db: Session = SessionLocal()
    try:
        try:
            return process_pending_refunds(db, PaymentGatewayClient.from_settings(), limit=limit)
        except ProgrammingError:
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
    finally:
        db.close()
