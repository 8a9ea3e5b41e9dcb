import uuid
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from app.api.deps import Principal, require_roles
from app.db.session import get_db
from app.models.booking import Booking
from app.models.broadcast import Broadcast
from app.models.refund import Refund
from app.schemas.booking import booking_out
from app.schemas.notifications import BroadcastIn
from app.services.audit_service import booking_audit_trail
from app.services.booking_status import normalize_status
from app.services.errors import ValidationError
from app.services.escrow_sweeper import sweep

router = APIRouter(tags=["admin"])


@router.post("/admin/broadcasts")
def create_broadcast(body: BroadcastIn, db: Session = Depends(get_db), me: Principal = Depends(require_roles("admin"))):
    b = Broadcast(id=str(uuid.uuid4()), title=body.title, body=body.body, audience=body.audience, created_by=me.id)
    db.add(b)
    db.commit()
    return {"id": b.id, "audience": b.audience}


@router.post("/admin/sweep")
def run_sweep(db: Session = Depends(get_db), me: Principal = Depends(require_roles("admin"))):
    """Run one escrow sweep now instead of waiting for the scheduler."""
    return sweep(db)


@router.get("/admin/bookings")
def list_bookings(
    status: str = "",
    shopId: str = "",
    customerId: str = "",
    limit: int = 200,
    db: Session = Depends(get_db),
    me: Principal = Depends(require_roles("admin")),
):
    query = db.query(Booking)
    if status:
        try:
            query = query.filter(Booking.status == normalize_status(status))
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=str(e))
    if shopId:
        query = query.filter(Booking.shop_id == shopId)
    if customerId:
        query = query.filter(Booking.customer_id == customerId)
    rows = query.order_by(Booking.created_at.desc()).limit(min(max(limit, 1), 1000)).all()
    return [booking_out(b) for b in rows]


@router.get("/admin/bookings/{booking_id}/audit")
def booking_audit(booking_id: str, db: Session = Depends(get_db), me: Principal = Depends(require_roles("admin"))):
    b = db.get(Booking, booking_id)
    if not b:
        raise HTTPException(status_code=404, detail="Not found")
    refund = db.query(Refund).filter(Refund.booking_id == booking_id).first()
    return {
        "booking": booking_out(b),
        "trail": booking_audit_trail(db, booking_id),
        "refund": {
            "status": refund.status,
            "amount": str(refund.amount),
            "providerRef": refund.provider_ref,
        } if refund else None,
    }
