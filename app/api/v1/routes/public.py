from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from sqlalchemy import select
from app.db.session import get_db
from app.models.booking import Booking
from app.schemas.booking import DaySlotsOut, SlotOut
from app.services import slot_calendar
from app.services.booking_status import BookingStatus

router = APIRouter(tags=["public"])


@router.get("/public/dates")
def list_dates():
    """The bookable days, today first."""
    return {"dates": [d.isoformat() for d in slot_calendar.dates()]}


def _taken_times(db: Session, shop_id: str, date_str: str) -> set[str]:
    rows = db.execute(
        select(Booking.time_str).where(
            Booking.shop_id == shop_id,
            Booking.date_str == date_str,
            Booking.status.in_([BookingStatus.PAYMENT_HELD.value, BookingStatus.CONFIRMED.value]),
        )
    ).scalars()
    return set(rows)


@router.get("/public/slots", response_model=DaySlotsOut)
def list_slots(date: str, shopId: Optional[str] = None, db: Session = Depends(get_db)):
    """Slot grid for one day. With `shopId`, slots held or confirmed for that shop are flagged `taken`."""
    try:
        day = _parse_day(date)
    except ValueError:
        raise HTTPException(status_code=400, detail="date must be YYYY-MM-DD")
    if day not in slot_calendar.dates():
        raise HTTPException(status_code=400, detail="date is outside the booking window")
    taken = _taken_times(db, shopId, day.isoformat()) if shopId else set()
    return DaySlotsOut(
        date=day.isoformat(),
        slots=[SlotOut(time=s["time"], disabled=s["disabled"], taken=s["time"] in taken) for s in slot_calendar.slot_grid(day)],
    )


def _parse_day(value: str):
    return date.fromisoformat(value)
