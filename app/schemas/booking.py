from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from app.models.booking import Booking
from app.services.booking_status import normalize_payment_status, normalize_status
from app.services.clock import as_utc


class BookingCreate(BaseModel):
    shopId: str
    shopName: str = ""
    serviceName: str
    price: Decimal = Field(gt=0)
    date: str  # YYYY-MM-DD
    time: str  # HH:MM
    paymentToken: str  # transient token from the gateway's browser form
    idempotencyKey: Optional[str] = Field(default=None, max_length=120)


class AbandonIntentIn(BaseModel):
    shopId: str
    shopName: str = ""
    serviceName: str
    price: Decimal = Field(gt=0)
    date: str
    time: str
    transactionId: Optional[str] = None
    paymentOutcome: Literal["abandoned", "failed"] = "abandoned"
    idempotencyKey: Optional[str] = Field(default=None, max_length=120)


class AbandonIn(BaseModel):
    reason: str = ""


class DeclineIn(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


# -------------------------
# Booking views, one variant per status
# -------------------------
class _BookingBase(BaseModel):
    id: str
    customerId: str
    customerName: str
    shopId: str
    shopName: str
    serviceName: str
    price: Decimal
    date: str
    time: str
    transactionId: Optional[str] = None
    createdAt: str


class HeldBookingOut(_BookingBase):
    status: Literal["payment_held"]
    paymentStatus: Literal["success"]
    expiryTime: str


class ConfirmedBookingOut(_BookingBase):
    status: Literal["confirmed"]
    paymentStatus: Literal["success"]
    resolvedAt: Optional[str] = None


class _ClosedBookingOut(_BookingBase):
    paymentStatus: Literal["refunded", "abandoned", "failed"]
    statusReason: str
    resolvedAt: Optional[str] = None


class RejectedBookingOut(_ClosedBookingOut):
    status: Literal["rejected"]


class FailedBookingOut(_ClosedBookingOut):
    status: Literal["failed"]


class CancelledBookingOut(_ClosedBookingOut):
    status: Literal["cancelled"]


BookingOut = Annotated[
    Union[HeldBookingOut, ConfirmedBookingOut, RejectedBookingOut, FailedBookingOut, CancelledBookingOut],
    Field(discriminator="status"),
]
_booking_adapter = TypeAdapter(BookingOut)


def _iso(dt) -> Optional[str]:
    return as_utc(dt).isoformat() if dt else None


def booking_out(b: Booking):
    """Validate a stored row into its status-specific variant."""
    data = {
        "id": b.id,
        "customerId": b.customer_id,
        "customerName": b.customer_name or "",
        "shopId": b.shop_id,
        "shopName": b.shop_name or "",
        "serviceName": b.service_name,
        "price": b.price,
        "date": b.date_str,
        "time": b.time_str,
        "transactionId": b.transaction_id,
        "createdAt": _iso(b.created_at),
        "status": normalize_status(b.status),
        "paymentStatus": normalize_payment_status(b.payment_status),
    }
    if data["status"] == "payment_held":
        data["expiryTime"] = _iso(b.expiry_time)
    else:
        data["resolvedAt"] = _iso(b.resolved_at)
        if data["status"] != "confirmed":
            data["statusReason"] = b.status_reason or ""
    return _booking_adapter.validate_python(data)


class PartnerRequestOut(BaseModel):
    booking: HeldBookingOut
    remainingSeconds: int


class CustomerHistoryOut(BaseModel):
    total: int
    stats: dict[str, int]
    items: List[BookingOut]


class BookingChangeOut(BaseModel):
    cursor: int
    bookingId: str
    status: str
    message: str
    createdAt: str


class SlotOut(BaseModel):
    time: str
    disabled: bool
    taken: bool = False


class DaySlotsOut(BaseModel):
    date: str
    slots: List[SlotOut]
