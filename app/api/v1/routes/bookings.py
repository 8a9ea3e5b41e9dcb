import uuid
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from app.api.deps import (
    Principal,
    get_booking_engine,
    get_current_user,
    get_payment_gateway,
    http_error,
    require_roles,
)
from app.schemas.booking import (
    AbandonIn,
    AbandonIntentIn,
    BookingChangeOut,
    BookingCreate,
    BookingOut,
    CustomerHistoryOut,
    booking_out,
)
from app.services.booking_engine import BookingEngine, Party, PendingIntent, Service, Slot
from app.services.checkout_service import charge_once
from app.services.clock import as_utc
from app.services.customer_service import customer_history
from app.services.errors import BookingError, PaymentNotConfirmed, SlotUnavailable
from app.services.payment_gateway import PaymentGatewayClient, PaymentGatewayError, PaymentResult
from app.services.slot_calendar import validate_slot

router = APIRouter(tags=["bookings"])

SLOT_LOST_REASON = "Slot no longer available, payment refunded"


def _intent(body, me: Principal, payment: PaymentResult | None) -> PendingIntent:
    return PendingIntent(
        customer=Party(me.id, me.name),
        shop=Party(body.shopId, body.shopName),
        service=Service(body.serviceName, body.price),
        slot=Slot(body.date, body.time),
        payment=payment,
        idempotency_key=body.idempotencyKey,
    )


@router.post("/bookings", response_model=BookingOut)
def create_booking(
    body: BookingCreate,
    engine: BookingEngine = Depends(get_booking_engine),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway),
    me: Principal = Depends(require_roles("customer")),
):
    """Charge the customer and open an escrow hold for the chosen slot.

    Retrying with the same `idempotencyKey` returns the original booking, or
    reuses the recorded charge if the booking write failed, without charging
    again.
    """
    customer = Party(me.id, me.name)
    shop = Party(body.shopId, body.shopName)
    service = Service(body.serviceName, body.price)
    slot = Slot(body.date, body.time)
    try:
        if body.idempotencyKey:
            existing = engine.replay(body.idempotencyKey, customer)
            if existing:
                return booking_out(existing)
        # Fail fast before money moves. Once a charge is recorded for this key,
        # a lost slot goes through the refunding path below instead.
        day, label = validate_slot(body.date, body.time, engine.now())
        charged = engine.store.find_charge(body.idempotencyKey) if body.idempotencyKey else None
        if charged is None and engine.store.slot_taken(body.shopId, day.isoformat(), label):
            raise SlotUnavailable(f"{body.shopId} is already booked on {day.isoformat()} at {label}")

        payment = charge_once(
            engine.store,
            gateway,
            customer_id=me.id,
            shop_id=body.shopId,
            amount=body.price,
            token=body.paymentToken,
            client_ref=body.idempotencyKey or str(uuid.uuid4()),
        )
        if payment.outcome != "success":
            engine.abandon(intent=_intent(body, me, payment), actor=me.id)
            raise PaymentNotConfirmed(f"payment {payment.outcome}")

        try:
            booking = engine.create(customer, shop, service, slot, payment, idempotency_key=body.idempotencyKey)
        except SlotUnavailable:
            # Charged but lost the race for the slot
            engine.abandon(intent=_intent(body, me, payment), reason=SLOT_LOST_REASON, actor=me.id)
            raise
    except BookingError as e:
        raise http_error(e)
    except PaymentGatewayError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return booking_out(booking)


@router.post("/bookings/abandon", response_model=BookingOut)
def abandon_before_payment(
    body: AbandonIntentIn,
    engine: BookingEngine = Depends(get_booking_engine),
    me: Principal = Depends(require_roles("customer")),
):
    """Record a checkout the customer closed before the gateway confirmed payment."""
    payment = PaymentResult(transaction_id=body.transactionId, outcome=body.paymentOutcome)
    try:
        booking = engine.abandon(intent=_intent(body, me, payment), actor=me.id)
    except BookingError as e:
        raise http_error(e)
    return booking_out(booking)


@router.post("/bookings/{booking_id}/abandon", response_model=BookingOut)
def abandon_held_booking(
    booking_id: str,
    body: AbandonIn,
    engine: BookingEngine = Depends(get_booking_engine),
    me: Principal = Depends(require_roles("customer")),
):
    b = engine.store.get(booking_id)
    if not b or b.customer_id != me.id:
        raise HTTPException(status_code=404, detail="Not found")
    try:
        kwargs = {"reason": body.reason.strip()} if body.reason.strip() else {}
        booking = engine.abandon(booking_id=booking_id, actor=me.id, **kwargs)
    except BookingError as e:
        raise http_error(e)
    return booking_out(booking)


@router.get("/bookings/changes", response_model=list[BookingChangeOut])
def booking_changes(
    after: int = 0,
    limit: int = 100,
    engine: BookingEngine = Depends(get_booking_engine),
    me: Principal = Depends(require_roles("customer", "partner")),
):
    """Change feed for the caller's bookings; pass the last `cursor` seen as `after`."""
    if me.role == "partner":
        events = engine.store.changes(after=after, shop_id=me.id, limit=limit)
    else:
        events = engine.store.changes(after=after, customer_id=me.id, limit=limit)
    return [BookingChangeOut(
        cursor=e.id,
        bookingId=e.booking_id,
        status=e.status,
        message=e.message or "",
        createdAt=as_utc(e.created_at).isoformat(),
    ) for e in events]


@router.get("/bookings/{booking_id}", response_model=BookingOut)
def get_booking(
    booking_id: str,
    engine: BookingEngine = Depends(get_booking_engine),
    me: Principal = Depends(get_current_user),
):
    b = engine.store.get(booking_id)
    if not b or (me.role != "admin" and me.id not in (b.customer_id, b.shop_id)):
        raise HTTPException(status_code=404, detail="Not found")
    return booking_out(b)


@router.get("/customer/bookings", response_model=CustomerHistoryOut)
def my_bookings(
    tab: Optional[str] = None,
    engine: BookingEngine = Depends(get_booking_engine),
    me: Principal = Depends(require_roles("customer")),
):
    try:
        history = customer_history(engine.store, me.id, tab)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return CustomerHistoryOut(
        total=history["total"],
        stats=history["stats"],
        items=[booking_out(b) for b in history["items"]],
    )
