"""Booking creation and the escrow state machine.

    payment_held --confirm--> confirmed
                 --reject---> rejected   (refunded)
                 --expire---> failed     (refunded, system only)
                 --abandon--> cancelled  (refunded)

A customer who aborts before a record exists gets a `cancelled` record
directly. Every transition is one conditional UPDATE keyed on
`status == payment_held`, so concurrent callers resolve to a single winner and
the rest see StaleTransition. Events, audit rows and refunds are staged in the
winner's transaction only.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Callable
import logging
import uuid

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.booking import Booking
from app.models.refund import Refund
from app.services.audit_service import log_audit
from app.services.booking_status import BookingStatus, PaymentStatus
from app.services.booking_store import BookingStore
from app.services.clock import as_utc, utcnow
from app.services.errors import (
    NotFound,
    PaymentNotConfirmed,
    SlotUnavailable,
    StaleTransition,
    ValidationError,
)
from app.services.payment_gateway import PaymentResult
from app.services.slot_calendar import validate_slot

logger = logging.getLogger(__name__)

ABANDON_REASON = "Payment cancelled, slot not booked"
EXPIRE_REASON = "Partner response timeout: auto-refund triggered"
SYSTEM_ACTOR = "system:sweeper"


@dataclass
class Party:
    id: str
    name: str = ""


@dataclass
class Service:
    name: str
    price: Decimal | int | float | str


@dataclass
class Slot:
    date: str  # YYYY-MM-DD
    time: str  # HH:MM


@dataclass
class PendingIntent:
    """A booking attempt the customer walked away from before a record existed."""

    customer: Party
    shop: Party
    service: Service
    slot: Slot
    payment: PaymentResult | None = None
    idempotency_key: str | None = None


def _price(value) -> Decimal:
    try:
        price = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"invalid price: {value!r}")
    if not price.is_finite() or price <= 0:
        raise ValidationError("price must be positive")
    return price.quantize(Decimal("0.01"))


def _check_parties(customer: Party, shop: Party, service: Service) -> Decimal:
    if not customer or not (customer.id or "").strip():
        raise ValidationError("customer identity is required")
    if not shop or not (shop.id or "").strip():
        raise ValidationError("shop identity is required")
    if not service or not (service.name or "").strip():
        raise ValidationError("service name is required")
    return _price(service.price)


class BookingEngine:
    def __init__(
        self,
        db: Session,
        now: Callable[[], datetime] = utcnow,
        on_created: Callable[[Booking], None] | None = None,
        escrow_window: timedelta | None = None,
    ):
        self.db = db
        self.store = BookingStore(db)
        self.now = now
        self.on_created = on_created
        self.escrow_window = escrow_window or timedelta(minutes=settings.ESCROW_WINDOW_MINUTES)

    # -------------------------
    # CREATE
    # -------------------------
    def create(
        self,
        customer: Party,
        shop: Party,
        service: Service,
        slot: Slot,
        payment: PaymentResult | None,
        idempotency_key: str | None = None,
    ) -> Booking:
        if idempotency_key:
            existing = self.replay(idempotency_key, customer)
            if existing:
                return existing

        if payment is None or payment.outcome != PaymentStatus.SUCCESS.value or not payment.transaction_id:
            raise PaymentNotConfirmed("payment was not confirmed by the gateway")

        price = _check_parties(customer, shop, service)
        now = self.now()
        day, label = validate_slot(slot.date, slot.time, now)

        booking = Booking(
            id=str(uuid.uuid4()),
            customer_id=customer.id,
            customer_name=customer.name or "",
            shop_id=shop.id,
            shop_name=shop.name or "",
            service_name=service.name.strip(),
            price=price,
            date_str=day.isoformat(),
            time_str=label,
            status=BookingStatus.PAYMENT_HELD,
            payment_status=PaymentStatus.SUCCESS,
            transaction_id=payment.transaction_id,
            idempotency_key=idempotency_key,
            created_at=now,
            expiry_time=now + self.escrow_window,
        )
        try:
            self.store.create(booking, message=f"New request: {booking.service_name} on {booking.date_str} {booking.time_str}")
            log_audit(self.db, customer.id, "booking.created", booking.id, {
                "transactionId": booking.transaction_id,
                "expiryTime": booking.expiry_time.isoformat(),
            })
            self.store.commit()
        except IntegrityError:
            self.db.rollback()
            if idempotency_key:
                existing = self.replay(idempotency_key, customer)
                if existing:
                    return existing
            raise SlotUnavailable(f"{shop.id} is already booked on {day.isoformat()} at {label}")

        logger.info("booking %s held for shop %s until %s", booking.id, booking.shop_id, booking.expiry_time.isoformat())
        if self.on_created:
            try:
                self.on_created(booking)
            except Exception:
                # The periodic sweep still covers this hold.
                logger.warning("post-create hook failed for booking %s", booking.id, exc_info=True)
        return booking

    def replay(self, key: str, customer: Party) -> Booking | None:
        existing = self.store.find_by_idempotency_key(key)
        if existing is None:
            return None
        if existing.customer_id != customer.id:
            raise ValidationError("idempotency key already used by another booking")
        logger.info("idempotent replay of booking %s", existing.id)
        return existing

    # -------------------------
    # TRANSITIONS
    # -------------------------
    def confirm(self, booking_id: str, actor: str) -> Booking:
        now = self.now()
        return self._transition(
            booking_id,
            BookingStatus.CONFIRMED,
            actor=actor,
            action="booking.confirmed",
            message="Request accepted",
            criteria=(Booking.expiry_time >= now,),
            now=now,
        )

    def reject(self, booking_id: str, reason: str, actor: str) -> Booking:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("a reason is required to decline")
        now = self.now()
        return self._transition(
            booking_id,
            BookingStatus.REJECTED,
            actor=actor,
            action="booking.rejected",
            message=reason,
            criteria=(Booking.expiry_time >= now,),
            patch={"payment_status": PaymentStatus.REFUNDED.value, "status_reason": reason},
            refund=True,
            now=now,
        )

    def expire(self, booking_id: str) -> Booking:
        now = self.now()
        return self._transition(
            booking_id,
            BookingStatus.FAILED,
            actor=SYSTEM_ACTOR,
            action="booking.expired",
            message=EXPIRE_REASON,
            criteria=(Booking.expiry_time < now,),
            patch={"payment_status": PaymentStatus.REFUNDED.value, "status_reason": EXPIRE_REASON},
            refund=True,
            now=now,
        )

    def abandon(
        self,
        booking_id: str | None = None,
        intent: PendingIntent | None = None,
        reason: str = ABANDON_REASON,
        actor: str | None = None,
    ) -> Booking:
        if booking_id:
            return self._transition(
                booking_id,
                BookingStatus.CANCELLED,
                actor=actor or "customer",
                action="booking.abandoned",
                message=reason,
                patch={"payment_status": PaymentStatus.REFUNDED.value, "status_reason": reason},
                refund=True,
            )
        if intent is None:
            raise ValidationError("abandon needs a booking id or a pending intent")
        return self._abandon_intent(intent, reason, actor or intent.customer.id)

    def _abandon_intent(self, intent: PendingIntent, reason: str, actor: str) -> Booking:
        if intent.idempotency_key:
            existing = self.replay(intent.idempotency_key, intent.customer)
            if existing:
                return self._abandon_replayed(existing, reason, actor)
        price = _check_parties(intent.customer, intent.shop, intent.service)
        payment = intent.payment
        outcome = payment.outcome if payment else PaymentStatus.ABANDONED.value
        if outcome == PaymentStatus.SUCCESS.value:
            # Charged but never held: release the money.
            payment_status = PaymentStatus.REFUNDED
        elif outcome == PaymentStatus.FAILED.value:
            payment_status = PaymentStatus.FAILED
        else:
            payment_status = PaymentStatus.ABANDONED

        now = self.now()
        booking = Booking(
            id=str(uuid.uuid4()),
            customer_id=intent.customer.id,
            customer_name=intent.customer.name or "",
            shop_id=intent.shop.id,
            shop_name=intent.shop.name or "",
            service_name=intent.service.name.strip(),
            price=price,
            date_str=intent.slot.date,
            time_str=intent.slot.time,
            status=BookingStatus.CANCELLED,
            payment_status=payment_status,
            status_reason=reason,
            transaction_id=payment.transaction_id if payment else None,
            idempotency_key=intent.idempotency_key,
            created_at=now,
            expiry_time=now,
            resolved_at=now,
            resolved_by=actor,
        )
        try:
            self.store.create(booking, message=reason)
            log_audit(self.db, actor, "booking.abandoned", booking.id, {"reason": reason, "paymentStatus": booking.payment_status})
            if payment_status is PaymentStatus.REFUNDED:
                self._queue_refund(booking)
            self.store.commit()
        except IntegrityError:
            self.db.rollback()
            existing = self.replay(intent.idempotency_key, intent.customer) if intent.idempotency_key else None
            if existing:
                return self._abandon_replayed(existing, reason, actor)
            raise
        logger.info("booking %s abandoned before hold: %s", booking.id, reason)
        return booking

    def _abandon_replayed(self, existing: Booking, reason: str, actor: str) -> Booking:
        if existing.status == BookingStatus.PAYMENT_HELD.value:
            # The hold was created after all; release it like any other abandon.
            return self.abandon(booking_id=existing.id, reason=reason, actor=actor)
        return existing

    def _transition(
        self,
        booking_id: str,
        target: BookingStatus,
        actor: str,
        action: str,
        message: str,
        criteria: tuple = (),
        patch: dict | None = None,
        refund: bool = False,
        now: datetime | None = None,
    ) -> Booking:
        now = now or self.now()
        values = {"status": target.value, "resolved_at": now, "resolved_by": actor, **(patch or {})}
        won = self.store.conditional_update(booking_id, BookingStatus.PAYMENT_HELD.value, values, *criteria)
        if not won:
            self.db.rollback()
            current = self.store.get(booking_id)
            if current is None:
                raise NotFound(f"booking {booking_id} not found")
            logger.info("stale %s on booking %s (status=%s)", action, booking_id, current.status)
            if current.status == BookingStatus.PAYMENT_HELD.value:
                raise StaleTransition(booking_id, current.status, f"response window for booking {booking_id} has closed")
            raise StaleTransition(booking_id, current.status)

        booking = self.store.get(booking_id)
        self.store.record_event(booking, target.value, message)
        log_audit(self.db, actor, action, booking_id, {
            "reason": values.get("status_reason"),
            "expiryTime": as_utc(booking.expiry_time).isoformat(),
        })
        if refund:
            self._queue_refund(booking)
        self.store.commit()
        logger.info("booking %s -> %s by %s", booking_id, target.value, actor)
        return self.store.get(booking_id)

    def _queue_refund(self, booking: Booking) -> None:
        self.db.add(Refund(
            id=str(uuid.uuid4()),
            booking_id=booking.id,
            transaction_id=booking.transaction_id,
            amount=booking.price,
            status="queued",
        ))
