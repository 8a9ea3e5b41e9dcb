from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.models.audit_log import AuditLog
from app.models.booking import Booking
from app.models.booking_event import BookingEvent
from app.models.refund import Refund
from app.services.booking_engine import (
    ABANDON_REASON,
    EXPIRE_REASON,
    BookingEngine,
    Party,
    PendingIntent,
    Service,
    Slot,
)
from app.services.clock import as_utc
from app.services.errors import (
    NotFound,
    PaymentNotConfirmed,
    SlotUnavailable,
    StaleTransition,
    ValidationError,
)
from app.services.payment_gateway import PaymentResult


def _count(db, model, **filters):
    q = select(func.count()).select_from(model)
    for name, value in filters.items():
        q = q.where(getattr(model, name) == value)
    return db.execute(q).scalar_one()


def _intent(tomorrow, payment=None, key=None):
    return PendingIntent(
        customer=Party("cust-1", "Ada"),
        shop=Party("shop-1", "Fade Factory"),
        service=Service("Executive Haircut", "45"),
        slot=Slot(tomorrow, "14:00"),
        payment=payment,
        idempotency_key=key,
    )


class TestCreate:
    def test_creates_held_booking_with_deadline(self, make_booking, clock):
        b = make_booking()
        assert b.status == "payment_held"
        assert b.payment_status == "success"
        assert b.transaction_id == "txn-1"
        assert b.price == Decimal("45.00")
        assert b.expiry_time - b.created_at == timedelta(minutes=5)
        assert as_utc(b.created_at) == clock()

    def test_records_creation_event_and_audit(self, make_booking, db):
        b = make_booking()
        assert _count(db, BookingEvent, booking_id=b.id, status="payment_held") == 1
        assert _count(db, AuditLog, booking_id=b.id, action="booking.created") == 1

    def test_requires_confirmed_payment(self, engine, tomorrow):
        args = (Party("cust-1"), Party("shop-1"), Service("Cut", "45"), Slot(tomorrow, "14:00"))
        with pytest.raises(PaymentNotConfirmed):
            engine.create(*args, None)
        with pytest.raises(PaymentNotConfirmed):
            engine.create(*args, PaymentResult(transaction_id=None, outcome="success"))
        with pytest.raises(PaymentNotConfirmed):
            engine.create(*args, PaymentResult(transaction_id="t", outcome="abandoned"))

    @pytest.mark.parametrize("customer,shop,service", [
        ("", "shop-1", "Cut"),
        ("cust-1", " ", "Cut"),
        ("cust-1", "shop-1", ""),
    ])
    def test_rejects_missing_identity(self, engine, tomorrow, paid, customer, shop, service):
        with pytest.raises(ValidationError):
            engine.create(Party(customer), Party(shop), Service(service, "45"), Slot(tomorrow, "14:00"), paid)

    @pytest.mark.parametrize("price", ["0", "-5", "abc", "NaN"])
    def test_rejects_bad_price(self, engine, tomorrow, paid, price):
        with pytest.raises(ValidationError):
            engine.create(Party("c"), Party("s"), Service("Cut", price), Slot(tomorrow, "14:00"), paid)

    def test_rejects_past_slot(self, engine, clock, paid):
        today = clock().date().isoformat()
        with pytest.raises(ValidationError):
            engine.create(Party("c"), Party("s"), Service("Cut", "45"), Slot(today, "08:30"), paid)

    def test_second_booking_for_same_slot_is_refused(self, make_booking, db):
        make_booking(customer="cust-1")
        with pytest.raises(SlotUnavailable):
            make_booking(customer="cust-2")
        assert _count(db, Booking) == 1

    def test_slot_frees_up_after_rejection(self, make_booking, engine):
        first = make_booking(customer="cust-1")
        engine.reject(first.id, "Closed that day", actor="shop-1")
        second = make_booking(customer="cust-2")
        assert second.status == "payment_held"

    def test_same_time_at_another_shop_is_fine(self, make_booking):
        make_booking(shop="shop-1")
        assert make_booking(shop="shop-2").status == "payment_held"

    def test_idempotent_retry_returns_original(self, make_booking, db):
        first = make_booking(key="checkout-1")
        again = make_booking(key="checkout-1", txn="txn-other")
        assert again.id == first.id
        assert again.transaction_id == first.transaction_id
        assert _count(db, Booking) == 1

    def test_idempotency_key_of_another_customer(self, make_booking):
        make_booking(key="checkout-1")
        with pytest.raises(ValidationError):
            make_booking(customer="cust-2", key="checkout-1", time="15:00")

    def test_post_create_hook_failure_does_not_undo_booking(self, db, clock, tomorrow, paid):
        def boom(booking):
            raise RuntimeError("broker down")

        engine = BookingEngine(db, now=clock, on_created=boom)
        b = engine.create(Party("c"), Party("s"), Service("Cut", "45"), Slot(tomorrow, "14:00"), paid)
        assert engine.store.get(b.id).status == "payment_held"


class TestConfirmReject:
    def test_scenario_confirm_within_window(self, make_booking, engine, clock):
        b = make_booking()
        clock.advance(minutes=2)
        confirmed = engine.confirm(b.id, actor="shop-1")
        assert confirmed.status == "confirmed"
        assert confirmed.payment_status == "success"
        assert confirmed.resolved_by == "shop-1"
        clock.advance(minutes=10)
        with pytest.raises(StaleTransition) as exc:
            engine.expire(b.id)
        assert exc.value.status == "confirmed"

    def test_confirm_exactly_at_deadline(self, make_booking, engine, clock):
        b = make_booking()
        clock.advance(minutes=5)
        assert engine.confirm(b.id, actor="shop-1").status == "confirmed"

    def test_confirm_after_deadline_is_stale_even_before_sweep(self, make_booking, engine, clock):
        b = make_booking()
        clock.advance(minutes=5, seconds=1)
        with pytest.raises(StaleTransition) as exc:
            engine.confirm(b.id, actor="shop-1")
        assert exc.value.status == "payment_held"
        assert engine.store.get(b.id).status == "payment_held"

    def test_reject_refunds_and_records_reason(self, make_booking, engine, db):
        b = make_booking()
        rejected = engine.reject(b.id, "  Barber is sick ", actor="shop-1")
        assert rejected.status == "rejected"
        assert rejected.payment_status == "refunded"
        assert rejected.status_reason == "Barber is sick"
        refund = db.execute(select(Refund).where(Refund.booking_id == b.id)).scalar_one()
        assert refund.status == "queued"
        assert refund.amount == Decimal("45.00")
        assert refund.transaction_id == b.transaction_id

    def test_reject_needs_reason(self, make_booking, engine):
        b = make_booking()
        with pytest.raises(ValidationError):
            engine.reject(b.id, "   ", actor="shop-1")
        assert engine.store.get(b.id).status == "payment_held"

    def test_unknown_booking(self, engine):
        with pytest.raises(NotFound):
            engine.confirm("missing", actor="shop-1")


class TestTerminalStates:
    @pytest.mark.parametrize("first", ["confirm", "reject", "abandon"])
    def test_terminal_booking_never_moves_again(self, make_booking, engine, clock, db, first):
        b = make_booking()
        if first == "confirm":
            engine.confirm(b.id, actor="shop-1")
        elif first == "reject":
            engine.reject(b.id, "No", actor="shop-1")
        else:
            engine.abandon(booking_id=b.id, actor="cust-1")
        settled = engine.store.get(b.id).status
        events = _count(db, BookingEvent, booking_id=b.id)

        with pytest.raises(StaleTransition):
            engine.confirm(b.id, actor="shop-1")
        with pytest.raises(StaleTransition):
            engine.reject(b.id, "Again", actor="shop-1")
        with pytest.raises(StaleTransition):
            engine.abandon(booking_id=b.id, actor="cust-1")
        clock.advance(minutes=6)
        with pytest.raises(StaleTransition):
            engine.expire(b.id)

        assert engine.store.get(b.id).status == settled
        assert _count(db, BookingEvent, booking_id=b.id) == events
        assert _count(db, Refund, booking_id=b.id) == (0 if first == "confirm" else 1)

    def test_scenario_expire_after_silence(self, make_booking, engine, clock):
        b = make_booking()
        clock.advance(minutes=5, seconds=1)
        failed = engine.expire(b.id)
        assert failed.status == "failed"
        assert failed.payment_status == "refunded"
        assert failed.status_reason == EXPIRE_REASON
        assert failed.resolved_by == "system:sweeper"
        with pytest.raises(StaleTransition):
            engine.confirm(b.id, actor="shop-1")
        with pytest.raises(StaleTransition):
            engine.reject(b.id, "late", actor="shop-1")

    def test_expire_before_deadline_is_refused(self, make_booking, engine, clock):
        b = make_booking()
        clock.advance(minutes=5)
        with pytest.raises(StaleTransition):
            engine.expire(b.id)
        assert engine.store.get(b.id).status == "payment_held"


class TestRaces:
    def test_confirm_and_reject_from_two_sessions(self, make_booking, session_factory, clock, db):
        b = make_booking()
        s1, s2 = session_factory(), session_factory()
        try:
            partner_tab = BookingEngine(s1, now=clock)
            other_tab = BookingEngine(s2, now=clock)
            # Both tabs saw the request while it was still open.
            assert partner_tab.store.get(b.id).status == "payment_held"
            assert other_tab.store.get(b.id).status == "payment_held"

            partner_tab.confirm(b.id, actor="shop-1")
            with pytest.raises(StaleTransition) as exc:
                other_tab.reject(b.id, "busy", actor="shop-1")
            assert exc.value.status == "confirmed"
        finally:
            s1.close()
            s2.close()

        assert _count(db, BookingEvent, booking_id=b.id) == 2
        assert _count(db, Refund, booking_id=b.id) == 0

    def test_sweeper_and_partner_at_the_deadline(self, make_booking, session_factory, clock, db):
        b = make_booking()
        clock.advance(minutes=5, seconds=1)
        s1, s2 = session_factory(), session_factory()
        try:
            sweeper = BookingEngine(s1, now=clock)
            partner = BookingEngine(s2, now=clock)
            sweeper.expire(b.id)
            with pytest.raises(StaleTransition) as exc:
                partner.confirm(b.id, actor="shop-1")
            assert exc.value.status == "failed"
        finally:
            s1.close()
            s2.close()
        assert _count(db, Refund, booking_id=b.id) == 1

    def test_two_customers_race_for_one_slot(self, session_factory, clock, tomorrow, db):
        s1, s2 = session_factory(), session_factory()
        try:
            e1, e2 = BookingEngine(s1, now=clock), BookingEngine(s2, now=clock)
            slot = Slot(tomorrow, "14:00")
            e1.create(Party("cust-1"), Party("shop-1"), Service("Cut", "45"), slot, PaymentResult("t1", "success"))
            with pytest.raises(SlotUnavailable):
                e2.create(Party("cust-2"), Party("shop-1"), Service("Cut", "45"), slot, PaymentResult("t2", "success"))
        finally:
            s1.close()
            s2.close()
        assert _count(db, Booking) == 1


class TestAbandon:
    def test_scenario_abort_before_payment(self, engine, tomorrow, db):
        b = engine.abandon(intent=_intent(tomorrow))
        assert b.status == "cancelled"
        assert b.payment_status == "abandoned"
        assert b.status_reason == ABANDON_REASON
        assert b.transaction_id is None
        assert _count(db, Refund) == 0

    def test_failed_payment_is_kept_as_failed(self, engine, tomorrow):
        b = engine.abandon(intent=_intent(tomorrow, PaymentResult(None, "failed")))
        assert b.status == "cancelled"
        assert b.payment_status == "failed"

    def test_charged_but_never_held_is_refunded(self, engine, tomorrow, db):
        b = engine.abandon(intent=_intent(tomorrow, PaymentResult("txn-9", "success")), reason="Slot lost")
        assert b.payment_status == "refunded"
        assert b.status_reason == "Slot lost"
        assert _count(db, Refund, booking_id=b.id) == 1

    def test_abandoned_intent_does_not_block_the_slot(self, engine, make_booking, tomorrow):
        engine.abandon(intent=_intent(tomorrow))
        assert make_booking().status == "payment_held"

    def test_abandon_intent_is_idempotent(self, engine, tomorrow, db):
        first = engine.abandon(intent=_intent(tomorrow, key="checkout-7"))
        again = engine.abandon(intent=_intent(tomorrow, key="checkout-7"))
        assert again.id == first.id
        assert _count(db, Booking) == 1

    def test_abandon_intent_releases_hold_created_under_same_key(self, make_booking, engine, tomorrow, db):
        held = make_booking(key="checkout-8", txn="txn-8")
        paid = PaymentResult(transaction_id="txn-8", outcome="success")
        cancelled = engine.abandon(intent=_intent(tomorrow, paid, key="checkout-8"), actor="cust-1")
        assert cancelled.id == held.id
        assert cancelled.status == "cancelled"
        assert cancelled.payment_status == "refunded"
        assert _count(db, Booking) == 1
        assert _count(db, Refund, booking_id=held.id) == 1

    def test_abandon_intent_leaves_resolved_replay_alone(self, make_booking, engine, tomorrow, db):
        held = make_booking(key="checkout-9")
        engine.confirm(held.id, actor="shop-1")
        again = engine.abandon(intent=_intent(tomorrow, key="checkout-9"), actor="cust-1")
        assert again.status == "confirmed"
        assert _count(db, Refund) == 0

    def test_abandon_held_booking_refunds(self, make_booking, engine, db):
        b = make_booking()
        cancelled = engine.abandon(booking_id=b.id, actor="cust-1")
        assert cancelled.status == "cancelled"
        assert cancelled.payment_status == "refunded"
        assert cancelled.status_reason == ABANDON_REASON
        assert _count(db, Refund, booking_id=b.id) == 1

    def test_abandon_needs_a_target(self, engine):
        with pytest.raises(ValidationError):
            engine.abandon()


class TestStatusNormalization:
    @pytest.mark.parametrize("raw,expected", [
        ("approved", "confirmed"),
        ("Approved", "confirmed"),
        ("Cancelled", "cancelled"),
        ("canceled", "cancelled"),
        (" payment_held ", "payment_held"),
    ])
    def test_variants_map_to_canonical(self, raw, expected):
        b = Booking(status=raw)
        assert b.status == expected

    def test_unknown_status_is_refused(self):
        with pytest.raises(ValidationError):
            Booking(status="pending")

    def test_unknown_payment_status_is_refused(self):
        with pytest.raises(ValidationError):
            Booking(payment_status="paid")
