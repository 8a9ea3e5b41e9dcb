from datetime import datetime, timedelta, timezone

from app.models.booking_event import BookingEvent
from app.models.broadcast import Broadcast
from app.services.notification_service import (
    NotificationFeed,
    build_notifications,
    notifications_for,
)

T0 = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)


def _event(id, status, minutes, booking_id="b1"):
    return BookingEvent(
        id=id, booking_id=booking_id, customer_id="cust-1", shop_id="shop-1",
        status=status, message="", created_at=T0 + timedelta(minutes=minutes),
    )


def _broadcast(id, minutes, audience="all"):
    return Broadcast(
        id=id, title="Holiday hours", body="Closed Monday", audience=audience,
        created_by="admin-1", created_at=T0 + timedelta(minutes=minutes),
    )


def test_merged_newest_first():
    items = build_notifications(
        [_event(1, "payment_held", 0), _event(2, "confirmed", 2)],
        [_broadcast("x", 1)],
    )
    assert [n.id for n in items] == ["booking:2", "broadcast:x", "booking:1"]
    assert items[0].title == "Booking confirmed"
    assert items[2].title == "Booking request sent"


def test_titles_depend_on_who_is_reading():
    events = [_event(1, "payment_held", 0), _event(2, "failed", 5)]
    partner = build_notifications(events, [], role="partner")
    customer = build_notifications(events, [], role="customer")
    assert [n.title for n in partner] == ["Request expired, customer refunded", "New booking request"]
    assert [n.title for n in customer] == ["Auto-refund issued", "Booking request sent"]


def test_dismissed_items_are_hidden():
    items = build_notifications([_event(1, "payment_held", 0)], [_broadcast("x", 1)], dismissed=["broadcast:x"])
    assert [n.id for n in items] == ["booking:1"]


def test_empty_sources_give_empty_list():
    assert build_notifications([], []) == []


def test_cue_only_when_list_grows():
    feed = NotificationFeed()
    one = build_notifications([_event(1, "payment_held", 0)], [])
    two = build_notifications([_event(1, "payment_held", 0), _event(2, "failed", 5)], [])

    assert feed.update(one).cue is False  # first snapshot
    assert feed.update(two).cue is True
    assert feed.update(two).cue is False
    assert feed.update(one).cue is False  # shrinking after a dismissal


def test_feed_resumes_from_previous_size():
    items = build_notifications([_event(1, "payment_held", 0), _event(2, "confirmed", 1)], [])
    snap = NotificationFeed(previous_size=1).update(items)
    assert snap.cue is True
    assert snap.size == 2


def test_partner_and_customer_views(make_booking, engine, db):
    b = make_booking()
    engine.reject(b.id, "Closed", actor="shop-1")
    make_booking(customer="cust-2", shop="shop-2", time="16:00")
    db.add(_broadcast("p", 0, audience="partner"))
    db.add(_broadcast("c", 0, audience="customer"))
    db.commit()

    partner = notifications_for(db, "shop-1", "partner")
    customer = notifications_for(db, "cust-1", "customer")

    assert [n.status for n in partner if n.kind == "booking"] == ["rejected", "payment_held"]
    assert [n.id for n in partner if n.kind == "broadcast"] == ["broadcast:p"]
    assert {n.booking_id for n in customer if n.kind == "booking"} == {b.id}
    assert [n.id for n in customer if n.kind == "broadcast"] == ["broadcast:c"]
    assert [n.title for n in customer if n.kind == "booking"] == ["Booking declined", "Booking request sent"]
    assert [n.title for n in partner if n.kind == "booking"] == ["Request declined", "New booking request"]
