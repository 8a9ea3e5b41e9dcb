from app.models.booking import Booking
from app.services.booking_status import BookingStatus, PaymentStatus
from app.services.booking_store import BookingStore

TABS = ("approved", "rejected", "failed")


def _tab_of(b: Booking) -> str | None:
    if b.status == BookingStatus.CONFIRMED.value:
        return "approved"
    if b.status == BookingStatus.REJECTED.value:
        return "rejected"
    if b.status == BookingStatus.FAILED.value or b.payment_status == PaymentStatus.FAILED.value:
        return "failed"
    return None


def customer_history(store: BookingStore, customer_id: str, tab: str | None = None) -> dict:
    """A customer's bookings grouped the way the dashboard tabs show them."""
    if tab and tab not in TABS:
        raise ValueError(f"tab must be one of {', '.join(TABS)}")
    bookings = store.query_by_customer(customer_id)
    stats = {t: 0 for t in TABS}
    for b in bookings:
        t = _tab_of(b)
        if t:
            stats[t] += 1
    items = [b for b in bookings if tab is None or _tab_of(b) == tab]
    return {"total": len(bookings), "stats": stats, "items": items}
