from decimal import Decimal
from sqlalchemy import String, DateTime, Numeric, Text, Index, text
from sqlalchemy.orm import Mapped, mapped_column, validates
from datetime import datetime, timezone
from app.db.session import Base
from app.services.booking_status import normalize_status, normalize_payment_status

# One live booking per shop/date/time; rejected, failed and cancelled rows free the slot.
_ACTIVE_SLOT = text("status IN ('payment_held', 'confirmed')")


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        Index(
            "uq_bookings_active_slot", "shop_id", "date_str", "time_str",
            unique=True, sqlite_where=_ACTIVE_SLOT, postgresql_where=_ACTIVE_SLOT,
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)

    # Snapshot of parties and terms at creation time
    customer_id: Mapped[str] = mapped_column(String(128), index=True)
    customer_name: Mapped[str] = mapped_column(String(200), default="")
    shop_id: Mapped[str] = mapped_column(String(128), index=True)
    shop_name: Mapped[str] = mapped_column(String(200), default="")
    service_name: Mapped[str] = mapped_column(String(200))
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2))

    date_str: Mapped[str] = mapped_column(String(10), index=True)  # YYYY-MM-DD
    time_str: Mapped[str] = mapped_column(String(5))  # HH:MM

    status: Mapped[str] = mapped_column(String(20), index=True, default="payment_held")  # payment_held, confirmed, rejected, failed, cancelled
    payment_status: Mapped[str] = mapped_column(String(20), default="success")  # success, refunded, abandoned, failed
    status_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    transaction_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(120), unique=True, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    expiry_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    @validates("status")
    def _normalize_status(self, key, value):
        return normalize_status(value)

    @validates("payment_status")
    def _normalize_payment_status(self, key, value):
        return normalize_payment_status(value)
