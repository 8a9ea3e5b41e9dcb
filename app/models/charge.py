from decimal import Decimal
from sqlalchemy import String, DateTime, Numeric
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base

class Charge(Base):
    """Gateway charge outcome, keyed by the checkout's client reference.

    Committed as soon as the gateway answers, so a retried checkout reuses it
    instead of charging again.
    """

    __tablename__ = "charges"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    client_ref: Mapped[str] = mapped_column(String(120), unique=True, index=True)  # idempotency key or generated uuid
    customer_id: Mapped[str] = mapped_column(String(128), index=True)
    shop_id: Mapped[str] = mapped_column(String(128))
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    outcome: Mapped[str] = mapped_column(String(20))  # success, abandoned, failed
    transaction_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
