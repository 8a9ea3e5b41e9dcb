from enum import Enum

from app.services.errors import ValidationError


class BookingStatus(str, Enum):
    PAYMENT_HELD = "payment_held"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    SUCCESS = "success"
    REFUNDED = "refunded"
    ABANDONED = "abandoned"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({
    BookingStatus.CONFIRMED,
    BookingStatus.REJECTED,
    BookingStatus.FAILED,
    BookingStatus.CANCELLED,
})

# Variants found in stored documents, lower-cased.
_STATUS_ALIASES = {
    "approved": BookingStatus.CONFIRMED,
    "canceled": BookingStatus.CANCELLED,
}


def normalize_status(value) -> str:
    """Map a stored or submitted status onto the canonical enum value."""
    if isinstance(value, BookingStatus):
        return value.value
    key = str(value or "").strip().lower()
    if key in _STATUS_ALIASES:
        return _STATUS_ALIASES[key].value
    try:
        return BookingStatus(key).value
    except ValueError:
        raise ValidationError(f"unknown booking status: {value!r}")


def normalize_payment_status(value) -> str:
    if isinstance(value, PaymentStatus):
        return value.value
    key = str(value or "").strip().lower()
    try:
        return PaymentStatus(key).value
    except ValueError:
        raise ValidationError(f"unknown payment status: {value!r}")
