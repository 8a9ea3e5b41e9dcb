"""Errors raised by the booking core.

Routes translate these into HTTP responses; none of them is fatal to the process.
"""


class BookingError(Exception):
    """Base class for booking errors."""

    status_code = 400


class ValidationError(BookingError):
    """Malformed slot, price or identity input."""


class SlotUnavailable(ValidationError):
    status_code = 409


class PaymentNotConfirmed(BookingError):
    status_code = 402


class StaleTransition(BookingError):
    """The booking is no longer in the state the transition expects.

    Informational: the caller has nothing left to do.
    """

    status_code = 409

    def __init__(self, booking_id: str, status: str | None = None, message: str | None = None):
        self.booking_id = booking_id
        self.status = status
        super().__init__(message or f"booking {booking_id} is not awaiting a response (status={status})")


class NotFound(BookingError):
    status_code = 404


class TransientError(BookingError):
    """Store or gateway connectivity failure; safe to retry."""

    status_code = 503
