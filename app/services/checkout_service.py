import logging
import uuid

from app.models.charge import Charge
from app.services.booking_store import BookingStore
from app.services.errors import ValidationError
from app.services.payment_gateway import PaymentGatewayClient, PaymentResult

logger = logging.getLogger(__name__)


def charge_once(
    store: BookingStore,
    gateway: PaymentGatewayClient,
    *,
    customer_id: str,
    shop_id: str,
    amount,
    token: str,
    client_ref: str,
) -> PaymentResult:
    """Charge a checkout at most once per `client_ref`.

    The outcome is committed before any booking is written, so a retry after
    a failed booking write reuses the stored transaction instead of charging
    the card again.
    """
    prior = store.find_charge(client_ref)
    if prior is not None:
        if prior.customer_id != customer_id:
            raise ValidationError("idempotency key already used by another booking")
        logger.info("reusing %s charge %s for checkout %s", prior.outcome, prior.transaction_id, client_ref)
        return PaymentResult(transaction_id=prior.transaction_id, outcome=prior.outcome, raw={"replayed": True})

    result = gateway.charge(amount=amount, payee_ref=shop_id, token=token, client_ref=client_ref)
    try:
        store.record_charge(Charge(
            id=str(uuid.uuid4()),
            client_ref=client_ref,
            customer_id=customer_id,
            shop_id=shop_id,
            amount=amount,
            outcome=result.outcome,
            transaction_id=result.transaction_id,
        ))
    except Exception:
        # Money may have moved; leave enough in the log to reconcile by hand.
        logger.error("charge %s (%s) for checkout %s was not recorded", result.transaction_id, result.outcome, client_ref)
        raise
    return result
