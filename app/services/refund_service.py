from datetime import datetime, timezone
import logging

from sqlalchemy.orm import Session

from app.models.refund import Refund
from app.services.errors import TransientError
from app.services.payment_gateway import PaymentGatewayClient, PaymentGatewayError

logger = logging.getLogger(__name__)


def process_pending_refunds(db: Session, gateway: PaymentGatewayClient, limit: int = 50) -> dict:
    """Send up to `limit` queued or failed refunds; retried on the next run until sent."""
    pending = (
        db.query(Refund)
        .filter(Refund.status.in_(["queued", "failed"]))
        .order_by(Refund.created_at.asc())
        .limit(limit)
        .all()
    )
    sent, failed, skipped = 0, 0, 0
    for refund in pending:
        if not refund.transaction_id:
            # Nothing was captured for this booking.
            refund.status = "skipped"
            refund.processed_at = datetime.now(timezone.utc)
            skipped += 1
            continue
        try:
            resp = gateway.refund(
                transaction_id=refund.transaction_id,
                amount=refund.amount,
                client_ref=f"refund-{refund.booking_id}",
            )
        except (PaymentGatewayError, TransientError) as e:
            logger.warning("refund for booking %s failed: %s", refund.booking_id, e)
            refund.status = "failed"
            refund.last_error = str(e)[:1000]
            failed += 1
            continue
        refund.status = "sent"
        refund.provider_ref = str(resp.get("id") or "")
        refund.processed_at = datetime.now(timezone.utc)
        refund.last_error = None
        sent += 1
    if pending:
        db.commit()
    return {"processed": len(pending), "sent": sent, "failed": failed, "skipped": skipped}
