"""Payment gateway adapter.

The booking core only needs two things from the gateway: a charge that yields
a transaction id plus an outcome, and a refund for a released hold. The REST
client signs requests with HTTP Signature (HmacSHA256 over host, date,
request-target, digest and merchant id).
"""
import base64
import hashlib
import hmac
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from email.utils import format_datetime
import json
import logging
import uuid

import requests

from app.core.config import settings
from app.services.errors import TransientError

logger = logging.getLogger(__name__)


@dataclass
class GatewayConfig:
    host: str               # apitest.cybersource.com OR api.cybersource.com
    merchant_id: str        # v-c-merchant-id header
    key_id: str             # keyid in Signature header
    secret_key_b64: str     # shared secret key, base64
    currency: str = "USD"
    timeout: int = 25
    sandbox: bool = False


@dataclass
class PaymentResult:
    transaction_id: str | None
    outcome: str  # success | abandoned | failed
    raw: dict = field(default_factory=dict)


class PaymentGatewayError(RuntimeError):
    """The gateway answered but refused the request."""


# Gateway statuses that mean the money moved.
_SUCCESS = ("AUTHORIZED", "CAPTURED", "PENDING", "TRANSMITTED", "SUCCEEDED")
_ABANDONED = ("CANCELLED", "REVERSED", "AUTHORIZED_PENDING_REVIEW_CANCELLED")


def _sha256_digest_b64(body_bytes: bytes) -> str:
    return base64.b64encode(hashlib.sha256(body_bytes).digest()).decode("utf-8")


def _signing_string(method: str, resource: str, host: str, date_str: str, digest_header: str, merchant_id: str) -> str:
    # newline separated, no trailing newline
    return "\n".join([
        f"host: {host}",
        f"date: {date_str}",
        f"(request-target): {method.lower()} {resource}",
        f"digest: {digest_header}",
        f"v-c-merchant-id: {merchant_id}",
    ])


def _amount(value) -> str:
    return f"{Decimal(str(value)):.2f}"


class PaymentGatewayClient:
    def __init__(self, cfg: GatewayConfig):
        self.cfg = cfg
        b64 = (cfg.secret_key_b64 or "").strip().replace("\r", "").replace("\n", "").replace(" ", "")
        self._secret = base64.b64decode(b64) if b64 else b""

    @classmethod
    def from_settings(cls) -> "PaymentGatewayClient":
        return cls(GatewayConfig(
            host=settings.PAYMENT_HOST,
            merchant_id=settings.PAYMENT_MERCHANT_ID,
            key_id=settings.PAYMENT_KEY_ID,
            secret_key_b64=settings.PAYMENT_SECRET_KEY_B64,
            currency=settings.PAYMENT_CURRENCY,
            timeout=settings.PAYMENT_TIMEOUT_SECONDS,
            sandbox=settings.PAYMENT_SANDBOX,
        ))

    def _headers(self, method: str, resource: str, body_bytes: bytes) -> dict:
        date_str = format_datetime(datetime.now(timezone.utc), usegmt=True)
        digest_header = f"SHA-256={_sha256_digest_b64(body_bytes)}"
        to_sign = _signing_string(method, resource, self.cfg.host, date_str, digest_header, self.cfg.merchant_id)
        signature_b64 = base64.b64encode(hmac.new(self._secret, to_sign.encode("utf-8"), hashlib.sha256).digest()).decode("utf-8")
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Host": self.cfg.host,
            "Date": date_str,
            "Digest": digest_header,
            "v-c-merchant-id": self.cfg.merchant_id,
            "Signature": (
                f'keyid="{self.cfg.key_id}", algorithm="HmacSHA256", '
                f'headers="host date (request-target) digest v-c-merchant-id", '
                f'signature="{signature_b64}"'
            ),
        }

    def request(self, method: str, path: str, payload: dict | None = None) -> dict:
        if not (self.cfg.merchant_id and self.cfg.key_id and self._secret):
            raise PaymentGatewayError("payment gateway is not configured (missing PAYMENT_* settings)")
        body_bytes = json.dumps(payload or {}, separators=(",", ":")).encode("utf-8")
        url = f"https://{self.cfg.host}{path}"
        try:
            r = requests.request(method=method.upper(), url=url, data=body_bytes,
                                 headers=self._headers(method, path, body_bytes), timeout=self.cfg.timeout)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientError(f"payment gateway unreachable: {e}") from e
        try:
            data = r.json() if r.text else {}
        except ValueError:
            data = {"raw": r.text}
        if r.status_code >= 500:
            raise TransientError(f"payment gateway {r.status_code}")
        if r.status_code >= 400:
            raise PaymentGatewayError(f"payment gateway {r.status_code}: {data}")
        return data

    def charge(self, *, amount, payee_ref: str, token: str, client_ref: str) -> PaymentResult:
        """Charge `amount` for `payee_ref` using a client-side payment token.

        `client_ref` is forwarded as the gateway's reference so retries with the
        same booking idempotency key can be reconciled on the gateway side.
        """
        if self.cfg.sandbox:
            outcome = "abandoned" if token == "abandon" else "success"
            txn = f"sandbox-{uuid.uuid4().hex[:12]}" if outcome == "success" else None
            logger.info("sandbox charge %s for %s: %s", client_ref, payee_ref, outcome)
            return PaymentResult(transaction_id=txn, outcome=outcome, raw={"sandbox": True})

        payload = {
            "clientReferenceInformation": {"code": client_ref},
            "processingInformation": {"capture": True},
            "merchantDefinedInformation": [{"key": "1", "value": payee_ref}],
            "tokenInformation": {"transientTokenJwt": token},
            "orderInformation": {"amountDetails": {"totalAmount": _amount(amount), "currency": self.cfg.currency}},
        }
        try:
            data = self.request("POST", "/pts/v2/payments", payload)
        except PaymentGatewayError as e:
            logger.warning("charge %s declined: %s", client_ref, e)
            return PaymentResult(transaction_id=None, outcome="failed", raw={"error": str(e)})
        status = str(data.get("status") or "").upper()
        if status in _SUCCESS:
            outcome = "success"
        elif status in _ABANDONED:
            outcome = "abandoned"
        else:
            outcome = "failed"
        return PaymentResult(transaction_id=data.get("id"), outcome=outcome, raw=data)

    def refund(self, *, transaction_id: str, amount, client_ref: str) -> dict:
        if self.cfg.sandbox:
            return {"id": f"sandbox-refund-{uuid.uuid4().hex[:12]}", "status": "PENDING"}
        payload = {
            "clientReferenceInformation": {"code": client_ref},
            "orderInformation": {"amountDetails": {"totalAmount": _amount(amount), "currency": self.cfg.currency}},
        }
        return self.request("POST", f"/pts/v2/payments/{transaction_id}/refunds", payload)
