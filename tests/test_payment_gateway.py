import base64
import json
from datetime import datetime, timedelta, timezone

import pytest
import requests

from app.services.errors import TransientError
from app.services.payment_gateway import GatewayConfig, PaymentGatewayClient, PaymentGatewayError


class FakeResponse:
    def __init__(self, status_code, data):
        self.status_code = status_code
        self._data = data
        self.text = json.dumps(data)

    def json(self):
        return self._data


@pytest.fixture
def gateway():
    return PaymentGatewayClient(GatewayConfig(
        host="apitest.example.com",
        merchant_id="m-1",
        key_id="k-1",
        secret_key_b64=base64.b64encode(b"secret").decode(),
    ))


@pytest.fixture
def calls(monkeypatch):
    recorded = []
    responses = []

    def fake_request(method, url, data, headers, timeout):
        recorded.append({"method": method, "url": url, "body": json.loads(data), "headers": headers})
        result = responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    monkeypatch.setattr(requests, "request", fake_request)
    return recorded, responses


def test_charge_success(gateway, calls):
    recorded, responses = calls
    responses.append(FakeResponse(201, {"id": "txn-77", "status": "AUTHORIZED"}))

    result = gateway.charge(amount="45", payee_ref="shop-1", token="tok", client_ref="checkout-1")

    assert result.outcome == "success"
    assert result.transaction_id == "txn-77"
    req = recorded[0]
    assert req["url"] == "https://apitest.example.com/pts/v2/payments"
    assert req["body"]["orderInformation"]["amountDetails"]["totalAmount"] == "45.00"
    assert req["body"]["clientReferenceInformation"]["code"] == "checkout-1"
    assert req["headers"]["v-c-merchant-id"] == "m-1"
    assert 'keyid="k-1"' in req["headers"]["Signature"]
    assert req["headers"]["Digest"].startswith("SHA-256=")


@pytest.mark.parametrize("status,outcome", [("REVERSED", "abandoned"), ("DECLINED", "failed")])
def test_charge_outcome_mapping(gateway, calls, status, outcome):
    _, responses = calls
    responses.append(FakeResponse(201, {"id": "txn-1", "status": status}))
    assert gateway.charge(amount=10, payee_ref="s", token="t", client_ref="c").outcome == outcome


def test_declined_charge_is_a_failed_outcome(gateway, calls):
    _, responses = calls
    responses.append(FakeResponse(400, {"reason": "INVALID_CARD"}))
    result = gateway.charge(amount=10, payee_ref="s", token="t", client_ref="c")
    assert result.outcome == "failed"
    assert result.transaction_id is None


def test_gateway_outage_is_transient(gateway, calls):
    _, responses = calls
    responses.append(FakeResponse(502, {}))
    with pytest.raises(TransientError):
        gateway.refund(transaction_id="txn-1", amount=10, client_ref="r")
    responses.append(requests.ConnectionError("reset"))
    with pytest.raises(TransientError):
        gateway.refund(transaction_id="txn-1", amount=10, client_ref="r")


def test_refund_rejected(gateway, calls):
    _, responses = calls
    responses.append(FakeResponse(404, {"reason": "NOT_FOUND"}))
    with pytest.raises(PaymentGatewayError):
        gateway.refund(transaction_id="txn-1", amount=10, client_ref="r")


def test_unconfigured_gateway_refuses():
    client = PaymentGatewayClient(GatewayConfig(host="h", merchant_id="", key_id="", secret_key_b64=""))
    with pytest.raises(PaymentGatewayError):
        client.refund(transaction_id="t", amount=1, client_ref="r")


def test_sandbox_charge():
    client = PaymentGatewayClient(GatewayConfig(host="h", merchant_id="", key_id="", secret_key_b64="", sandbox=True))
    assert client.charge(amount=1, payee_ref="s", token="tok", client_ref="c").outcome == "success"
    abandoned = client.charge(amount=1, payee_ref="s", token="abandon", client_ref="c")
    assert abandoned.outcome == "abandoned"
    assert abandoned.transaction_id is None


def test_schedule_expiry_queues_task_past_deadline(monkeypatch):
    from app.tasks import jobs

    queued = {}

    class FakeTask:
        def apply_async(self, args, eta):
            queued.update(args=args, eta=eta)

    monkeypatch.setattr(jobs, "expire_booking", FakeTask())
    deadline = datetime(2026, 3, 10, 9, 5, tzinfo=timezone.utc)
    jobs.schedule_expiry("b-1", deadline)
    assert queued == {"args": ["b-1"], "eta": deadline + timedelta(seconds=1)}
