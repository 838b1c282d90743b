"""Tests for the gateway client, payload parsing and webhook signatures."""

import hashlib
import hmac
import json

import pytest
import requests

from app.core.exceptions import GatewayException, GatewayUnavailableException, PaymentDeclinedException
from app.services import payment_gateway
from app.services.payment_gateway import (
    SandboxGatewayClient,
    StripeConfig,
    StripeGatewayClient,
    _form_encode,
    build_gateway_client,
    intent_from_payload,
    parse_event,
    verify_webhook_signature,
)

SECRET = "whsec_test"


def sign(body: bytes, timestamp: int, secret: str = SECRET) -> str:
    digest = hmac.new(secret.encode(), f"{timestamp}.".encode() + body, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


class FakeResponse:
    def __init__(self, status_code: int, payload: dict | None = None):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = json.dumps(self._payload) if payload is not None else ""

    def json(self):
        return self._payload


class TestWebhookSignature:
    body = b'{"id":"evt_1","type":"payment_intent.succeeded"}'

    def test_valid(self):
        assert verify_webhook_signature(sign(self.body, 1_700_000_000), self.body, SECRET, now=1_700_000_010)

    def test_tampered_body(self):
        header = sign(self.body, 1_700_000_000)
        assert not verify_webhook_signature(header, self.body + b" ", SECRET, now=1_700_000_010)

    def test_wrong_secret(self):
        header = sign(self.body, 1_700_000_000, secret="other")
        assert not verify_webhook_signature(header, self.body, SECRET, now=1_700_000_010)

    def test_stale_timestamp(self):
        header = sign(self.body, 1_700_000_000)
        assert not verify_webhook_signature(header, self.body, SECRET, tolerance_seconds=300, now=1_700_000_301)

    def test_any_v1_may_match(self):
        good = sign(self.body, 1_700_000_000).split("v1=")[1]
        header = f"t=1700000000,v1=deadbeef,v1={good}"
        assert verify_webhook_signature(header, self.body, SECRET, now=1_700_000_000)

    @pytest.mark.parametrize("header", [None, "", "garbage", "t=abc,v1=00", "v1=00"])
    def test_malformed(self, header):
        assert not verify_webhook_signature(header, self.body, SECRET, now=1_700_000_000)

    def test_missing_secret(self):
        assert not verify_webhook_signature(sign(self.body, 1_700_000_000), self.body, "", now=1_700_000_000)


class TestPayloadParsing:
    def test_receipt_from_latest_charge(self):
        intent = intent_from_payload({"id": "pi_1", "status": "succeeded", "latest_charge": {"receipt_url": "https://r/1"}})
        assert intent.receipt_url == "https://r/1"

    def test_receipt_from_charges_list(self):
        intent = intent_from_payload({"id": "pi_1", "status": "succeeded", "charges": {"data": [{"receipt_url": "https://r/2"}]}})
        assert intent.receipt_url == "https://r/2"

    def test_failure_message(self):
        intent = intent_from_payload({"id": "pi_1", "status": "requires_payment_method", "last_payment_error": {"message": "declined"}})
        assert intent.failure_message == "declined"
        assert intent.receipt_url is None

    def test_parse_event(self):
        event = parse_event({"id": "evt_1", "type": "charge.refunded", "data": {"object": {"payment_intent": "pi_1"}}})
        assert (event.id, event.type, event.data) == ("evt_1", "charge.refunded", {"payment_intent": "pi_1"})

    def test_form_encode_nests_dicts(self):
        encoded = _form_encode({"amount": 100, "metadata": {"orderId": "o1"}, "skip": None, "flag": True})
        assert encoded == [("amount", "100"), ("metadata[orderId]", "o1"), ("flag", "true")]


class TestStripeGatewayClient:
    @pytest.fixture
    def client(self):
        return StripeGatewayClient(StripeConfig(secret_key="sk_test_123", api_base="https://gateway.test"))

    def test_create_intent(self, client, monkeypatch):
        captured = {}

        def fake_request(method, url, data=None, headers=None, timeout=None):
            captured.update(method=method, url=url, data=data, headers=headers, timeout=timeout)
            return FakeResponse(200, {"id": "pi_9", "status": "requires_payment_method", "client_secret": "pi_9_secret"})

        monkeypatch.setattr(payment_gateway.requests, "request", fake_request)
        intent = client.create_intent(amount=215000, currency="GBP", metadata={"orderId": "o1"}, idempotency_key="key-1")

        assert intent.id == "pi_9"
        assert intent.client_secret == "pi_9_secret"
        assert captured["method"] == "POST"
        assert captured["url"] == "https://gateway.test/v1/payment_intents"
        assert ("amount", "215000") in captured["data"]
        assert ("currency", "gbp") in captured["data"]
        assert ("metadata[orderId]", "o1") in captured["data"]
        assert captured["headers"]["Authorization"] == "Bearer sk_test_123"
        assert captured["headers"]["Idempotency-Key"] == "key-1"
        assert captured["timeout"] == 20

    def test_transport_error_is_retryable(self, client, monkeypatch):
        def boom(*args, **kwargs):
            raise requests.ConnectionError("connection refused")

        monkeypatch.setattr(payment_gateway.requests, "request", boom)
        with pytest.raises(GatewayUnavailableException) as exc:
            client.create_intent(amount=100, currency="GBP")
        assert exc.value.retryable is True
        assert exc.value.status_code == 503

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_rate_limit_and_server_errors_are_retryable(self, client, monkeypatch, status):
        monkeypatch.setattr(
            payment_gateway.requests, "request",
            lambda *a, **k: FakeResponse(status, {"error": {"message": "try later"}}),
        )
        with pytest.raises(GatewayUnavailableException):
            client.create_refund(intent_id="pi_1", amount=100)

    def test_card_error_is_a_decline(self, client, monkeypatch):
        monkeypatch.setattr(
            payment_gateway.requests, "request",
            lambda *a, **k: FakeResponse(402, {"error": {"type": "card_error", "message": "Your card was declined."}}),
        )
        with pytest.raises(PaymentDeclinedException) as exc:
            client.create_intent(amount=100, currency="GBP")
        assert exc.value.message == "Your card was declined."
        assert exc.value.retryable is False

    def test_other_client_errors(self, client, monkeypatch):
        monkeypatch.setattr(
            payment_gateway.requests, "request",
            lambda *a, **k: FakeResponse(400, {"error": {"type": "invalid_request_error", "message": "No such payment_intent"}}),
        )
        with pytest.raises(GatewayException) as exc:
            client.cancel_intent("pi_missing", "customer left")
        assert type(exc.value) is GatewayException
        assert exc.value.status_code == 502

    def test_retrieve_uses_get(self, client, monkeypatch):
        captured = {}

        def fake_get(url, params=None, headers=None, timeout=None):
            captured.update(url=url, params=params)
            return FakeResponse(200, {"id": "pi_1", "status": "succeeded", "latest_charge": {"receipt_url": "https://r/1"}})

        monkeypatch.setattr(payment_gateway.requests, "get", fake_get)
        intent = client.retrieve_intent("pi_1")
        assert intent.status == "succeeded"
        assert intent.receipt_url == "https://r/1"
        assert captured["url"] == "https://gateway.test/v1/payment_intents/pi_1"
        assert ("expand[]", "latest_charge") in captured["params"]


class TestBuildGatewayClient:
    class _Settings:
        GATEWAY_SANDBOX = False
        GATEWAY_SECRET_KEY = ""
        GATEWAY_API_BASE = "https://gateway.test"
        GATEWAY_TIMEOUT_SECONDS = 5

    def test_sandbox(self):
        s = self._Settings()
        s.GATEWAY_SANDBOX = True
        client = build_gateway_client(s)
        assert isinstance(client, SandboxGatewayClient)
        intent = client.create_intent(amount=100, currency="GBP")
        assert intent.id.startswith("pi_sandbox_")
        assert client.retrieve_intent(intent.id).status == "succeeded"

    def test_missing_key(self):
        with pytest.raises(GatewayException) as exc:
            build_gateway_client(self._Settings())
        assert exc.value.code == "GATEWAY_NOT_CONFIGURED"

    def test_stripe(self):
        s = self._Settings()
        s.GATEWAY_SECRET_KEY = "sk_test"
        client = build_gateway_client(s)
        assert isinstance(client, StripeGatewayClient)
        assert client.cfg.timeout == 5
