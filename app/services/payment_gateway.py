from __future__ import annotations

import hashlib
import hmac
import logging
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import requests

from app.core.exceptions import GatewayException, GatewayUnavailableException, PaymentDeclinedException

logger = logging.getLogger(__name__)


@dataclass
class GatewayIntent:
    id: str
    status: str  # requires_payment_method, processing, succeeded, canceled, ...
    client_secret: str | None = None
    amount: int | None = None  # minor units
    currency: str | None = None
    receipt_url: str | None = None
    failure_message: str | None = None


@dataclass
class GatewayRefund:
    id: str
    status: str
    amount: int  # minor units


@dataclass
class GatewayEvent:
    id: str
    type: str
    data: dict[str, Any] = field(default_factory=dict)  # the event's data.object


def intent_from_payload(obj: dict) -> GatewayIntent:
    """Build a GatewayIntent from a payment_intent object (API response or webhook data.object)."""
    receipt_url = None
    latest_charge = obj.get("latest_charge")
    if isinstance(latest_charge, dict):
        receipt_url = latest_charge.get("receipt_url")
    if not receipt_url:
        charges = (obj.get("charges") or {}).get("data") or []
        if charges:
            receipt_url = charges[0].get("receipt_url")
    if not receipt_url:
        receipt_url = obj.get("receipt_url")
    err = obj.get("last_payment_error") or {}
    return GatewayIntent(
        id=str(obj.get("id") or ""),
        status=str(obj.get("status") or ""),
        client_secret=obj.get("client_secret"),
        amount=obj.get("amount"),
        currency=obj.get("currency"),
        receipt_url=receipt_url,
        failure_message=err.get("message") if isinstance(err, dict) else None,
    )


def parse_event(payload: dict) -> GatewayEvent:
    data = payload.get("data") or {}
    return GatewayEvent(
        id=str(payload.get("id") or ""),
        type=str(payload.get("type") or ""),
        data=data.get("object") or {},
    )


def verify_webhook_signature(signature_header: str | None, body: bytes, secret: str, tolerance_seconds: int = 300, now: float | None = None) -> bool:
    """Verify a `t=<unix>,v1=<hex>` signature header.

    The signed string is "<t>.<raw body>", HMAC-SHA256 with the endpoint
    secret. Any v1 entry may match (the gateway sends several during secret
    rotation). Returns False on missing/garbled headers or stale timestamps.
    """
    if not signature_header or not secret:
        return False

    timestamp = None
    signatures = []
    for chunk in signature_header.split(","):
        if "=" not in chunk:
            continue
        k, v = chunk.strip().split("=", 1)
        if k == "t":
            timestamp = v
        elif k == "v1":
            signatures.append(v)
    if not timestamp or not signatures:
        return False
    try:
        ts = int(timestamp)
    except ValueError:
        return False

    current = time.time() if now is None else now
    if tolerance_seconds and abs(current - ts) > tolerance_seconds:
        return False

    signed = f"{timestamp}.".encode("utf-8") + body
    expected = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return any(hmac.compare_digest(expected, s) for s in signatures)


def _form_encode(params: dict, prefix: str = "") -> list[tuple[str, str]]:
    # metadata={"orderId": "x"} -> [("metadata[orderId]", "x")]
    out: list[tuple[str, str]] = []
    for k, v in params.items():
        key = f"{prefix}[{k}]" if prefix else str(k)
        if v is None:
            continue
        if isinstance(v, dict):
            out.extend(_form_encode(v, key))
        elif isinstance(v, (list, tuple)):
            for item in v:
                out.append((f"{key}[]", str(item)))
        elif isinstance(v, bool):
            out.append((key, "true" if v else "false"))
        else:
            out.append((key, str(v)))
    return out


class PaymentGatewayClient(ABC):
    @abstractmethod
    def create_intent(self, *, amount: int, currency: str, metadata: dict[str, str] | None = None, idempotency_key: str | None = None) -> GatewayIntent:
        raise NotImplementedError

    @abstractmethod
    def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        raise NotImplementedError

    @abstractmethod
    def cancel_intent(self, intent_id: str, reason: str | None = None) -> GatewayIntent:
        raise NotImplementedError

    @abstractmethod
    def create_refund(self, *, intent_id: str, amount: int, reason: str | None = None, metadata: dict[str, str] | None = None, idempotency_key: str | None = None) -> GatewayRefund:
        raise NotImplementedError


@dataclass
class StripeConfig:
    secret_key: str
    api_base: str = "https://api.stripe.com"
    timeout: int = 20


class StripeGatewayClient(PaymentGatewayClient):
    """Stripe-compatible REST client (form-encoded requests, bearer secret key)."""

    def __init__(self, cfg: StripeConfig):
        self.cfg = cfg

    def request(self, method: str, path: str, params: dict | None = None, idempotency_key: str | None = None) -> dict:
        url = f"{self.cfg.api_base.rstrip('/')}{path}"
        headers = {"Authorization": f"Bearer {self.cfg.secret_key}"}
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        encoded = _form_encode(params or {})
        try:
            if method.upper() == "GET":
                r = requests.get(url, params=encoded, headers=headers, timeout=self.cfg.timeout)
            else:
                r = requests.request(method.upper(), url, data=encoded, headers=headers, timeout=self.cfg.timeout)
        except requests.RequestException as e:
            logger.warning("gateway %s %s transport error: %s", method, path, e)
            raise GatewayUnavailableException(f"Payment gateway unavailable: {e}", code="GATEWAY_UNAVAILABLE") from e

        try:
            data = r.json() if r.text else {}
        except ValueError:
            data = {"raw": r.text}

        if r.status_code >= 400:
            err = data.get("error") or {}
            message = err.get("message") or f"Payment gateway error {r.status_code}"
            details = {"status": r.status_code, "type": err.get("type"), "gatewayCode": err.get("code")}
            logger.warning("gateway %s %s failed: %s %s", method, path, r.status_code, message)
            if r.status_code == 429 or r.status_code >= 500:
                raise GatewayUnavailableException(message, code="GATEWAY_UNAVAILABLE", details=details)
            if r.status_code == 402 or err.get("type") == "card_error":
                raise PaymentDeclinedException(message, code="PAYMENT_DECLINED", details=details)
            raise GatewayException(message, code="GATEWAY_REQUEST_REJECTED", details=details)
        return data

    def create_intent(self, *, amount: int, currency: str, metadata: dict[str, str] | None = None, idempotency_key: str | None = None) -> GatewayIntent:
        params = {
            "amount": int(amount),
            "currency": currency.lower(),
            "automatic_payment_methods": {"enabled": True},
            "metadata": metadata or {},
        }
        return intent_from_payload(self.request("POST", "/v1/payment_intents", params, idempotency_key=idempotency_key))

    def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        data = self.request("GET", f"/v1/payment_intents/{intent_id}", {"expand": ["latest_charge"]})
        return intent_from_payload(data)

    def cancel_intent(self, intent_id: str, reason: str | None = None) -> GatewayIntent:
        # the gateway only takes its own reason codes; free text stays local
        params = {"cancellation_reason": "requested_by_customer"} if reason else {}
        return intent_from_payload(self.request("POST", f"/v1/payment_intents/{intent_id}/cancel", params))

    def create_refund(self, *, intent_id: str, amount: int, reason: str | None = None, metadata: dict[str, str] | None = None, idempotency_key: str | None = None) -> GatewayRefund:
        params = {
            "payment_intent": intent_id,
            "amount": int(amount),
            "reason": "requested_by_customer",
            "metadata": {**(metadata or {}), **({"reason": reason} if reason else {})},
        }
        data = self.request("POST", "/v1/refunds", params, idempotency_key=idempotency_key)
        return GatewayRefund(id=str(data.get("id") or ""), status=str(data.get("status") or ""), amount=int(data.get("amount") or amount))


class SandboxGatewayClient(PaymentGatewayClient):
    """Offline stand-in: every intent succeeds on retrieval (for dev when the gateway isn't configured)."""

    def create_intent(self, *, amount: int, currency: str, metadata: dict[str, str] | None = None, idempotency_key: str | None = None) -> GatewayIntent:
        intent_id = f"pi_sandbox_{uuid.uuid4().hex[:24]}"
        return GatewayIntent(
            id=intent_id,
            status="requires_payment_method",
            client_secret=f"{intent_id}_secret_sandbox",
            amount=int(amount),
            currency=currency.lower(),
        )

    def retrieve_intent(self, intent_id: str) -> GatewayIntent:
        return GatewayIntent(id=intent_id, status="succeeded", receipt_url=f"https://sandbox.invalid/receipts/{intent_id}")

    def cancel_intent(self, intent_id: str, reason: str | None = None) -> GatewayIntent:
        return GatewayIntent(id=intent_id, status="canceled")

    def create_refund(self, *, intent_id: str, amount: int, reason: str | None = None, metadata: dict[str, str] | None = None, idempotency_key: str | None = None) -> GatewayRefund:
        return GatewayRefund(id=f"re_sandbox_{uuid.uuid4().hex[:24]}", status="succeeded", amount=int(amount))


def build_gateway_client(settings) -> PaymentGatewayClient:
    if settings.GATEWAY_SANDBOX:
        return SandboxGatewayClient()
    if not settings.GATEWAY_SECRET_KEY:
        raise GatewayException("Payment gateway is not configured (missing GATEWAY_SECRET_KEY)", code="GATEWAY_NOT_CONFIGURED", status_code=500)
    return StripeGatewayClient(StripeConfig(
        secret_key=settings.GATEWAY_SECRET_KEY,
        api_base=settings.GATEWAY_API_BASE,
        timeout=settings.GATEWAY_TIMEOUT_SECONDS,
    ))
