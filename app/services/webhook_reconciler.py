from __future__ import annotations

import logging
from dataclasses import dataclass

from app.core.enums import REFUNDABLE_PAYMENT_STATUSES, PaymentStatus
from app.models.payment import Payment
from app.services.money import from_minor_units, to_decimal
from app.services.payment_gateway import GatewayEvent, intent_from_payload, parse_event
from app.services.payment_service import PaymentService
from app.services.transitions import can_transition_payment

logger = logging.getLogger(__name__)

SUCCEEDED_EVENTS = frozenset({"payment_intent.succeeded", "intent.succeeded"})
FAILED_EVENTS = frozenset({"payment_intent.payment_failed", "intent.payment_failed"})
REFUNDED_EVENTS = frozenset({"charge.refunded"})

PROCESSED = "processed"
IGNORED = "ignored"
PAYMENT_NOT_FOUND = "payment_not_found"
DUPLICATE = "duplicate"
SKIPPED = "skipped"


@dataclass
class ReconcileResult:
    outcome: str
    event_id: str
    event_type: str
    payment_id: str | None = None

    def as_dict(self) -> dict:
        return {
            "outcome": self.outcome,
            "eventId": self.event_id,
            "eventType": self.event_type,
            "paymentId": self.payment_id,
        }


class WebhookReconciler:
    """Applies gateway callbacks to local payments.

    Delivery is at-least-once, so every handler is idempotent: an unknown
    payment, a replay, or a callback the payment can no longer accept is a
    result, never an exception.
    """

    def __init__(self, coordinator: PaymentService):
        self.coordinator = coordinator
        self.payments = coordinator.payments

    def handle(self, event: GatewayEvent | dict) -> ReconcileResult:
        if isinstance(event, dict):
            event = parse_event(event)

        if event.id and self.payments.has_gateway_event(event.id):
            logger.info("webhook %s (%s) already handled", event.id, event.type)
            return ReconcileResult(DUPLICATE, event.id, event.type)

        if event.type in SUCCEEDED_EVENTS or event.type in FAILED_EVENTS:
            intent_id = str(event.data.get("id") or "")
        elif event.type in REFUNDED_EVENTS:
            intent_id = str(event.data.get("payment_intent") or "")
        else:
            logger.debug("webhook %s ignored (type %s)", event.id, event.type)
            return ReconcileResult(IGNORED, event.id, event.type)

        payment = self.payments.get_by_gateway_intent_id(intent_id) if intent_id else None
        if not payment:
            # the gateway retries unacknowledged deliveries, so this must not raise
            logger.info("webhook %s (%s): no payment for intent %r", event.id, event.type, intent_id)
            return ReconcileResult(PAYMENT_NOT_FOUND, event.id, event.type)

        if event.type in SUCCEEDED_EVENTS:
            outcome = self._succeeded(payment, event)
        elif event.type in FAILED_EVENTS:
            outcome = self._failed(payment, event)
        else:
            outcome = self._refunded(payment, event)

        if event.id and not self.payments.record_gateway_event(event.id, event.type, outcome):
            # concurrent delivery of the same event won; our staged changes are gone
            return ReconcileResult(DUPLICATE, event.id, event.type, payment.id)
        self.payments.commit()
        logger.info("webhook %s (%s) -> %s for payment %s", event.id, event.type, outcome, payment.id)
        return ReconcileResult(outcome, event.id, event.type, payment.id)

    def _skip(self, payment: Payment, event: GatewayEvent, target: PaymentStatus) -> str:
        logger.warning(
            "webhook %s (%s) cannot move payment %s from %s to %s",
            event.id, event.type, payment.id, payment.status, target.value,
        )
        return SKIPPED

    def _succeeded(self, payment: Payment, event: GatewayEvent) -> str:
        if payment.status == PaymentStatus.PAID.value:
            return DUPLICATE
        if not can_transition_payment(payment.status, PaymentStatus.PAID):
            return self._skip(payment, event, PaymentStatus.PAID)
        intent = intent_from_payload(event.data)
        self.coordinator.mark_paid(payment, intent.receipt_url)
        return PROCESSED

    def _failed(self, payment: Payment, event: GatewayEvent) -> str:
        if payment.status == PaymentStatus.FAILED.value:
            return DUPLICATE
        if not can_transition_payment(payment.status, PaymentStatus.FAILED):
            return self._skip(payment, event, PaymentStatus.FAILED)
        intent = intent_from_payload(event.data)
        self.coordinator.mark_failed(payment, intent.failure_message)
        return PROCESSED

    def _refunded(self, payment: Payment, event: GatewayEvent) -> str:
        if PaymentStatus(payment.status) not in REFUNDABLE_PAYMENT_STATUSES:
            if payment.status == PaymentStatus.REFUNDED.value:
                return DUPLICATE
            return self._skip(payment, event, PaymentStatus.REFUNDED)

        raw = event.data.get("amount_refunded")
        try:
            minor = int(raw or 0)
        except (TypeError, ValueError):
            logger.warning("webhook %s: unreadable amount_refunded %r for payment %s", event.id, raw, payment.id)
            return SKIPPED
        refunded = from_minor_units(minor, payment.currency)
        refunded = min(refunded, to_decimal(payment.amount))
        recorded = to_decimal(payment.refunded_amount or 0)
        if refunded == recorded:
            return DUPLICATE
        if refunded < recorded:
            # an older snapshot arriving late; the recorded total only grows
            logger.info("webhook %s: stale refund total %s < %s for payment %s", event.id, refunded, recorded, payment.id)
            return SKIPPED
        self.coordinator.apply_refunded_total(payment, refunded)
        return PROCESSED
