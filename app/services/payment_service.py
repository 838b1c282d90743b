from __future__ import annotations

import logging
import random
import string
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Iterable

from app.core.enums import (
    COMPLETED_PAYMENT_STATUSES,
    REFUNDABLE_PAYMENT_STATUSES,
    OrderPaymentStatus,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from app.core.exceptions import ConflictException, NotFoundException, ValidationException
from app.models.payment import Payment, PaymentRefund
from app.services.clock import as_utc, utcnow
from app.services.money import quantize_amount, to_decimal, to_minor_units
from app.services.payment_gateway import GatewayIntent, PaymentGatewayClient
from app.services.ports import EventPublisher, OrderStore, PaymentStore
from app.services.transitions import ensure_payment_transition

logger = logging.getLogger(__name__)


def make_payment_number(now: datetime) -> str:
    return f"PAY-{now.year}-" + "".join(random.choices(string.ascii_uppercase + string.digits, k=6))


class PaymentService:
    """Payment intent lifecycle against the gateway and the local order.

    Every gateway call happens before the first local write, so a gateway
    failure leaves the payment exactly as it was.
    """

    def __init__(
        self,
        payments: PaymentStore,
        orders: OrderStore,
        gateway: PaymentGatewayClient,
        publisher: EventPublisher,
        *,
        supported_currencies: Iterable[str] = ("GBP", "USD", "EUR", "INR"),
        max_retries: int = 3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.payments = payments
        self.orders = orders
        self.gateway = gateway
        self.publisher = publisher
        self.supported_currencies = {c.strip().upper() for c in supported_currencies if c.strip()}
        self.max_retries = max_retries
        self.clock = clock

    @classmethod
    def from_settings(cls, payments: PaymentStore, orders: OrderStore, gateway: PaymentGatewayClient, publisher: EventPublisher, settings, clock: Callable[[], datetime] = utcnow) -> "PaymentService":
        return cls(
            payments,
            orders,
            gateway,
            publisher,
            supported_currencies=settings.SUPPORTED_CURRENCIES.split(","),
            max_retries=settings.PAYMENT_MAX_RETRIES,
            clock=clock,
        )

    def _now(self) -> datetime:
        return as_utc(self.clock())

    def _publish(self, topic: str, payload: dict[str, Any]) -> None:
        try:
            self.publisher.publish(topic, payload)
        except Exception:
            logger.warning("failed to publish %s for payment %s", topic, payload.get("paymentId"), exc_info=True)

    def _get_or_404(self, payment_id: str) -> Payment:
        payment = self.payments.get(payment_id)
        if not payment:
            raise NotFoundException("Payment not found", code="PAYMENT_NOT_FOUND", details={"paymentId": payment_id})
        return payment

    def _allocate_number(self, now: datetime) -> str:
        for _ in range(10):
            number = make_payment_number(now)
            if not self.payments.number_exists(number):
                return number
        raise ConflictException("Could not allocate payment number", code="PAYMENT_NUMBER_EXHAUSTED")

    # -- state changes shared with the webhook reconciler ----------------
    # These stage the change and publish; the caller commits.

    def mark_paid(self, payment: Payment, receipt_url: str | None = None) -> None:
        ensure_payment_transition(payment.status, PaymentStatus.PAID)
        payment.status = PaymentStatus.PAID.value
        payment.paid_at = self._now()
        if receipt_url:
            payment.receipt_url = receipt_url
        self.payments.save(payment)
        self.orders.update(
            payment.order_id,
            payment_status=OrderPaymentStatus.PAID,
            status=OrderStatus.CONFIRMED,
        )
        self._publish("payment.succeeded", {
            "paymentId": payment.id,
            "orderId": payment.order_id,
            "amount": str(payment.amount),
            "currency": payment.currency,
            "receiptUrl": payment.receipt_url,
        })

    def mark_failed(self, payment: Payment, reason: str | None) -> None:
        ensure_payment_transition(payment.status, PaymentStatus.FAILED)
        payment.status = PaymentStatus.FAILED.value
        payment.failure_reason = (reason or "Payment failed")[:500]
        payment.failed_at = self._now()
        self.payments.save(payment)
        self._publish("payment.failed", {
            "paymentId": payment.id,
            "orderId": payment.order_id,
            "reason": payment.failure_reason,
        })

    def apply_refunded_total(self, payment: Payment, refunded_total: Decimal) -> None:
        """Set the cumulative refunded amount (capped at the payment amount) and the matching status."""
        amount = to_decimal(payment.amount)
        previous = to_decimal(payment.refunded_amount or 0)
        refunded_total = min(quantize_amount(refunded_total, payment.currency), amount)
        new_status = PaymentStatus.REFUNDED if refunded_total >= amount else PaymentStatus.PARTIALLY_REFUNDED
        ensure_payment_transition(payment.status, new_status)
        payment.refunded_amount = refunded_total
        payment.status = new_status.value
        payment.refunded_at = self._now()
        self.payments.save(payment)
        self._publish("payment.refunded", {
            "paymentId": payment.id,
            "orderId": payment.order_id,
            "amount": str(refunded_total - previous),
            "refundedAmount": str(refunded_total),
            "status": payment.status,
        })

    # -- commands --------------------------------------------------------

    def create_payment_intent(
        self,
        order_id: str,
        amount,
        currency: str,
        method: PaymentMethod | str = PaymentMethod.CARD,
        customer_id: str | None = None,
    ) -> Payment:
        order = self.orders.find_by_id(order_id)
        if not order:
            raise NotFoundException("Order not found", code="ORDER_NOT_FOUND", details={"orderId": order_id})

        currency = (currency or "").strip().upper()
        if currency not in self.supported_currencies:
            raise ValidationException(f"Unsupported currency: {currency}", code="UNSUPPORTED_CURRENCY")
        try:
            method = PaymentMethod(method)
        except ValueError:
            raise ValidationException(f"Unsupported payment method: {method}", code="UNSUPPORTED_METHOD")

        amount = to_decimal(amount)
        if amount != to_decimal(order.total):
            raise ValidationException(
                "Payment amount does not match order total",
                code="AMOUNT_MISMATCH",
                details={"amount": str(amount), "orderTotal": str(order.total)},
            )
        if order.currency and order.currency.upper() != currency:
            raise ValidationException("Payment currency does not match order currency", code="CURRENCY_MISMATCH")
        if order.payment_status == OrderPaymentStatus.PAID.value:
            raise ConflictException("Order has already been paid", code="ORDER_ALREADY_PAID")

        now = self._now()
        payment_id = str(uuid.uuid4())
        number = self._allocate_number(now)
        intent = self.gateway.create_intent(
            amount=to_minor_units(amount, currency),
            currency=currency,
            metadata={"orderId": order_id, "paymentNumber": number},
            idempotency_key=payment_id,
        )

        payment = Payment(
            id=payment_id,
            payment_number=number,
            order_id=order_id,
            customer_id=customer_id or order.customer_id,
            amount=quantize_amount(amount, currency),
            currency=currency,
            method=method.value,
            status=PaymentStatus.PENDING.value,
            gateway_intent_id=intent.id,
            client_secret=intent.client_secret,
            refunded_amount=Decimal("0"),
            retry_count=0,
            created_at=now,
        )
        self.payments.add(payment)
        self._publish("payment.intent.created", {
            "paymentId": payment.id,
            "paymentNumber": number,
            "orderId": order_id,
            "amount": str(payment.amount),
            "currency": currency,
            "gatewayIntentId": intent.id,
        })
        self.payments.commit()
        logger.info("payment %s created for order %s (intent %s)", number, order_id, intent.id)
        return payment

    def confirm_payment(self, payment_id: str) -> Payment:
        payment = self._get_or_404(payment_id)
        if payment.status not in (PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value):
            raise ConflictException("Payment has already been completed", code="PAYMENT_ALREADY_COMPLETED")

        intent: GatewayIntent = self.gateway.retrieve_intent(payment.gateway_intent_id)
        if intent.status == "succeeded":
            self.mark_paid(payment, intent.receipt_url)
        elif intent.status == "processing":
            if payment.status == PaymentStatus.PROCESSING.value:
                return payment
            ensure_payment_transition(payment.status, PaymentStatus.PROCESSING)
            payment.status = PaymentStatus.PROCESSING.value
            self.payments.save(payment)
        elif intent.status == "failed" or (intent.status == "requires_payment_method" and intent.failure_message):
            self.mark_failed(payment, intent.failure_message)
        else:
            logger.info("payment %s intent %s still %s", payment.id, intent.id, intent.status)
            return payment
        self.payments.commit()
        return payment

    def cancel_payment(self, payment_id: str, reason: str | None, cancelled_by: str) -> Payment:
        payment = self._get_or_404(payment_id)
        if PaymentStatus(payment.status) in COMPLETED_PAYMENT_STATUSES:
            raise ConflictException("Cannot cancel a completed payment", code="PAYMENT_ALREADY_COMPLETED")
        ensure_payment_transition(payment.status, PaymentStatus.CANCELLED)

        self.gateway.cancel_intent(payment.gateway_intent_id, reason)
        payment.status = PaymentStatus.CANCELLED.value
        payment.cancellation_reason = (reason or "").strip() or None
        payment.cancelled_by = cancelled_by
        payment.cancelled_at = self._now()
        self.payments.save(payment)
        self._publish("payment.cancelled", {
            "paymentId": payment.id,
            "orderId": payment.order_id,
            "reason": payment.cancellation_reason,
            "cancelledBy": cancelled_by,
        })
        self.payments.commit()
        return payment

    def create_refund(self, payment_id: str, amount, reason: str | None, requested_by: str) -> Payment:
        payment = self._get_or_404(payment_id)
        amount = quantize_amount(to_decimal(amount), payment.currency)
        if amount <= 0:
            raise ValidationException("Refund amount must be greater than zero", code="INVALID_REFUND_AMOUNT")
        if PaymentStatus(payment.status) not in REFUNDABLE_PAYMENT_STATUSES:
            raise ConflictException("Can only refund paid payments", code="PAYMENT_NOT_REFUNDABLE", status_code=400)
        available = to_decimal(payment.amount) - to_decimal(payment.refunded_amount or 0)
        if amount > available:
            raise ConflictException(
                "Refund amount exceeds available amount",
                code="REFUND_EXCEEDS_AVAILABLE",
                details={"requested": str(amount), "available": str(available)},
                status_code=400,
            )

        refund = self.gateway.create_refund(
            intent_id=payment.gateway_intent_id,
            amount=to_minor_units(amount, payment.currency),
            reason=reason,
            metadata={"paymentId": payment.id, "orderId": payment.order_id},
            idempotency_key=str(uuid.uuid4()),
        )

        payment.refund_reason = reason
        self.apply_refunded_total(payment, to_decimal(payment.refunded_amount or 0) + amount)
        self.payments.add_refund(PaymentRefund(
            id=str(uuid.uuid4()),
            payment_id=payment.id,
            gateway_refund_id=refund.id,
            amount=amount,
            reason=reason or "",
            requested_by=requested_by,
            created_at=self._now(),
        ))
        self.payments.commit()
        logger.info("refunded %s %s on payment %s", amount, payment.currency, payment.id)
        return payment

    def retry_failed_payment(self, payment_id: str) -> Payment:
        payment = self._get_or_404(payment_id)
        if payment.status != PaymentStatus.FAILED.value:
            raise ConflictException("Can only retry failed payments", code="PAYMENT_NOT_FAILED")
        if (payment.retry_count or 0) >= self.max_retries:
            raise ConflictException("Maximum payment retry attempts exceeded", code="PAYMENT_RETRY_LIMIT")

        attempt = (payment.retry_count or 0) + 1
        intent = self.gateway.create_intent(
            amount=to_minor_units(payment.amount, payment.currency),
            currency=payment.currency,
            metadata={"orderId": payment.order_id, "paymentNumber": payment.payment_number},
            idempotency_key=f"{payment.id}:retry:{attempt}",
        )

        ensure_payment_transition(payment.status, PaymentStatus.PENDING)
        payment.status = PaymentStatus.PENDING.value
        payment.retry_count = attempt
        payment.gateway_intent_id = intent.id
        payment.client_secret = intent.client_secret
        payment.failure_reason = None
        payment.failed_at = None
        self.payments.save(payment)
        self._publish("payment.retried", {
            "paymentId": payment.id,
            "orderId": payment.order_id,
            "retryCount": attempt,
            "gatewayIntentId": intent.id,
        })
        self.payments.commit()
        return payment

    # -- queries ---------------------------------------------------------

    def get_payment(self, payment_id: str) -> Payment:
        return self._get_or_404(payment_id)

    def get_statistics(self) -> dict:
        counts = self.payments.count_by_status()
        stats: dict[str, Any] = {s.value.lower(): int(counts.get(s.value, 0)) for s in PaymentStatus}
        stats["total"] = sum(stats.values())
        stats["totalRevenue"] = str(self.payments.total_revenue())
        return stats
