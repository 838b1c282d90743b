from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from app.core.enums import PaymentMethod
from app.models.payment import Payment
from app.services.clock import as_utc


class PaymentIntentCreate(BaseModel):
    orderId: str
    amount: Decimal
    currency: str = "GBP"
    method: PaymentMethod = PaymentMethod.CARD
    customerId: Optional[str] = None


class PaymentCancelIn(BaseModel):
    reason: str = ""


class RefundIn(BaseModel):
    amount: Decimal = Field(...)
    reason: str = ""


class PaymentOut(BaseModel):
    id: str
    paymentNumber: str
    orderId: str
    customerId: Optional[str] = None
    amount: str
    currency: str
    method: str
    status: str
    gatewayIntentId: str
    refundedAmount: str
    receiptUrl: Optional[str] = None
    paidAt: Optional[str] = None
    failureReason: Optional[str] = None
    cancellationReason: Optional[str] = None
    refundReason: Optional[str] = None
    retryCount: int = 0

    @classmethod
    def from_model(cls, p: Payment) -> "PaymentOut":
        return cls(
            id=p.id,
            paymentNumber=p.payment_number,
            orderId=p.order_id,
            customerId=p.customer_id,
            amount=str(p.amount),
            currency=p.currency,
            method=p.method,
            status=p.status,
            gatewayIntentId=p.gateway_intent_id,
            refundedAmount=str(p.refunded_amount or Decimal("0")),
            receiptUrl=p.receipt_url,
            paidAt=_iso(p.paid_at),
            failureReason=p.failure_reason,
            cancellationReason=p.cancellation_reason,
            refundReason=p.refund_reason,
            retryCount=p.retry_count or 0,
        )


class PaymentIntentOut(PaymentOut):
    # only handed back to the paying client, never on ops reads
    clientSecret: Optional[str] = None

    @classmethod
    def from_model(cls, p: Payment) -> "PaymentIntentOut":
        return cls(**PaymentOut.from_model(p).model_dump(), clientSecret=p.client_secret)


def _iso(dt: datetime | None) -> str | None:
    return as_utc(dt).isoformat() if dt else None
