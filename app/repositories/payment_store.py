from __future__ import annotations

from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.enums import COMPLETED_PAYMENT_STATUSES
from app.core.exceptions import ConcurrentUpdateException
from app.models.gateway_event import GatewayEventLog
from app.models.order import Order
from app.models.payment import Payment, PaymentRefund
from app.services.ports import OrderStore, PaymentStore


class SqlAlchemyPaymentStore(PaymentStore):
    def __init__(self, db: Session):
        self.db = db

    def get(self, payment_id: str) -> Payment | None:
        return self.db.get(Payment, payment_id)

    def get_by_gateway_intent_id(self, intent_id: str) -> Payment | None:
        return self.db.execute(
            select(Payment).where(Payment.gateway_intent_id == intent_id)
        ).scalar_one_or_none()

    def add(self, payment: Payment) -> Payment:
        self.db.add(payment)
        self._flush(payment)
        return payment

    def save(self, payment: Payment) -> Payment:
        self._flush(payment)
        return payment

    def _flush(self, payment: Payment) -> None:
        try:
            self.db.flush()
        except StaleDataError as e:
            self.db.rollback()
            raise ConcurrentUpdateException(
                "Payment was modified concurrently, please retry",
                code="PAYMENT_CONCURRENT_UPDATE",
                details={"paymentId": payment.id},
            ) from e

    def add_refund(self, refund: PaymentRefund) -> PaymentRefund:
        self.db.add(refund)
        return refund

    def count_by_status(self) -> dict[str, int]:
        rows = self.db.execute(select(Payment.status, func.count(Payment.id)).group_by(Payment.status)).all()
        return {status: int(n) for status, n in rows}

    def total_revenue(self) -> Decimal:
        completed = [s.value for s in COMPLETED_PAYMENT_STATUSES]
        total = self.db.execute(
            select(func.coalesce(func.sum(Payment.amount - Payment.refunded_amount), 0)).where(
                Payment.status.in_(completed)
            )
        ).scalar_one()
        return Decimal(str(total)).quantize(Decimal("0.01"))

    def number_exists(self, payment_number: str) -> bool:
        return self.db.execute(
            select(Payment.id).where(Payment.payment_number == payment_number).limit(1)
        ).first() is not None

    def has_gateway_event(self, event_id: str) -> bool:
        return self.db.get(GatewayEventLog, event_id) is not None

    def record_gateway_event(self, event_id: str, event_type: str, outcome: str) -> bool:
        self.db.add(GatewayEventLog(event_id=event_id, event_type=event_type, outcome=outcome))
        try:
            self.db.flush()
        except IntegrityError:
            # a concurrent delivery of the same event got there first
            self.db.rollback()
            return False
        return True

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()


class SqlAlchemyOrderStore(OrderStore):
    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, order_id: str) -> Order | None:
        return self.db.get(Order, order_id)

    def update(self, order_id: str, **fields: Any) -> Order | None:
        order = self.db.get(Order, order_id)
        if not order:
            return None
        for key in ("status", "payment_status"):
            if key in fields:
                setattr(order, key, getattr(fields[key], "value", fields[key]))
        return order
