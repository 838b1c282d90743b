"""Shared test fixtures and helpers."""

import os

# Settings() is built at import time and requires these.
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.session import Base
from app.models.audit_log import AuditLog  # noqa: F401
from app.models.booking import Booking  # noqa: F401
from app.models.gateway_event import GatewayEventLog  # noqa: F401
from app.models.order import Order
from app.models.outbox_event import OutboxEvent  # noqa: F401
from app.models.payment import Payment, PaymentRefund  # noqa: F401
from app.models.user import User  # noqa: F401
from app.repositories.booking_store import SqlAlchemyBookingStore
from app.repositories.payment_store import SqlAlchemyOrderStore, SqlAlchemyPaymentStore
from app.services.availability_service import SlotAvailabilityEngine
from app.services.booking_service import BookingService
from app.services.payment_gateway import GatewayIntent, GatewayRefund, PaymentGatewayClient
from app.services.payment_service import PaymentService
from app.services.ports import EventPublisher
from app.services.webhook_reconciler import WebhookReconciler

# Before every dated scenario (2026-03-15) so "future" checks hold.
FIXED_NOW = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
SCENARIO_DATE = datetime(2026, 3, 15, 10, 0, tzinfo=timezone.utc)


class FrozenClock:
    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingPublisher(EventPublisher):
    def __init__(self):
        self.events: list[tuple[str, dict[str, Any]]] = []

    def publish(self, topic: str, payload: dict[str, Any]) -> None:
        self.events.append((topic, payload))

    def topics(self) -> list[str]:
        return [t for t, _ in self.events]

    def last(self, topic: str) -> dict[str, Any]:
        return [p for t, p in self.events if t == topic][-1]


class FailingPublisher(EventPublisher):
    def publish(self, topic: str, payload: dict[str, Any]) -> None:
        raise RuntimeError("event bus down")


class FakeGateway(PaymentGatewayClient):
    """In-memory gateway. Set ``error`` to make every call raise it."""

    def __init__(self):
        self.calls: list[tuple] = []
        self.retrieve_status = "succeeded"
        self.failure_message: Optional[str] = None
        self.error: Optional[Exception] = None
        self._n = 0

    def _next_id(self, prefix: str) -> str:
        self._n += 1
        return f"{prefix}_test_{self._n}"

    def _maybe_raise(self) -> None:
        if self.error is not None:
            raise self.error

    def create_intent(self, *, amount, currency, metadata=None, idempotency_key=None):
        self._maybe_raise()
        self.calls.append(("create_intent", amount, currency, metadata, idempotency_key))
        intent_id = self._next_id("pi")
        return GatewayIntent(
            id=intent_id,
            status="requires_payment_method",
            client_secret=f"{intent_id}_secret",
            amount=amount,
            currency=currency.lower(),
        )

    def retrieve_intent(self, intent_id):
        self._maybe_raise()
        self.calls.append(("retrieve_intent", intent_id))
        receipt = f"https://receipts.test/{intent_id}" if self.retrieve_status == "succeeded" else None
        return GatewayIntent(
            id=intent_id,
            status=self.retrieve_status,
            receipt_url=receipt,
            failure_message=self.failure_message,
        )

    def cancel_intent(self, intent_id, reason=None):
        self._maybe_raise()
        self.calls.append(("cancel_intent", intent_id, reason))
        return GatewayIntent(id=intent_id, status="canceled")

    def create_refund(self, *, intent_id, amount, reason=None, metadata=None, idempotency_key=None):
        self._maybe_raise()
        self.calls.append(("create_refund", intent_id, amount, reason))
        return GatewayRefund(id=self._next_id("re"), status="succeeded", amount=amount)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def booking_store(db):
    return SqlAlchemyBookingStore(db)


@pytest.fixture
def payment_store(db):
    return SqlAlchemyPaymentStore(db)


@pytest.fixture
def order_store(db):
    return SqlAlchemyOrderStore(db)


@pytest.fixture
def availability(booking_store):
    return SlotAvailabilityEngine(booking_store)


@pytest.fixture
def booking_service(booking_store, availability, publisher, clock):
    return BookingService(booking_store, availability, publisher, clock=clock)


@pytest.fixture
def payment_service(payment_store, order_store, gateway, publisher, clock):
    return PaymentService(payment_store, order_store, gateway, publisher, clock=clock)


@pytest.fixture
def reconciler(payment_service):
    return WebhookReconciler(payment_service)


@pytest.fixture
def make_order(db):
    def _make(total: str = "2150.00", currency: str = "GBP", payment_status: str = "UNPAID") -> Order:
        order = Order(
            id=str(uuid.uuid4()),
            order_number=f"ORD-{uuid.uuid4().hex[:8].upper()}",
            customer_id="cust-1",
            total=Decimal(total),
            currency=currency,
            status="PENDING",
            payment_status=payment_status,
        )
        db.add(order)
        db.commit()
        return order
    return _make


@pytest.fixture
def paid_payment(payment_service, make_order, gateway):
    """A PAID 2150.00 GBP payment."""
    order = make_order()
    payment = payment_service.create_payment_intent(order.id, Decimal("2150.00"), "GBP", "CARD")
    gateway.retrieve_status = "succeeded"
    return payment_service.confirm_payment(payment.id)


def customer_details(**overrides) -> dict:
    details = {
        "name": "Jane Customer",
        "email": "Jane@Example.co.uk",
        "phone": "07700900000",
        "postcode": "SW1A 1AA",
        "address": "1 High Street, London",
    }
    details.update(overrides)
    return details


def create_home_booking(service: BookingService, when: datetime = SCENARIO_DATE, **kwargs):
    params = {
        "customer_id": "cust-1",
        "booking_type": "HOME_MEASUREMENT",
        "categories": ["KITCHEN", "BEDROOM"],
        "customer_details": customer_details(),
        "scheduled_date": when,
    }
    params.update(kwargs)
    return service.create_booking(**params)
