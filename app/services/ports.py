from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import Any

from app.models.booking import Booking
from app.models.order import Order
from app.models.payment import Payment, PaymentRefund


class BookingStore(ABC):
    """Persistence port for bookings.

    Writes are staged (flushed) and become durable on ``commit``. ``add`` and
    ``save`` must raise ``SlotConflictException`` when the store's slot
    uniqueness rule rejects the write, and ``ConcurrentUpdateException`` when
    the row changed underneath the caller.
    """

    @abstractmethod
    def get(self, booking_id: str) -> Booking | None:
        raise NotImplementedError

    @abstractmethod
    def add(self, booking: Booking) -> Booking:
        raise NotImplementedError

    @abstractmethod
    def save(self, booking: Booking) -> Booking:
        raise NotImplementedError

    @abstractmethod
    def exists_active_in_slot(
        self,
        scheduled_date: datetime,
        booking_type: str,
        showroom_id: str | None = None,
        exclude_booking_id: str | None = None,
    ) -> bool:
        raise NotImplementedError

    @abstractmethod
    def list_active_between(
        self,
        start: datetime,
        end: datetime,
        booking_type: str,
        showroom_id: str | None = None,
    ) -> list[Booking]:
        """Active bookings of ``booking_type`` with start <= scheduled_date < end."""
        raise NotImplementedError

    @abstractmethod
    def list_by_customer(
        self, customer_id: str, status: str | None, offset: int, limit: int
    ) -> tuple[list[Booking], int]:
        raise NotImplementedError

    @abstractmethod
    def list_upcoming(self, after: datetime, limit: int) -> list[Booking]:
        raise NotImplementedError

    @abstractmethod
    def count_by_status(self) -> dict[str, int]:
        raise NotImplementedError

    @abstractmethod
    def number_exists(self, booking_number: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def commit(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def rollback(self) -> None:
        raise NotImplementedError


class PaymentStore(ABC):
    @abstractmethod
    def get(self, payment_id: str) -> Payment | None:
        raise NotImplementedError

    @abstractmethod
    def get_by_gateway_intent_id(self, intent_id: str) -> Payment | None:
        raise NotImplementedError

    @abstractmethod
    def add(self, payment: Payment) -> Payment:
        raise NotImplementedError

    @abstractmethod
    def save(self, payment: Payment) -> Payment:
        raise NotImplementedError

    @abstractmethod
    def add_refund(self, refund: PaymentRefund) -> PaymentRefund:
        raise NotImplementedError

    @abstractmethod
    def count_by_status(self) -> dict[str, int]:
        raise NotImplementedError

    @abstractmethod
    def total_revenue(self) -> Decimal:
        """Sum of captured amounts net of refunds."""
        raise NotImplementedError

    @abstractmethod
    def number_exists(self, payment_number: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def has_gateway_event(self, event_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def record_gateway_event(self, event_id: str, event_type: str, outcome: str) -> bool:
        """Stage the event id. Returns False (with the transaction rolled back) if it was already recorded."""
        raise NotImplementedError

    @abstractmethod
    def commit(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def rollback(self) -> None:
        raise NotImplementedError


class OrderStore(ABC):
    @abstractmethod
    def find_by_id(self, order_id: str) -> Order | None:
        raise NotImplementedError

    @abstractmethod
    def update(self, order_id: str, **fields: Any) -> Order | None:
        """Stage an update of ``status`` and/or ``payment_status``."""
        raise NotImplementedError


class EventPublisher(ABC):
    @abstractmethod
    def publish(self, topic: str, payload: dict[str, Any]) -> None:
        """Best effort. Callers treat any exception as a lost event, not a failed operation."""
        raise NotImplementedError
