from __future__ import annotations

import logging
import random
import string
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Mapping

from app.core.enums import (
    ACTIVE_BOOKING_STATUSES,
    TERMINAL_BOOKING_STATUSES,
    BookingCategory,
    BookingStatus,
    BookingType,
)
from app.core.exceptions import (
    ConflictException,
    NotFoundException,
    SlotConflictException,
    ValidationException,
)
from app.models.booking import Booking, make_slot_key
from app.services.availability_service import SlotAvailabilityEngine
from app.services.clock import as_utc, utcnow
from app.services.ports import BookingStore, EventPublisher
from app.services.transitions import ensure_booking_transition

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def make_booking_number(now: datetime) -> str:
    return f"BK-{now.year}-" + "".join(random.choices(string.ascii_uppercase + string.digits, k=6))


def _normalize_categories(categories: Iterable[str] | None) -> list[str]:
    out: list[str] = []
    for c in categories or []:
        value = str(getattr(c, "value", c)).strip().upper()
        try:
            value = BookingCategory(value).value
        except ValueError:
            raise ValidationException(f"Unknown booking category: {c}", code="UNKNOWN_CATEGORY")
        if value not in out:
            out.append(value)
    return out


class BookingService:
    """Owns the Booking state machine: create, confirm, complete, cancel, reschedule.

    All validation runs before the first write, so a rejected call leaves no
    partial record. Event publication never fails the operation.
    """

    def __init__(
        self,
        bookings: BookingStore,
        availability: SlotAvailabilityEngine,
        publisher: EventPublisher,
        *,
        auto_confirm_types: Iterable[BookingType | str] = (BookingType.ONLINE, BookingType.SHOWROOM),
        cancellation_window_hours: int = 24,
        meeting_base_url: str = "",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.bookings = bookings
        self.availability = availability
        self.publisher = publisher
        self.auto_confirm_types = {BookingType(t) for t in auto_confirm_types}
        self.cancellation_window = timedelta(hours=cancellation_window_hours)
        self.meeting_base_url = meeting_base_url.rstrip("/")
        self.clock = clock

    @classmethod
    def from_settings(cls, bookings: BookingStore, publisher: EventPublisher, settings, clock: Callable[[], datetime] = utcnow) -> "BookingService":
        auto_types = [t.strip().upper() for t in settings.BOOKING_AUTO_CONFIRM_TYPES.split(",") if t.strip()]
        return cls(
            bookings,
            SlotAvailabilityEngine.from_settings(bookings, settings),
            publisher,
            auto_confirm_types=auto_types,
            cancellation_window_hours=settings.BOOKING_CANCELLATION_WINDOW_HOURS,
            meeting_base_url=settings.ONLINE_MEETING_BASE_URL,
            clock=clock,
        )

    def _now(self) -> datetime:
        return as_utc(self.clock())

    def _publish(self, topic: str, payload: dict[str, Any]) -> None:
        try:
            self.publisher.publish(topic, payload)
        except Exception:
            logger.warning("failed to publish %s for booking %s", topic, payload.get("bookingId"), exc_info=True)

    def _get_or_404(self, booking_id: str) -> Booking:
        booking = self.bookings.get(booking_id)
        if not booking:
            raise NotFoundException("Booking not found", code="BOOKING_NOT_FOUND", details={"bookingId": booking_id})
        return booking

    def _allocate_number(self, now: datetime) -> str:
        for _ in range(10):
            number = make_booking_number(now)
            if not self.bookings.number_exists(number):
                return number
        raise ConflictException("Could not allocate booking number", code="BOOKING_NUMBER_EXHAUSTED")

    def _set_status(self, booking: Booking, new_status: BookingStatus, now: datetime) -> None:
        booking.status = new_status.value
        if new_status is BookingStatus.CONFIRMED:
            booking.confirmed_at = now
        elif new_status is BookingStatus.COMPLETED:
            booking.completed_at = now
        elif new_status is BookingStatus.CANCELLED:
            booking.cancelled_at = now
        if new_status in TERMINAL_BOOKING_STATUSES:
            # frees the slot for the uniqueness rule
            booking.active_slot_key = None

    # -- commands --------------------------------------------------------

    def create_booking(
        self,
        customer_id: str,
        booking_type: BookingType | str,
        categories: Iterable[str],
        customer_details: Mapping[str, Any],
        scheduled_date: datetime,
        showroom_id: str | None = None,
        notes: str | None = None,
        preferred_platform: str | None = None,
    ) -> Booking:
        cats = _normalize_categories(categories)
        if not cats:
            raise ValidationException(
                "At least one category (Kitchen or Bedroom) must be selected", code="CATEGORIES_REQUIRED"
            )
        try:
            booking_type = BookingType(booking_type)
        except ValueError:
            raise ValidationException(f"Unknown booking type: {booking_type}", code="UNKNOWN_BOOKING_TYPE")
        showroom_id = (showroom_id or "").strip() or None
        if booking_type is BookingType.SHOWROOM and not showroom_id:
            raise ValidationException("Showroom ID is required for showroom bookings", code="SHOWROOM_REQUIRED")
        if booking_type is not BookingType.SHOWROOM and showroom_id:
            raise ValidationException("Showroom ID is only valid for showroom bookings", code="SHOWROOM_NOT_ALLOWED")

        now = self._now()
        scheduled_date = as_utc(scheduled_date)
        if scheduled_date <= now:
            raise ValidationException("Cannot book appointments in the past", code="DATE_IN_PAST")

        if not self.availability.is_available(scheduled_date, booking_type, showroom_id):
            raise SlotConflictException(
                "Selected time slot is not available", code="SLOT_UNAVAILABLE", status_code=400
            )

        status = BookingStatus.CONFIRMED if booking_type in self.auto_confirm_types else BookingStatus.PENDING
        number = self._allocate_number(now)
        booking = Booking(
            id=str(uuid.uuid4()),
            booking_number=number,
            customer_id=customer_id,
            type=booking_type.value,
            categories=",".join(cats),
            status=status.value,
            scheduled_date=scheduled_date,
            showroom_id=showroom_id,
            active_slot_key=make_slot_key(scheduled_date, booking_type.value, showroom_id),
            customer_name=str(customer_details.get("name") or ""),
            customer_email=str(customer_details.get("email") or "").lower(),
            customer_phone=str(customer_details.get("phone") or ""),
            postcode=str(customer_details.get("postcode") or ""),
            address=str(customer_details.get("address") or ""),
            notes=notes,
            preferred_platform=preferred_platform if booking_type is BookingType.ONLINE else None,
            confirmed_at=now if status is BookingStatus.CONFIRMED else None,
            created_at=now,
        )
        if booking_type is BookingType.ONLINE and self.meeting_base_url:
            booking.meeting_link = f"{self.meeting_base_url}/{number}"

        # Raises SlotConflictException (409) if a concurrent request took the slot first.
        self.bookings.add(booking)
        self._publish("booking.created", {
            "bookingId": booking.id,
            "bookingNumber": booking.booking_number,
            "customerId": customer_id,
            "type": booking.type,
            "status": booking.status,
            "categories": cats,
            "scheduledDate": scheduled_date.isoformat(),
            "customerEmail": booking.customer_email,
            "requiresMultiTeamNotification": len(cats) > 1,
        })
        self.bookings.commit()
        logger.info("booking %s created (%s, %s)", booking.booking_number, booking.type, booking.status)
        return booking

    def update_status(self, booking_id: str, new_status: BookingStatus | str) -> Booking:
        booking = self._get_or_404(booking_id)
        try:
            new_status = BookingStatus(new_status)
        except ValueError:
            raise ValidationException(f"Unknown booking status: {new_status}", code="UNKNOWN_BOOKING_STATUS")
        previous = BookingStatus(booking.status)
        ensure_booking_transition(previous, new_status)

        self._set_status(booking, new_status, self._now())
        self.bookings.save(booking)
        self._publish("booking.status.updated", {
            "bookingId": booking.id,
            "previousStatus": previous.value,
            "newStatus": new_status.value,
        })
        self.bookings.commit()
        logger.info("booking %s %s -> %s", booking.id, previous.value, new_status.value)
        return booking

    def cancel_booking(self, booking_id: str, reason: str, cancelled_by: str) -> Booking:
        booking = self._get_or_404(booking_id)
        reason = (reason or "").strip()
        if not reason:
            raise ValidationException("Cancellation reason is required", code="CANCELLATION_REASON_REQUIRED")
        status = BookingStatus(booking.status)
        if status is BookingStatus.COMPLETED:
            raise ConflictException("Cannot cancel completed booking", code="BOOKING_COMPLETED")
        if status is BookingStatus.CANCELLED:
            raise ConflictException("Booking is already cancelled", code="BOOKING_ALREADY_CANCELLED")

        now = self._now()
        if as_utc(booking.scheduled_date) - now < self.cancellation_window:
            hours = int(self.cancellation_window.total_seconds() // 3600)
            raise ValidationException(
                f"Cannot cancel booking less than {hours} hours before scheduled time",
                code="CANCELLATION_WINDOW_CLOSED",
            )
        ensure_booking_transition(status, BookingStatus.CANCELLED)

        self._set_status(booking, BookingStatus.CANCELLED, now)
        booking.cancellation_reason = reason
        booking.cancelled_by = cancelled_by
        self.bookings.save(booking)
        self._publish("booking.cancelled", {
            "bookingId": booking.id,
            "reason": reason,
            "cancelledBy": cancelled_by,
        })
        self.bookings.commit()
        return booking

    def reschedule_booking(self, booking_id: str, new_date: datetime) -> Booking:
        booking = self._get_or_404(booking_id)
        status = BookingStatus(booking.status)
        if status not in ACTIVE_BOOKING_STATUSES:
            raise ConflictException(
                f"Cannot reschedule a {status.value.lower()} booking", code="BOOKING_NOT_ACTIVE"
            )
        now = self._now()
        new_date = as_utc(new_date)
        if new_date <= now:
            raise ValidationException("Cannot reschedule to a past date", code="DATE_IN_PAST")
        if not self.availability.is_available(new_date, booking.type, booking.showroom_id, exclude_booking_id=booking.id):
            raise SlotConflictException(
                "New time slot is not available", code="SLOT_UNAVAILABLE", status_code=400
            )

        previous = as_utc(booking.scheduled_date)
        booking.previous_scheduled_date = previous
        booking.scheduled_date = new_date
        booking.rescheduled_at = now
        booking.active_slot_key = make_slot_key(new_date, booking.type, booking.showroom_id)
        try:
            self.bookings.save(booking)
        except SlotConflictException as e:
            raise SlotConflictException("New time slot is not available", code="SLOT_CONFLICT") from e
        self._publish("booking.rescheduled", {
            "bookingId": booking.id,
            "previousDate": previous.isoformat(),
            "newDate": new_date.isoformat(),
        })
        self.bookings.commit()
        return booking

    def send_reminder(self, booking_id: str) -> Booking:
        booking = self._get_or_404(booking_id)
        if as_utc(booking.scheduled_date) <= self._now():
            raise ValidationException("Cannot send reminder for past booking", code="BOOKING_IN_PAST")
        if booking.status == BookingStatus.CANCELLED.value:
            raise ConflictException("Cannot send reminder for cancelled booking", code="BOOKING_CANCELLED")
        self._publish("booking.reminder.sent", {
            "bookingId": booking.id,
            "customerEmail": booking.customer_email,
            "scheduledDate": as_utc(booking.scheduled_date).isoformat(),
            "type": booking.type,
        })
        self.bookings.commit()
        return booking

    def assign_consultant(self, booking_id: str, consultant_id: str) -> Booking:
        booking = self._get_or_404(booking_id)
        if BookingStatus(booking.status) not in ACTIVE_BOOKING_STATUSES:
            raise ConflictException("Can only assign a consultant to an active booking", code="BOOKING_NOT_ACTIVE")
        consultant_id = (consultant_id or "").strip()
        if not consultant_id:
            raise ValidationException("Consultant ID is required", code="CONSULTANT_REQUIRED")
        previous = booking.consultant_id
        booking.consultant_id = consultant_id
        self.bookings.save(booking)
        self._publish("booking.consultant.assigned", {
            "bookingId": booking.id,
            "consultantId": consultant_id,
            "previousConsultantId": previous,
        })
        self.bookings.commit()
        return booking

    # -- queries ---------------------------------------------------------

    def get_booking(self, booking_id: str) -> Booking:
        return self._get_or_404(booking_id)

    def list_customer_bookings(self, customer_id: str, status: BookingStatus | str | None = None, page: int = 1, limit: int = 10) -> dict:
        page = max(1, int(page))
        limit = min(max(1, int(limit)), MAX_PAGE_SIZE)
        status_value = BookingStatus(status).value if status else None
        items, total = self.bookings.list_by_customer(customer_id, status_value, (page - 1) * limit, limit)
        return {
            "data": items,
            "pagination": {
                "total": total,
                "page": page,
                "limit": limit,
                "totalPages": (total + limit - 1) // limit,
            },
        }

    def list_upcoming_bookings(self, limit: int = 20) -> list[Booking]:
        return self.bookings.list_upcoming(self._now(), min(max(1, int(limit)), MAX_PAGE_SIZE))

    def get_statistics(self) -> dict[str, int]:
        counts = self.bookings.count_by_status()
        stats = {s.value.lower(): int(counts.get(s.value, 0)) for s in BookingStatus}
        stats["total"] = sum(stats.values())
        return stats
