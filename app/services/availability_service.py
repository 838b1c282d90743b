from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from app.core.enums import BookingType
from app.core.exceptions import ValidationException
from app.services.clock import as_utc
from app.services.ports import BookingStore


@dataclass
class SlotView:
    time: str  # HH:MM in the business timezone
    scheduled_date: datetime  # UTC
    available: bool
    booking_id: str | None = None
    consultant_id: str | None = None
    showroom_id: str | None = None


def _parse_hhmm(value: str) -> time:
    hh, mm = map(int, value.split(":"))
    return time(hh, mm)


def _showroom_scope(booking_type: BookingType, showroom_id: str | None) -> str | None:
    # showroom slots are per showroom; other types ignore it
    if booking_type is not BookingType.SHOWROOM:
        return None
    if not showroom_id:
        raise ValidationException("Showroom ID is required for showroom bookings", code="SHOWROOM_REQUIRED")
    return showroom_id


class SlotAvailabilityEngine:
    """Answers whether a (date, type, showroom) slot can take another booking.

    A slot holds at most one active (PENDING/CONFIRMED) booking. Pure reads;
    store errors propagate to the caller untouched.
    """

    def __init__(
        self,
        bookings: BookingStore,
        business_timezone: str = "Europe/London",
        day_start: str = "09:00",
        day_end: str = "17:00",
        interval_minutes: int = 60,
    ):
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be > 0")
        self.bookings = bookings
        self.tz = ZoneInfo(business_timezone)
        self.day_start = _parse_hhmm(day_start)
        self.day_end = _parse_hhmm(day_end)
        self.interval = timedelta(minutes=interval_minutes)

    @classmethod
    def from_settings(cls, bookings: BookingStore, settings) -> "SlotAvailabilityEngine":
        return cls(
            bookings,
            business_timezone=settings.BUSINESS_TIMEZONE,
            day_start=settings.SLOT_DAY_START,
            day_end=settings.SLOT_DAY_END,
            interval_minutes=settings.SLOT_INTERVAL_MINUTES,
        )

    def is_available(
        self,
        scheduled_date: datetime,
        booking_type: BookingType | str,
        showroom_id: str | None = None,
        exclude_booking_id: str | None = None,
    ) -> bool:
        booking_type = BookingType(booking_type)
        return not self.bookings.exists_active_in_slot(
            as_utc(scheduled_date),
            booking_type.value,
            _showroom_scope(booking_type, showroom_id),
            exclude_booking_id,
        )

    def candidate_times(self, day: date) -> list[datetime]:
        """Operating-day start times in the business timezone (end exclusive)."""
        current = datetime.combine(day, self.day_start, tzinfo=self.tz)
        end = datetime.combine(day, self.day_end, tzinfo=self.tz)
        out = []
        while current < end:
            out.append(current)
            current += self.interval
        return out

    def list_available_slots(
        self,
        day: date,
        booking_type: BookingType | str,
        showroom_id: str | None = None,
    ) -> list[SlotView]:
        booking_type = BookingType(booking_type)
        showroom = _showroom_scope(booking_type, showroom_id)

        candidates = self.candidate_times(day)
        if not candidates:
            return []
        start_utc = candidates[0].astimezone(timezone.utc)
        end_utc = (candidates[-1] + self.interval).astimezone(timezone.utc)

        taken = {}
        for b in self.bookings.list_active_between(start_utc, end_utc, booking_type.value, showroom):
            taken[as_utc(b.scheduled_date)] = b

        slots = []
        for local in candidates:
            instant = local.astimezone(timezone.utc)
            b = taken.get(instant)
            slots.append(SlotView(
                time=local.strftime("%H:%M"),
                scheduled_date=instant,
                available=b is None,
                booking_id=b.id if b else None,
                consultant_id=b.consultant_id if b else None,
                showroom_id=(b.showroom_id if b else showroom),
            ))
        return slots
