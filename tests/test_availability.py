"""Tests for slot availability."""

from datetime import date, datetime, timezone

import pytest

from app.core.exceptions import ValidationException
from app.services.availability_service import SlotAvailabilityEngine
from tests.conftest import SCENARIO_DATE, create_home_booking, customer_details


class TestIsAvailable:
    def test_empty_slot_is_available(self, availability):
        assert availability.is_available(SCENARIO_DATE, "HOME_MEASUREMENT")

    def test_active_booking_takes_the_slot(self, availability, booking_service):
        create_home_booking(booking_service)
        assert not availability.is_available(SCENARIO_DATE, "HOME_MEASUREMENT")

    def test_other_type_same_time_is_independent(self, availability, booking_service):
        create_home_booking(booking_service)
        assert availability.is_available(SCENARIO_DATE, "ONLINE")

    def test_excluded_booking_is_ignored(self, availability, booking_service):
        booking = create_home_booking(booking_service)
        assert availability.is_available(SCENARIO_DATE, "HOME_MEASUREMENT", exclude_booking_id=booking.id)

    def test_cancelled_booking_frees_the_slot(self, availability, booking_service):
        booking = create_home_booking(booking_service)
        booking_service.cancel_booking(booking.id, "Customer changed plans", "ops-1")
        assert availability.is_available(SCENARIO_DATE, "HOME_MEASUREMENT")

    def test_completed_booking_frees_the_slot(self, availability, booking_service):
        booking = create_home_booking(booking_service)
        booking_service.update_status(booking.id, "CONFIRMED")
        booking_service.update_status(booking.id, "COMPLETED")
        assert availability.is_available(SCENARIO_DATE, "HOME_MEASUREMENT")

    def test_showroom_compared_only_for_showroom_bookings(self, availability, booking_service):
        booking_service.create_booking(
            "cust-2", "SHOWROOM", ["KITCHEN"], customer_details(), SCENARIO_DATE, showroom_id="room-a",
        )
        assert not availability.is_available(SCENARIO_DATE, "SHOWROOM", "room-a")
        assert availability.is_available(SCENARIO_DATE, "SHOWROOM", "room-b")

    def test_naive_datetime_is_treated_as_utc(self, availability, booking_service):
        create_home_booking(booking_service)
        assert not availability.is_available(datetime(2026, 3, 15, 10, 0), "HOME_MEASUREMENT")


class TestListAvailableSlots:
    def test_operating_day_defaults(self, availability):
        slots = availability.list_available_slots(date(2026, 3, 15), "HOME_MEASUREMENT")
        assert [s.time for s in slots] == ["09:00", "10:00", "11:00", "12:00", "13:00", "14:00", "15:00", "16:00"]
        assert all(s.available for s in slots)

    def test_booked_slot_reports_booking(self, availability, booking_service):
        booking = create_home_booking(booking_service)
        slots = {s.time: s for s in availability.list_available_slots(date(2026, 3, 15), "HOME_MEASUREMENT")}
        assert not slots["10:00"].available
        assert slots["10:00"].booking_id == booking.id
        assert slots["11:00"].available

    def test_times_are_local_and_instants_utc(self, booking_store):
        # London is on BST in June, so 09:00 local is 08:00Z
        engine = SlotAvailabilityEngine(booking_store, business_timezone="Europe/London")
        first = engine.list_available_slots(date(2026, 6, 1), "ONLINE")[0]
        assert first.time == "09:00"
        assert first.scheduled_date == datetime(2026, 6, 1, 8, 0, tzinfo=timezone.utc)

    def test_custom_interval(self, booking_store):
        engine = SlotAvailabilityEngine(booking_store, day_start="10:00", day_end="12:00", interval_minutes=30)
        times = [s.time for s in engine.list_available_slots(date(2026, 3, 15), "ONLINE")]
        assert times == ["10:00", "10:30", "11:00", "11:30"]

    def test_interval_must_be_positive(self, booking_store):
        with pytest.raises(ValueError):
            SlotAvailabilityEngine(booking_store, interval_minutes=0)


class TestShowroomSlots:
    @pytest.fixture
    def room_a_booking(self, booking_service):
        return booking_service.create_booking(
            "cust-2", "SHOWROOM", ["BEDROOM"], customer_details(), SCENARIO_DATE, showroom_id="room-a",
        )

    def test_listing_is_per_showroom(self, availability, room_a_booking):
        room_a = {s.time: s for s in availability.list_available_slots(date(2026, 3, 15), "SHOWROOM", "room-a")}
        room_b = {s.time: s for s in availability.list_available_slots(date(2026, 3, 15), "SHOWROOM", "room-b")}
        assert room_a["10:00"].available is False
        assert room_a["10:00"].booking_id == room_a_booking.id
        assert room_b["10:00"].available is True
        assert room_b["10:00"].showroom_id == "room-b"

    def test_listing_requires_showroom(self, availability, room_a_booking):
        with pytest.raises(ValidationException) as exc:
            availability.list_available_slots(date(2026, 3, 15), "SHOWROOM")
        assert exc.value.code == "SHOWROOM_REQUIRED"

    def test_check_requires_showroom(self, availability):
        with pytest.raises(ValidationException):
            availability.is_available(SCENARIO_DATE, "SHOWROOM")
