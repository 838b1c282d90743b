from datetime import date

from fastapi import APIRouter, Depends

from app.api.deps import get_availability, get_booking_service
from app.core.enums import BookingType
from app.schemas.booking import BookingCreate, BookingOut, SlotOut
from app.services.availability_service import SlotAvailabilityEngine
from app.services.booking_service import BookingService

router = APIRouter(tags=["public"])


@router.post("/public/bookings", response_model=BookingOut, status_code=201)
def create_public_booking(body: BookingCreate, svc: BookingService = Depends(get_booking_service)):
    booking = svc.create_booking(
        customer_id=body.customerId,
        booking_type=body.type,
        categories=body.categories,
        customer_details=body.customerDetails.model_dump(),
        scheduled_date=body.scheduledDate,
        showroom_id=body.showroomId,
        notes=body.notes,
        preferred_platform=body.preferredPlatform,
    )
    return BookingOut.from_model(booking)


@router.get("/public/availability")
def availability(
    date: date,
    type: BookingType,
    showroomId: str | None = None,
    engine: SlotAvailabilityEngine = Depends(get_availability),
):
    """Candidate slots for one operating day, with who (if anyone) holds each."""
    slots = engine.list_available_slots(date, type, showroomId)
    return {
        "date": date.isoformat(),
        "type": type.value,
        "items": [
            SlotOut(
                time=s.time,
                scheduledDate=s.scheduled_date.isoformat(),
                available=s.available,
                bookingId=s.booking_id,
                consultantId=s.consultant_id,
                showroomId=s.showroom_id,
            )
            for s in slots
        ],
    }
