from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.core.enums import BookingStatus, BookingType
from app.models.booking import Booking
from app.services.clock import as_utc


class CustomerDetailsIn(BaseModel):
    name: str
    email: str  # plain str to allow .local and other dev domains
    phone: str = ""
    postcode: str = ""
    address: str = ""


class BookingCreate(BaseModel):
    customerId: str
    type: BookingType
    categories: List[str] = Field(default_factory=list)
    customerDetails: CustomerDetailsIn
    scheduledDate: datetime
    showroomId: Optional[str] = None
    notes: Optional[str] = None
    preferredPlatform: Optional[str] = None


class BookingStatusIn(BaseModel):
    status: BookingStatus


class BookingCancelIn(BaseModel):
    reason: str = ""


class BookingRescheduleIn(BaseModel):
    newDate: datetime


class ConsultantAssignIn(BaseModel):
    consultantId: str


class BookingOut(BaseModel):
    id: str
    bookingNumber: str
    customerId: str
    type: str
    categories: List[str]
    status: str
    scheduledDate: str
    showroomId: Optional[str] = None
    consultantId: Optional[str] = None
    customerName: str = ""
    customerEmail: str = ""
    customerPhone: str = ""
    postcode: str = ""
    address: str = ""
    notes: Optional[str] = None
    preferredPlatform: Optional[str] = None
    meetingLink: Optional[str] = None
    confirmedAt: Optional[str] = None
    completedAt: Optional[str] = None
    cancellationReason: Optional[str] = None
    cancelledBy: Optional[str] = None
    cancelledAt: Optional[str] = None
    previousScheduledDate: Optional[str] = None
    rescheduledAt: Optional[str] = None

    @classmethod
    def from_model(cls, b: Booking) -> "BookingOut":
        return cls(
            id=b.id,
            bookingNumber=b.booking_number,
            customerId=b.customer_id,
            type=b.type,
            categories=b.category_list,
            status=b.status,
            scheduledDate=_iso(b.scheduled_date),
            showroomId=b.showroom_id,
            consultantId=b.consultant_id,
            customerName=b.customer_name or "",
            customerEmail=b.customer_email or "",
            customerPhone=b.customer_phone or "",
            postcode=b.postcode or "",
            address=b.address or "",
            notes=b.notes,
            preferredPlatform=b.preferred_platform,
            meetingLink=b.meeting_link,
            confirmedAt=_iso(b.confirmed_at),
            completedAt=_iso(b.completed_at),
            cancellationReason=b.cancellation_reason,
            cancelledBy=b.cancelled_by,
            cancelledAt=_iso(b.cancelled_at),
            previousScheduledDate=_iso(b.previous_scheduled_date),
            rescheduledAt=_iso(b.rescheduled_at),
        )


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    totalPages: int


class BookingPage(BaseModel):
    data: List[BookingOut]
    pagination: Pagination


class SlotOut(BaseModel):
    time: str
    scheduledDate: str
    available: bool
    bookingId: Optional[str] = None
    consultantId: Optional[str] = None
    showroomId: Optional[str] = None


def _iso(dt: datetime | None) -> str | None:
    return as_utc(dt).isoformat() if dt else None
