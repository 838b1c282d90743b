from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import BOOKING_ROLES, get_booking_service, require_roles
from app.core.enums import BookingStatus
from app.db.session import get_db
from app.models.user import User
from app.schemas.booking import (
    BookingCancelIn,
    BookingOut,
    BookingPage,
    BookingRescheduleIn,
    BookingStatusIn,
    ConsultantAssignIn,
)
from app.services.audit_service import log_audit
from app.services.booking_service import BookingService

router = APIRouter(tags=["bookings"])


def _audit(db: Session, user: User, action: str, booking_id: str, details: dict | None = None) -> None:
    log_audit(db, actor_user_id=user.id, action=action, entity_type="booking", entity_id=booking_id, details=details)
    db.commit()


@router.get("/ops/bookings/stats")
def booking_stats(svc: BookingService = Depends(get_booking_service),
                  user: User = Depends(require_roles(*BOOKING_ROLES))):
    return svc.get_statistics()


@router.get("/ops/bookings/upcoming")
def upcoming_bookings(limit: int = 20,
                      svc: BookingService = Depends(get_booking_service),
                      user: User = Depends(require_roles(*BOOKING_ROLES))):
    return {"items": [BookingOut.from_model(b) for b in svc.list_upcoming_bookings(limit)]}


@router.get("/ops/bookings/{booking_id}", response_model=BookingOut)
def get_booking(booking_id: str,
                svc: BookingService = Depends(get_booking_service),
                user: User = Depends(require_roles(*BOOKING_ROLES))):
    return BookingOut.from_model(svc.get_booking(booking_id))


@router.get("/ops/customers/{customer_id}/bookings", response_model=BookingPage)
def customer_bookings(customer_id: str, status: BookingStatus | None = None, page: int = 1, limit: int = 10,
                      svc: BookingService = Depends(get_booking_service),
                      user: User = Depends(require_roles(*BOOKING_ROLES))):
    result = svc.list_customer_bookings(customer_id, status=status, page=page, limit=limit)
    return BookingPage(
        data=[BookingOut.from_model(b) for b in result["data"]],
        pagination=result["pagination"],
    )


@router.patch("/ops/bookings/{booking_id}/status", response_model=BookingOut)
def update_booking_status(booking_id: str, body: BookingStatusIn,
                          db: Session = Depends(get_db),
                          svc: BookingService = Depends(get_booking_service),
                          user: User = Depends(require_roles(*BOOKING_ROLES))):
    booking = svc.update_status(booking_id, body.status)
    _audit(db, user, "booking.status", booking.id, {"status": booking.status})
    return BookingOut.from_model(booking)


@router.post("/ops/bookings/{booking_id}/cancel", response_model=BookingOut)
def cancel_booking(booking_id: str, body: BookingCancelIn,
                   db: Session = Depends(get_db),
                   svc: BookingService = Depends(get_booking_service),
                   user: User = Depends(require_roles(*BOOKING_ROLES))):
    booking = svc.cancel_booking(booking_id, body.reason, cancelled_by=user.id)
    _audit(db, user, "booking.cancel", booking.id, {"reason": body.reason})
    return BookingOut.from_model(booking)


@router.post("/ops/bookings/{booking_id}/reschedule", response_model=BookingOut)
def reschedule_booking(booking_id: str, body: BookingRescheduleIn,
                       db: Session = Depends(get_db),
                       svc: BookingService = Depends(get_booking_service),
                       user: User = Depends(require_roles(*BOOKING_ROLES))):
    booking = svc.reschedule_booking(booking_id, body.newDate)
    _audit(db, user, "booking.reschedule", booking.id, {"newDate": body.newDate.isoformat()})
    return BookingOut.from_model(booking)


@router.post("/ops/bookings/{booking_id}/reminder")
def send_reminder(booking_id: str,
                  svc: BookingService = Depends(get_booking_service),
                  user: User = Depends(require_roles(*BOOKING_ROLES))):
    booking = svc.send_reminder(booking_id)
    return {"ok": True, "bookingId": booking.id}


@router.post("/ops/bookings/{booking_id}/consultant", response_model=BookingOut)
def assign_consultant(booking_id: str, body: ConsultantAssignIn,
                      db: Session = Depends(get_db),
                      svc: BookingService = Depends(get_booking_service),
                      user: User = Depends(require_roles("admin", "ops"))):
    booking = svc.assign_consultant(booking_id, body.consultantId)
    _audit(db, user, "booking.assign_consultant", booking.id, {"consultantId": body.consultantId})
    return BookingOut.from_model(booking)
