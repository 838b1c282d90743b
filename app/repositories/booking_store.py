from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.enums import ACTIVE_BOOKING_STATUSES, BookingType
from app.core.exceptions import ConcurrentUpdateException, SlotConflictException
from app.models.booking import Booking, make_slot_key
from app.services.ports import BookingStore

logger = logging.getLogger(__name__)

_ACTIVE = [s.value for s in ACTIVE_BOOKING_STATUSES]


class SqlAlchemyBookingStore(BookingStore):
    def __init__(self, db: Session):
        self.db = db

    def get(self, booking_id: str) -> Booking | None:
        return self.db.get(Booking, booking_id)

    def add(self, booking: Booking) -> Booking:
        self.db.add(booking)
        self._flush(booking)
        return booking

    def save(self, booking: Booking) -> Booking:
        self._flush(booking)
        return booking

    def _flush(self, booking: Booking) -> None:
        try:
            self.db.flush()
        except IntegrityError as e:
            self.db.rollback()
            if "active_slot_key" in str(e.orig):
                logger.info("slot uniqueness rejected booking %s (%s)", booking.id, booking.active_slot_key)
                raise SlotConflictException(
                    "Selected time slot is not available",
                    code="SLOT_CONFLICT",
                    details={"bookingId": booking.id},
                ) from e
            raise
        except StaleDataError as e:
            self.db.rollback()
            raise ConcurrentUpdateException(
                "Booking was modified concurrently, please retry",
                code="BOOKING_CONCURRENT_UPDATE",
                details={"bookingId": booking.id},
            ) from e

    def exists_active_in_slot(
        self,
        scheduled_date: datetime,
        booking_type: str,
        showroom_id: str | None = None,
        exclude_booking_id: str | None = None,
    ) -> bool:
        # active_slot_key is only set while a booking is PENDING/CONFIRMED
        stmt = select(Booking.id).where(
            Booking.active_slot_key == make_slot_key(scheduled_date, booking_type, showroom_id)
        )
        if exclude_booking_id:
            stmt = stmt.where(Booking.id != exclude_booking_id)
        return self.db.execute(stmt.limit(1)).first() is not None

    def list_active_between(
        self,
        start: datetime,
        end: datetime,
        booking_type: str,
        showroom_id: str | None = None,
    ) -> list[Booking]:
        booking_type = BookingType(booking_type).value
        stmt = select(Booking).where(
            Booking.status.in_(_ACTIVE),
            Booking.type == booking_type,
            Booking.scheduled_date >= start,
            Booking.scheduled_date < end,
        )
        if booking_type == BookingType.SHOWROOM.value and showroom_id:
            stmt = stmt.where(Booking.showroom_id == showroom_id)
        return list(self.db.execute(stmt.order_by(Booking.scheduled_date.asc())).scalars())

    def list_by_customer(
        self, customer_id: str, status: str | None, offset: int, limit: int
    ) -> tuple[list[Booking], int]:
        where = [Booking.customer_id == customer_id]
        if status:
            where.append(Booking.status == status)
        total = self.db.execute(select(func.count(Booking.id)).where(*where)).scalar_one()
        items = self.db.execute(
            select(Booking).where(*where).order_by(Booking.scheduled_date.desc()).offset(offset).limit(limit)
        ).scalars()
        return list(items), int(total)

    def list_upcoming(self, after: datetime, limit: int) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.status.in_(_ACTIVE), Booking.scheduled_date > after)
            .order_by(Booking.scheduled_date.asc())
            .limit(limit)
        )
        return list(self.db.execute(stmt).scalars())

    def count_by_status(self) -> dict[str, int]:
        rows = self.db.execute(select(Booking.status, func.count(Booking.id)).group_by(Booking.status)).all()
        return {status: int(n) for status, n in rows}

    def number_exists(self, booking_number: str) -> bool:
        return self.db.execute(
            select(Booking.id).where(Booking.booking_number == booking_number).limit(1)
        ).first() is not None

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
