from sqlalchemy import String, Integer, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base

class Booking(Base):
    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    booking_number: Mapped[str] = mapped_column(String(20), unique=True, index=True)

    customer_id: Mapped[str] = mapped_column(String(36), index=True)
    type: Mapped[str] = mapped_column(String(20), index=True)  # HOME_MEASUREMENT|ONLINE|SHOWROOM
    categories: Mapped[str] = mapped_column(String(120))  # comma-separated, e.g. KITCHEN,BEDROOM
    status: Mapped[str] = mapped_column(String(20), default="PENDING", index=True)  # PENDING, CONFIRMED, COMPLETED, CANCELLED

    scheduled_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    showroom_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    consultant_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    # TYPE|scheduled UTC iso|showroom-or-dash while active, NULL once terminal.
    # Unique so two active bookings can never share a slot.
    active_slot_key: Mapped[str | None] = mapped_column(String(120), unique=True, nullable=True)

    customer_name: Mapped[str] = mapped_column(String(200), default="")
    customer_email: Mapped[str] = mapped_column(String(320), default="")
    customer_phone: Mapped[str] = mapped_column(String(40), default="")
    postcode: Mapped[str] = mapped_column(String(16), default="")
    address: Mapped[str] = mapped_column(String(500), default="")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    preferred_platform: Mapped[str | None] = mapped_column(String(40), nullable=True)
    meeting_link: Mapped[str | None] = mapped_column(String(500), nullable=True)

    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    cancellation_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    previous_scheduled_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rescheduled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def category_list(self) -> list[str]:
        return [c for c in (self.categories or "").split(",") if c]


def make_slot_key(scheduled_date: datetime, booking_type: str, showroom_id: str | None) -> str:
    """Identity of a slot: TYPE|UTC instant|showroom. Showroom only counts for SHOWROOM bookings."""
    booking_type = getattr(booking_type, "value", booking_type)
    if scheduled_date.tzinfo is None:
        scheduled_date = scheduled_date.replace(tzinfo=timezone.utc)
    instant = scheduled_date.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    room = showroom_id if booking_type == "SHOWROOM" and showroom_id else "-"
    return f"{booking_type}|{instant}|{room}"
