from sqlalchemy import String, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime, timezone
from app.db.session import Base

class GatewayEventLog(Base):
    __tablename__ = "gateway_events"

    event_id: Mapped[str] = mapped_column(String(120), primary_key=True)  # gateway's evt_... id
    event_type: Mapped[str] = mapped_column(String(80), index=True)
    outcome: Mapped[str] = mapped_column(String(30), default="")  # processed, duplicate, skipped
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
