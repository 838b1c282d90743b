import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

import requests
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.outbox_event import OutboxEvent
from app.services.ports import EventPublisher

logger = logging.getLogger(__name__)


class OutboxEventPublisher(EventPublisher):
    """Writes events into the outbox table inside the caller's transaction.

    The row is committed together with the state change that produced it;
    the worker relays it to the event sink afterwards.
    """

    def __init__(self, db: Session):
        self.db = db

    def publish(self, topic: str, payload: dict[str, Any]) -> None:
        self.db.add(
            OutboxEvent(
                id=str(uuid.uuid4()),
                topic=topic,
                payload_json=json.dumps(payload, ensure_ascii=False, default=str),
                status="queued",
            )
        )


def deliver_event(topic: str, payload_json: str) -> None:
    """POST to EVENT_SINK_URL if configured, otherwise just log the event."""
    if not settings.EVENT_SINK_URL:
        logger.info("event %s (no sink configured): %s", topic, payload_json)
        return

    r = requests.post(
        settings.EVENT_SINK_URL,
        data=json.dumps({"topic": topic, "payload": json.loads(payload_json)}),
        headers={"Content-Type": "application/json"},
        timeout=settings.EVENT_SINK_TIMEOUT_SECONDS,
    )
    if r.status_code >= 400:
        raise RuntimeError(f"Event sink error {r.status_code}: {r.text}")


def relay_pending_events(db: Session, limit: int = 100) -> dict:
    """Deliver up to `limit` queued or failed outbox events in creation order. Returns counts."""
    pending = (
        db.query(OutboxEvent)
        .filter(
            OutboxEvent.status.in_(["queued", "failed"]),
            OutboxEvent.attempts < settings.OUTBOX_MAX_ATTEMPTS,
        )
        .order_by(OutboxEvent.created_at.asc())
        .limit(limit)
        .all()
    )
    sent, failed = 0, 0
    for ev in pending:
        ev.attempts = (ev.attempts or 0) + 1
        try:
            deliver_event(ev.topic, ev.payload_json)
            ev.status = "sent"
            ev.sent_at = datetime.now(timezone.utc)
            ev.last_error = None
            sent += 1
        except Exception as e:
            logger.warning("outbox delivery failed for %s (%s): %s", ev.id, ev.topic, e)
            ev.status = "failed"
            ev.last_error = str(e)[:2000]
            failed += 1
    if pending:
        db.commit()
    return {"processed": len(pending), "sent": sent, "failed": failed}
