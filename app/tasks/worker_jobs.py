import logging

from sqlalchemy.orm import Session
from sqlalchemy.exc import OperationalError, ProgrammingError

from app.db.session import SessionLocal
from app.services.event_publisher import relay_pending_events

logger = logging.getLogger(__name__)


def relay_outbox(limit: int = 100, db: Session | None = None) -> dict:
    """Deliver queued/failed outbox events. Run periodically via Celery beat."""
    own_session = db is None
    if own_session:
        db = SessionLocal()
    try:
        try:
            result = relay_pending_events(db, limit=limit)
        except (ProgrammingError, OperationalError):
            # DB not migrated yet; don't crash the worker.
            db.rollback()
            return {"skipped": True, "reason": "missing_tables"}
        if result["processed"]:
            logger.info("outbox relay: %s", result)
        return result
    finally:
        if own_session:
            db.close()
