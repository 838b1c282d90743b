import logging
import os
import uuid

from sqlalchemy.orm import Session
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, ProgrammingError

from app.db.session import SessionLocal
from app.core.security import hash_password
from app.models.user import User

logger = logging.getLogger(__name__)


def ensure_user(db: Session, email: str, password: str, role: str, name: str) -> bool:
    u = db.query(User).filter(User.email == email).first()
    if u:
        return False
    db.add(
        User(
            id=str(uuid.uuid4()),
            email=email,
            full_name=name,
            role=role,
            password_hash=hash_password(password),
            is_active=True,
        )
    )
    db.commit()
    return True


def run(db=None):
    own_session = db is None
    if own_session:
        db = SessionLocal()
    try:
        # If migrations haven't been applied yet, seeding must not crash the API.
        try:
            db.execute(text("SELECT 1 FROM users LIMIT 1"))
        except (ProgrammingError, OperationalError):
            db.rollback()
            logger.warning("users table not found yet. Skipping seeding (run alembic upgrade head).")
            return

        domain = os.getenv("SEED_EMAIL_DOMAIN", "example.co.uk")
        created = 0
        for role, password in (
            ("admin", "admin12345"),
            ("ops", "ops12345"),
            ("finance", "finance12345"),
            ("consultant", "consultant12345"),
        ):
            created += ensure_user(db, f"{role}@{domain}", password, role, role.capitalize())
        logger.info("seeded %s staff user(s)", created)
    finally:
        if own_session:
            db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run()
