from datetime import datetime
from typing import Callable

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError
from sqlalchemy.orm import Session
from app.db.session import get_db
from app.core.config import settings
from app.core.security import decode_token
from app.models.user import User
from app.repositories.booking_store import SqlAlchemyBookingStore
from app.repositories.payment_store import SqlAlchemyOrderStore, SqlAlchemyPaymentStore
from app.services.availability_service import SlotAvailabilityEngine
from app.services.booking_service import BookingService
from app.services.clock import utcnow
from app.services.event_publisher import OutboxEventPublisher
from app.services.payment_gateway import PaymentGatewayClient, build_gateway_client
from app.services.payment_service import PaymentService
from app.services.webhook_reconciler import WebhookReconciler

bearer = HTTPBearer(auto_error=False)

BOOKING_ROLES = ("admin", "ops", "consultant")
PAYMENT_ROLES = ("admin", "ops", "finance")


def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(bearer),
    db: Session = Depends(get_db),
) -> User:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(creds.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    user = db.get(User, payload["sub"])
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    # tokens issued before a role change must be re-issued
    if payload["role"] != user.role:
        raise HTTPException(status_code=401, detail="Token role is out of date")
    return user


def require_roles(*roles: str):
    def _guard(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return user
    return _guard


def get_clock() -> Callable[[], datetime]:
    return utcnow


def get_gateway() -> PaymentGatewayClient:
    return build_gateway_client(settings)


def get_availability(db: Session = Depends(get_db)) -> SlotAvailabilityEngine:
    return SlotAvailabilityEngine.from_settings(SqlAlchemyBookingStore(db), settings)


def get_booking_service(
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> BookingService:
    return BookingService.from_settings(SqlAlchemyBookingStore(db), OutboxEventPublisher(db), settings, clock=clock)


def get_payment_service(
    db: Session = Depends(get_db),
    gateway: PaymentGatewayClient = Depends(get_gateway),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> PaymentService:
    return PaymentService.from_settings(
        SqlAlchemyPaymentStore(db),
        SqlAlchemyOrderStore(db),
        gateway,
        OutboxEventPublisher(db),
        settings,
        clock=clock,
    )


def get_webhook_reconciler(payments: PaymentService = Depends(get_payment_service)) -> WebhookReconciler:
    return WebhookReconciler(payments)
