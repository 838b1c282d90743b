from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import PAYMENT_ROLES, get_payment_service, require_roles
from app.db.session import get_db
from app.models.user import User
from app.schemas.payments import PaymentCancelIn, PaymentIntentCreate, PaymentIntentOut, PaymentOut, RefundIn
from app.services.audit_service import log_audit
from app.services.payment_service import PaymentService

router = APIRouter(tags=["payments"])


@router.post("/public/payments/intents", response_model=PaymentIntentOut, status_code=201)
def create_payment_intent(body: PaymentIntentCreate, svc: PaymentService = Depends(get_payment_service)):
    payment = svc.create_payment_intent(
        order_id=body.orderId,
        amount=body.amount,
        currency=body.currency,
        method=body.method,
        customer_id=body.customerId,
    )
    return PaymentIntentOut.from_model(payment)


@router.post("/public/payments/{payment_id}/confirm", response_model=PaymentOut)
def confirm_payment(payment_id: str, svc: PaymentService = Depends(get_payment_service)):
    return PaymentOut.from_model(svc.confirm_payment(payment_id))


@router.get("/ops/payments/stats")
def payment_stats(svc: PaymentService = Depends(get_payment_service),
                  user: User = Depends(require_roles(*PAYMENT_ROLES))):
    return svc.get_statistics()


@router.get("/ops/payments/{payment_id}", response_model=PaymentOut)
def get_payment(payment_id: str,
                svc: PaymentService = Depends(get_payment_service),
                user: User = Depends(require_roles(*PAYMENT_ROLES))):
    return PaymentOut.from_model(svc.get_payment(payment_id))


@router.post("/ops/payments/{payment_id}/cancel", response_model=PaymentOut)
def cancel_payment(payment_id: str, body: PaymentCancelIn,
                   db: Session = Depends(get_db),
                   svc: PaymentService = Depends(get_payment_service),
                   user: User = Depends(require_roles(*PAYMENT_ROLES))):
    payment = svc.cancel_payment(payment_id, body.reason, cancelled_by=user.id)
    log_audit(db, actor_user_id=user.id, action="payment.cancel", entity_type="payment", entity_id=payment.id,
              details={"reason": body.reason})
    db.commit()
    return PaymentOut.from_model(payment)


@router.post("/ops/payments/{payment_id}/refund", response_model=PaymentOut)
def refund_payment(payment_id: str, body: RefundIn,
                   db: Session = Depends(get_db),
                   svc: PaymentService = Depends(get_payment_service),
                   user: User = Depends(require_roles("admin", "finance"))):
    payment = svc.create_refund(payment_id, body.amount, body.reason, requested_by=user.id)
    log_audit(db, actor_user_id=user.id, action="payment.refund", entity_type="payment", entity_id=payment.id,
              details={"amount": str(body.amount), "reason": body.reason})
    db.commit()
    return PaymentOut.from_model(payment)


@router.post("/ops/payments/{payment_id}/retry", response_model=PaymentIntentOut)
def retry_payment(payment_id: str,
                  db: Session = Depends(get_db),
                  svc: PaymentService = Depends(get_payment_service),
                  user: User = Depends(require_roles(*PAYMENT_ROLES))):
    payment = svc.retry_failed_payment(payment_id)
    log_audit(db, actor_user_id=user.id, action="payment.retry", entity_type="payment", entity_id=payment.id,
              details={"retryCount": payment.retry_count})
    db.commit()
    return PaymentIntentOut.from_model(payment)
