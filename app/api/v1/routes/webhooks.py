import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from app.api.deps import get_webhook_reconciler
from app.core.config import settings
from app.services.payment_gateway import verify_webhook_signature
from app.services.webhook_reconciler import WebhookReconciler

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

SIGNATURE_HEADER = "stripe-signature"


@router.post("/webhooks/payments")
async def payment_webhook(req: Request, reconciler: WebhookReconciler = Depends(get_webhook_reconciler)):
    """Gateway callback. Acknowledged with 200 once the signature checks out, whatever the outcome."""
    body = await req.body()
    if settings.webhook_verification_required:
        ok = verify_webhook_signature(
            req.headers.get(SIGNATURE_HEADER),
            body,
            settings.GATEWAY_WEBHOOK_SECRET,
            tolerance_seconds=settings.GATEWAY_WEBHOOK_TOLERANCE_SECONDS,
        )
        if not ok:
            raise HTTPException(status_code=400, detail="Invalid webhook signature")
    try:
        payload = json.loads(body.decode("utf-8") or "{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    result = reconciler.handle(payload)
    return {"ok": True, "result": result.as_dict()}
