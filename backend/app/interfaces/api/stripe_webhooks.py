import logging

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.application.services.reconciliation_service import SubscriptionReconciler
from app.application.services.stripe_webhook_service import process_stripe_event
from app.core.config import settings
from app.domain.errors import VerificationError
from app.infrastructure.db.session import get_db
from app.infrastructure.observability.metrics import record_webhook_event
from app.integrations.stripe.signature import verify_webhook_event
from app.interfaces.api.deps import get_subscription_reconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/stripe", status_code=status.HTTP_200_OK)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
    reconciler: SubscriptionReconciler = Depends(get_subscription_reconciler),
):
    payload_bytes = await request.body()
    try:
        event = verify_webhook_event(
            payload_bytes=payload_bytes,
            signature_header=stripe_signature,
            secret=settings.stripe_webhook_secret,
            tolerance_seconds=settings.stripe_webhook_tolerance_seconds,
        )
    except VerificationError as exc:
        logger.warning("stripe_webhook_rejected error=%s", exc)
        record_webhook_event("unverified", "rejected")
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": f"Webhook Error: {exc}"})

    try:
        await run_in_threadpool(process_stripe_event, db, event, reconciler)
    except Exception as exc:
        logger.error("stripe_webhook_processing_failed event_id=%s event_type=%s error=%s", event.id, event.type, exc)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(exc)})
    return {"received": True}
