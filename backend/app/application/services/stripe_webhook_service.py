from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.application.services.reconciliation_service import ReconcileOutcome, SubscriptionReconciler
from app.domain.models.stripe_event import StripeEvent, StripeEventStatus
from app.infrastructure.logging.context import reset_stripe_event_id, set_stripe_event_id
from app.infrastructure.observability.metrics import record_webhook_event
from app.integrations.stripe.signature import VerifiedEvent

logger = logging.getLogger(__name__)


def _mark_failed(db: Session, stripe_event: StripeEvent, exc: Exception) -> None:
    db.rollback()
    stripe_event.status = StripeEventStatus.ERROR.value
    stripe_event.error = str(exc)[:4000]
    stripe_event.processed_at = datetime.now(UTC)
    try:
        db.add(stripe_event)
        db.commit()
    except SQLAlchemyError as ledger_exc:
        db.rollback()
        logger.error("stripe_event_ledger_update_failed event_id=%s error=%s", stripe_event.stripe_event_id, ledger_exc)


def process_stripe_event(db: Session, event: VerifiedEvent, reconciler: SubscriptionReconciler) -> dict:
    """
    Record the delivery in the ``stripe_events`` ledger and reconcile it.

    An event id already marked ``processed`` is acknowledged without touching
    the subscription tables. Exceptions from the reconciler are stored on the
    ledger row and re-raised so the caller answers with a 5xx and Stripe
    retries the delivery.
    """
    token = set_stripe_event_id(event.id)
    try:
        existing = db.execute(select(StripeEvent).where(StripeEvent.stripe_event_id == event.id)).scalar_one_or_none()
        if existing is not None and existing.status == StripeEventStatus.PROCESSED.value:
            logger.info("stripe_webhook_duplicate event_id=%s event_type=%s", event.id, event.type)
            record_webhook_event(event.type, "duplicate")
            return {"received": True, "deduplicated": True, "stripe_event_id": event.id}

        stripe_event = existing or StripeEvent(stripe_event_id=event.id, event_type=event.type)
        stripe_event.event_type = event.type
        stripe_event.status = StripeEventStatus.PROCESSING.value
        stripe_event.error = None
        db.add(stripe_event)
        db.commit()

        try:
            result = reconciler.reconcile(event)
        except Exception as exc:
            logger.exception("stripe_webhook_failed event_id=%s event_type=%s", event.id, event.type)
            _mark_failed(db, stripe_event, exc)
            record_webhook_event(event.type, "error")
            raise

        # Only applied events are final; skipped ones may resolve on a manual resend.
        if result.outcome == ReconcileOutcome.APPLIED:
            stripe_event.status = StripeEventStatus.PROCESSED.value
        else:
            stripe_event.status = StripeEventStatus.IGNORED.value
            stripe_event.error = result.reason
        stripe_event.processed_at = datetime.now(UTC)
        db.add(stripe_event)
        db.commit()
        record_webhook_event(event.type, result.outcome.value)
        return {
            "received": True,
            "outcome": result.outcome.value,
            "reason": result.reason,
            "stripe_event_id": event.id,
        }
    finally:
        reset_stripe_event_id(token)
