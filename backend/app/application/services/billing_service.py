from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.domain.models.service_subscription import ServiceSubscription
from app.domain.models.subscription import Subscription, SubscriptionStatus

SERVICE_VISIBLE_STATUSES = (SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def serialize_subscription(subscription: Subscription) -> dict:
    return {
        "id": str(subscription.id),
        "plan_id": subscription.plan_id,
        "billing_cycle": subscription.billing_cycle,
        "status": subscription.status,
        "stripe_price_id": subscription.stripe_price_id,
        "stripe_subscription_id": subscription.stripe_subscription_id,
        "current_period_start": _iso(subscription.current_period_start),
        "current_period_end": _iso(subscription.current_period_end),
        "cancel_at_period_end": bool(subscription.cancel_at_period_end),
        "canceled_at": _iso(subscription.canceled_at),
        # Portal access is only possible for customers Stripe knows about.
        "is_manual": not subscription.stripe_customer_id or subscription.stripe_customer_id.startswith("manual_"),
    }


def serialize_service_subscription(subscription: ServiceSubscription) -> dict:
    return {
        "id": str(subscription.id),
        "plan_id": subscription.plan_id,
        "plan_name": subscription.plan_name,
        "selected_services": list(subscription.selected_services or []),
        "billing_cycle": subscription.billing_cycle,
        "status": subscription.status,
        "stripe_subscription_id": subscription.stripe_subscription_id,
        "current_period_start": _iso(subscription.current_period_start),
        "current_period_end": _iso(subscription.current_period_end),
    }


def get_member_billing_payload(db: Session, *, user_id: UUID) -> dict:
    subscription = db.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .order_by(Subscription.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()
    services = db.execute(
        select(ServiceSubscription)
        .where(
            ServiceSubscription.user_id == user_id,
            ServiceSubscription.status.in_(SERVICE_VISIBLE_STATUSES),
        )
        .order_by(ServiceSubscription.created_at.desc())
    ).scalars().all()
    return {
        "subscription": serialize_subscription(subscription) if subscription else None,
        "service_subscriptions": [serialize_service_subscription(item) for item in services],
    }
