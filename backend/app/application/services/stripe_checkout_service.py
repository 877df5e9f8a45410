from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.config import Settings
from app.domain.errors import ManualSubscription, NoActiveSubscription
from app.domain.models.subscription import Subscription, SubscriptionStatus
from app.integrations.stripe.client import BillingProviderClient

logger = logging.getLogger(__name__)

MANUAL_CUSTOMER_PREFIX = "manual_"
CHECKOUT_SESSION_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


@dataclass(frozen=True)
class CheckoutRequestData:
    price_id: str
    plan_id: str | None = None
    plan_name: str | None = None
    billing_cycle: str | None = None
    plan_type: str | None = None
    selected_services: list[str] | None = None


@dataclass(frozen=True)
class CheckoutSessionResult:
    checkout_url: str
    session_id: str


@dataclass(frozen=True)
class PortalSessionResult:
    portal_url: str


def _checkout_metadata(request: CheckoutRequestData, *, user_id: UUID | None) -> dict[str, str]:
    metadata = {
        "planId": request.plan_id,
        "planName": request.plan_name,
        "billingCycle": request.billing_cycle,
        "userId": str(user_id) if user_id else "",
    }
    if request.plan_type:
        metadata["planType"] = request.plan_type
    if request.selected_services:
        metadata["selectedServices"] = ",".join(request.selected_services)
    return {key: value for key, value in metadata.items() if value is not None}


def create_checkout_session(
    client: BillingProviderClient,
    settings: Settings,
    request: CheckoutRequestData,
    *,
    customer_email: str | None = None,
    user_id: UUID | None = None,
) -> CheckoutSessionResult:
    base_url = settings.site_base_url
    session = client.create_checkout_session(
        price_id=request.price_id,
        success_url=f"{base_url}/checkout/success?session_id={CHECKOUT_SESSION_PLACEHOLDER}",
        cancel_url=f"{base_url}/#pricing-section",
        customer_email=customer_email,
        metadata=_checkout_metadata(request, user_id=user_id),
    )
    logger.info("checkout_session_created session_id=%s price_id=%s user_id=%s", session.id, request.price_id, user_id)
    return CheckoutSessionResult(checkout_url=session.url or "", session_id=session.id)


def verify_checkout_session(client: BillingProviderClient, session_id: str) -> dict:
    session = client.retrieve_checkout_session(session_id)
    return {
        "status": session.status,
        "paymentStatus": session.payment_status,
        "planId": session.metadata.get("planId"),
        "planName": session.metadata.get("planName"),
        "billingCycle": session.metadata.get("billingCycle"),
        "customerEmail": session.customer_email,
        "amountTotal": session.amount_total,
    }


def create_billing_portal_session(
    db: Session,
    client: BillingProviderClient,
    settings: Settings,
    *,
    user_id: UUID,
) -> PortalSessionResult:
    subscription = db.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id, Subscription.status == SubscriptionStatus.ACTIVE.value)
        .order_by(Subscription.created_at.desc())
        .limit(1)
    ).scalar_one_or_none()
    if subscription is None:
        logger.info("portal_no_active_subscription user_id=%s", user_id)
        raise NoActiveSubscription(
            "No active subscription found. If your subscription was set up manually, please contact support."
        )

    customer_id = subscription.stripe_customer_id
    if not customer_id or customer_id.startswith(MANUAL_CUSTOMER_PREFIX):
        logger.info("portal_manual_subscription user_id=%s stripe_customer_id=%s", user_id, customer_id)
        raise ManualSubscription(
            "This subscription was created manually and cannot be managed through the billing portal. "
            "Please contact support to manage it."
        )

    url = client.create_billing_portal_session(
        customer_id=customer_id,
        return_url=f"{settings.site_base_url}/membro/conta",
        configuration=settings.stripe_portal_configuration_id or None,
    )
    return PortalSessionResult(portal_url=url)
