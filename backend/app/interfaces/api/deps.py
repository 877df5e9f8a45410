from dataclasses import dataclass
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.application.services.plan_resolver import PricePlanResolver
from app.application.services.reconciliation_service import SubscriptionReconciler
from app.application.services.subscriber_resolver import SubscriberResolver
from app.core.config import settings
from app.core.security import decode_access_token, user_id_from_claims
from app.infrastructure.db.session import get_db
from app.infrastructure.db.subscription_store import SqlAlchemySubscriptionStore
from app.integrations.stripe.client import BillingProviderClient, StripeBillingClient

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentMember:
    user_id: UUID
    email: str | None = None


def _member_from_token(token: str) -> CurrentMember:
    try:
        claims = decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    try:
        user_id = user_id_from_claims(claims)
    except (KeyError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token payload") from exc

    email = claims.get("email")
    return CurrentMember(user_id=user_id, email=str(email) if email else None)


def get_current_member(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> CurrentMember:
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return _member_from_token(credentials.credentials)


def get_optional_member(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> CurrentMember | None:
    # Checkout is open to anonymous visitors; a bad token just means no prefill.
    if credentials is None or not credentials.credentials:
        return None
    try:
        return _member_from_token(credentials.credentials)
    except HTTPException:
        return None


def get_billing_client() -> BillingProviderClient:
    return StripeBillingClient.from_settings(settings)


def get_plan_resolver() -> PricePlanResolver:
    return PricePlanResolver.from_settings(settings)


def get_subscription_reconciler(
    db: Session = Depends(get_db),
    billing_client: BillingProviderClient = Depends(get_billing_client),
    plan_resolver: PricePlanResolver = Depends(get_plan_resolver),
) -> SubscriptionReconciler:
    return SubscriptionReconciler(
        billing_client=billing_client,
        store=SqlAlchemySubscriptionStore(db),
        plan_resolver=plan_resolver,
        subscriber_resolver=SubscriberResolver(db),
    )
