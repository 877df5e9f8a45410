import logging

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.application.services.stripe_checkout_service import (
    CheckoutRequestData,
    create_billing_portal_session,
    create_checkout_session,
    verify_checkout_session,
)
from app.core.config import settings
from app.domain.errors import BillingProviderError, PortalUnavailable
from app.infrastructure.db.session import get_db
from app.integrations.stripe.client import BillingProviderClient
from app.interfaces.api.deps import CurrentMember, get_billing_client, get_current_member, get_optional_member

logger = logging.getLogger(__name__)

router = APIRouter(tags=["checkout"])


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    price_id: str | None = Field(default=None, alias="priceId")
    plan_id: str | None = Field(default=None, alias="planId")
    plan_name: str | None = Field(default=None, alias="planName")
    billing_cycle: str | None = Field(default=None, alias="billingCycle")
    plan_type: str | None = Field(default=None, alias="planType")
    selected_services: list[str] | None = Field(default=None, alias="selectedServices")


def _provider_error_response(exc: BillingProviderError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_502_BAD_GATEWAY, content={"error": str(exc)})


@router.post("/checkout", status_code=status.HTTP_200_OK)
def start_checkout(
    payload: CheckoutRequest,
    member: CurrentMember | None = Depends(get_optional_member),
    client: BillingProviderClient = Depends(get_billing_client),
):
    if not payload.price_id:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "priceId is required"})

    request = CheckoutRequestData(
        price_id=payload.price_id,
        plan_id=payload.plan_id,
        plan_name=payload.plan_name,
        billing_cycle=payload.billing_cycle,
        plan_type=payload.plan_type,
        selected_services=payload.selected_services,
    )
    try:
        result = create_checkout_session(
            client,
            settings,
            request,
            customer_email=member.email if member else None,
            user_id=member.user_id if member else None,
        )
    except BillingProviderError as exc:
        logger.error("checkout_session_failed price_id=%s error=%s", payload.price_id, exc)
        return _provider_error_response(exc)
    return {"url": result.checkout_url}


@router.get("/checkout/verify", status_code=status.HTTP_200_OK)
def verify_checkout(
    session_id: str | None = Query(default=None),
    client: BillingProviderClient = Depends(get_billing_client),
):
    if not session_id:
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "session_id is required"})
    try:
        return verify_checkout_session(client, session_id)
    except BillingProviderError as exc:
        logger.error("checkout_verify_failed session_id=%s error=%s", session_id, exc)
        return _provider_error_response(exc)


@router.post("/stripe/portal", status_code=status.HTTP_200_OK)
def open_billing_portal(
    member: CurrentMember = Depends(get_current_member),
    db: Session = Depends(get_db),
    client: BillingProviderClient = Depends(get_billing_client),
):
    try:
        result = create_billing_portal_session(db, client, settings, user_id=member.user_id)
    except PortalUnavailable as exc:
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc), "isManual": True})
    except BillingProviderError as exc:
        logger.error("portal_session_failed user_id=%s error=%s", member.user_id, exc)
        return _provider_error_response(exc)
    return {"url": result.portal_url}
