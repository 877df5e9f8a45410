from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from app.core.config import Settings
from app.domain.errors import BillingProviderError, BillingProviderNotFound, ProviderPayloadError
from app.infrastructure.observability.metrics import measure_stripe_call
from app.integrations.stripe.objects import ProviderCheckoutSession, ProviderSubscription

logger = logging.getLogger(__name__)

STRIPE_API_BASE = "https://api.stripe.com/v1"


def encode_form(params: dict[str, Any], prefix: str | None = None) -> dict[str, str]:
    """Flatten nested params into Stripe's bracketed form keys."""
    encoded: dict[str, str] = {}
    for key, value in params.items():
        full_key = f"{prefix}[{key}]" if prefix else str(key)
        if value is None:
            continue
        if isinstance(value, dict):
            encoded.update(encode_form(value, full_key))
        elif isinstance(value, (list, tuple)):
            for index, item in enumerate(value):
                item_key = f"{full_key}[{index}]"
                if isinstance(item, dict):
                    encoded.update(encode_form(item, item_key))
                else:
                    encoded[item_key] = str(item)
        elif isinstance(value, bool):
            encoded[full_key] = "true" if value else "false"
        else:
            encoded[full_key] = str(value)
    return encoded


class BillingProviderClient(ABC):
    @abstractmethod
    def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        raise NotImplementedError

    @abstractmethod
    def create_checkout_session(
        self,
        *,
        price_id: str,
        success_url: str,
        cancel_url: str,
        customer_email: str | None,
        metadata: dict[str, str],
    ) -> ProviderCheckoutSession:
        raise NotImplementedError

    @abstractmethod
    def retrieve_checkout_session(self, session_id: str) -> ProviderCheckoutSession:
        raise NotImplementedError

    @abstractmethod
    def create_billing_portal_session(
        self,
        *,
        customer_id: str,
        return_url: str,
        configuration: str | None = None,
    ) -> str:
        raise NotImplementedError


class StripeBillingClient(BillingProviderClient):
    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str = STRIPE_API_BASE,
        timeout: float = 20.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, *, transport: httpx.BaseTransport | None = None) -> StripeBillingClient:
        return cls(
            settings.stripe_api_key,
            base_url=settings.stripe_api_base_url,
            timeout=settings.stripe_timeout_seconds,
            transport=transport,
        )

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        params: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
    ) -> dict:
        if not self.api_key:
            raise BillingProviderError("Stripe is not configured", status_code=503)

        with measure_stripe_call(operation):
            try:
                with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                    response = client.request(
                        method,
                        f"{self.base_url}{path}",
                        headers=self._headers(),
                        params=encode_form(params) if params else None,
                        data=encode_form(data) if data else None,
                    )
            except httpx.HTTPError as exc:
                logger.error("stripe_request_failed operation=%s error=%s", operation, exc)
                raise BillingProviderError(f"Stripe {operation} request failed: {exc}") from exc

        if response.status_code == 404:
            raise BillingProviderNotFound(f"Stripe {operation}: resource not found", status_code=404)
        if response.status_code >= 400:
            logger.error(
                "stripe_request_rejected operation=%s status=%s body=%s",
                operation,
                response.status_code,
                response.text[:200],
            )
            raise BillingProviderError(
                f"Stripe {operation} error: {response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise ProviderPayloadError(f"Stripe {operation} returned a non-JSON body") from exc
        if not isinstance(body, dict):
            raise ProviderPayloadError(f"Stripe {operation} returned an unexpected body")
        return body

    def retrieve_subscription(self, subscription_id: str) -> ProviderSubscription:
        body = self._request("GET", f"/subscriptions/{subscription_id}", operation="subscription_retrieve")
        return ProviderSubscription.from_payload(body)

    def create_checkout_session(
        self,
        *,
        price_id: str,
        success_url: str,
        cancel_url: str,
        customer_email: str | None,
        metadata: dict[str, str],
    ) -> ProviderCheckoutSession:
        payload = {
            "mode": "subscription",
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "customer_email": customer_email,
            "metadata": metadata,
            "allow_promotion_codes": True,
            "billing_address_collection": "required",
            "subscription_data": {"metadata": metadata},
        }
        body = self._request("POST", "/checkout/sessions", operation="checkout_session_create", data=payload)
        session = ProviderCheckoutSession.from_payload(body)
        if not session.url:
            raise ProviderPayloadError("Stripe checkout response has no url")
        return session

    def retrieve_checkout_session(self, session_id: str) -> ProviderCheckoutSession:
        body = self._request("GET", f"/checkout/sessions/{session_id}", operation="checkout_session_retrieve")
        return ProviderCheckoutSession.from_payload(body)

    def create_billing_portal_session(
        self,
        *,
        customer_id: str,
        return_url: str,
        configuration: str | None = None,
    ) -> str:
        payload = {
            "customer": customer_id,
            "return_url": return_url,
            "configuration": configuration,
        }
        body = self._request("POST", "/billing_portal/sessions", operation="portal_session_create", data=payload)
        url = str(body.get("url") or "")
        if not url:
            raise ProviderPayloadError("Stripe portal response has no url")
        return url
