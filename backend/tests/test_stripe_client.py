from datetime import UTC, datetime
from urllib.parse import parse_qs

import httpx
import pytest

from app.domain.errors import BillingProviderError, BillingProviderNotFound, ProviderPayloadError
from app.integrations.stripe.client import StripeBillingClient, encode_form


def _subscription_body(**overrides) -> dict:
    body = {
        "id": "sub_123",
        "object": "subscription",
        "customer": "cus_123",
        "status": "active",
        "cancel_at_period_end": False,
        "canceled_at": None,
        "current_period_start": 1767225600,
        "current_period_end": 1769904000,
        "metadata": {"planId": "essential"},
        "items": {
            "data": [
                {
                    "id": "si_1",
                    "price": {"id": "price_A", "recurring": {"interval": "month"}},
                }
            ]
        },
    }
    body.update(overrides)
    return body


def _client(handler) -> StripeBillingClient:
    return StripeBillingClient(
        "sk_test_123",
        base_url="https://stripe.test/v1",
        transport=httpx.MockTransport(handler),
    )


def test_retrieve_subscription_maps_provider_fields():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json=_subscription_body())

    subscription = _client(handler).retrieve_subscription("sub_123")

    assert seen == {
        "method": "GET",
        "url": "https://stripe.test/v1/subscriptions/sub_123",
        "auth": "Bearer sk_test_123",
    }
    assert subscription.id == "sub_123"
    assert subscription.customer_id == "cus_123"
    assert subscription.status == "active"
    assert subscription.price_id == "price_A"
    assert subscription.price_interval == "month"
    assert subscription.current_period_start == datetime(2026, 1, 1, tzinfo=UTC)
    assert subscription.current_period_end == datetime(2026, 2, 1, tzinfo=UTC)
    assert subscription.canceled_at is None
    assert subscription.metadata == {"planId": "essential"}


def test_retrieve_subscription_reads_period_from_item_on_newer_api_versions():
    body = _subscription_body(current_period_start=None, current_period_end=None)
    body["items"]["data"][0].update(current_period_start=1767225600, current_period_end=1798761600)
    body["customer"] = {"id": "cus_expanded", "object": "customer"}

    subscription = _client(lambda request: httpx.Response(200, json=body)).retrieve_subscription("sub_123")

    assert subscription.customer_id == "cus_expanded"
    assert subscription.current_period_end == datetime(2027, 1, 1, tzinfo=UTC)


def test_subscription_without_period_is_a_payload_error():
    body = _subscription_body(current_period_start=None, current_period_end=None)

    with pytest.raises(ProviderPayloadError):
        _client(lambda request: httpx.Response(200, json=body)).retrieve_subscription("sub_123")


def test_not_found_maps_to_billing_provider_not_found():
    def handler(request):
        return httpx.Response(404, json={"error": {"message": "No such subscription"}})

    with pytest.raises(BillingProviderNotFound) as exc_info:
        _client(handler).retrieve_subscription("sub_missing")
    assert exc_info.value.status_code == 404


def test_server_error_maps_to_billing_provider_error():
    def handler(request):
        return httpx.Response(500, text="boom")

    with pytest.raises(BillingProviderError) as exc_info:
        _client(handler).retrieve_subscription("sub_123")
    assert exc_info.value.status_code == 500
    assert not isinstance(exc_info.value, BillingProviderNotFound)


def test_transport_failure_maps_to_billing_provider_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(BillingProviderError):
        _client(handler).retrieve_subscription("sub_123")


def test_missing_api_key_fails_without_calling_stripe():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=_subscription_body())

    client = StripeBillingClient(None, transport=httpx.MockTransport(handler))

    with pytest.raises(BillingProviderError) as exc_info:
        client.retrieve_subscription("sub_123")
    assert exc_info.value.status_code == 503
    assert calls == []


def test_create_checkout_session_sends_form_encoded_subscription_request():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["form"] = parse_qs(request.content.decode("utf-8"))
        return httpx.Response(200, json={"id": "cs_1", "url": "https://checkout.stripe.test/cs_1"})

    session = _client(handler).create_checkout_session(
        price_id="price_A",
        success_url="https://site.test/checkout/success?session_id={CHECKOUT_SESSION_ID}",
        cancel_url="https://site.test/#pricing-section",
        customer_email="a@x.com",
        metadata={"planId": "essential", "billingCycle": "monthly"},
    )

    form = seen["form"]
    assert seen["path"] == "/v1/checkout/sessions"
    assert form["mode"] == ["subscription"]
    assert form["line_items[0][price]"] == ["price_A"]
    assert form["line_items[0][quantity]"] == ["1"]
    assert form["payment_method_types[0]"] == ["card"]
    assert form["customer_email"] == ["a@x.com"]
    assert form["allow_promotion_codes"] == ["true"]
    assert form["billing_address_collection"] == ["required"]
    assert form["metadata[planId]"] == ["essential"]
    assert form["subscription_data[metadata][billingCycle]"] == ["monthly"]
    assert session.id == "cs_1"
    assert session.url == "https://checkout.stripe.test/cs_1"


def test_billing_portal_session_returns_url():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["form"] = parse_qs(request.content.decode("utf-8"))
        return httpx.Response(200, json={"id": "bps_1", "url": "https://billing.stripe.test/p/1"})

    url = _client(handler).create_billing_portal_session(
        customer_id="cus_123",
        return_url="https://site.test/membro/conta",
        configuration=None,
    )

    assert url == "https://billing.stripe.test/p/1"
    assert seen["form"] == {"customer": ["cus_123"], "return_url": ["https://site.test/membro/conta"]}


def test_encode_form_flattens_nested_values_and_skips_none():
    encoded = encode_form(
        {
            "mode": "subscription",
            "customer_email": None,
            "metadata": {"a": "1", "b": None},
            "items": [{"price": "p", "quantity": 2}],
            "flag": False,
        }
    )

    assert encoded == {
        "mode": "subscription",
        "metadata[a]": "1",
        "items[0][price]": "p",
        "items[0][quantity]": "2",
        "flag": "false",
    }
