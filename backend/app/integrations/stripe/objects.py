from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

from app.domain.errors import ProviderPayloadError


def from_unix(value) -> datetime | None:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=UTC)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _object_id(value) -> str | None:
    # Expandable fields arrive either as an id string or as the expanded object.
    if isinstance(value, dict):
        value = value.get("id")
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _first_item(payload: dict) -> dict:
    items = (payload.get("items") or {}).get("data") or []
    if items and isinstance(items[0], dict):
        return items[0]
    return {}


def _string_metadata(raw) -> dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    return {str(key): str(value) for key, value in raw.items() if value is not None}


@dataclass(frozen=True)
class ProviderSubscription:
    """Subset of a Stripe Subscription object the reconciliation writes from."""

    id: str
    customer_id: str
    status: str
    price_id: str | None
    price_interval: str | None
    current_period_start: datetime
    current_period_end: datetime
    cancel_at_period_end: bool = False
    canceled_at: datetime | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict) -> ProviderSubscription:
        subscription_id = _object_id(payload.get("id"))
        if not subscription_id:
            raise ProviderPayloadError("Subscription payload is missing 'id'")

        customer_id = _object_id(payload.get("customer"))
        if not customer_id:
            raise ProviderPayloadError(f"Subscription {subscription_id} is missing 'customer'")

        status = str(payload.get("status") or "").strip()
        if not status:
            raise ProviderPayloadError(f"Subscription {subscription_id} is missing 'status'")

        item = _first_item(payload)
        price = item.get("price") if isinstance(item.get("price"), dict) else {}
        recurring = price.get("recurring") if isinstance(price.get("recurring"), dict) else {}

        # Newer API versions moved the billing period onto the subscription item.
        period_start = from_unix(payload.get("current_period_start") or item.get("current_period_start"))
        period_end = from_unix(payload.get("current_period_end") or item.get("current_period_end"))
        if period_start is None or period_end is None:
            raise ProviderPayloadError(f"Subscription {subscription_id} is missing its current billing period")

        return cls(
            id=subscription_id,
            customer_id=customer_id,
            status=status,
            price_id=_object_id(price.get("id")) if price else _object_id(item.get("price")),
            price_interval=str(recurring["interval"]) if recurring.get("interval") else None,
            current_period_start=period_start,
            current_period_end=period_end,
            cancel_at_period_end=bool(payload.get("cancel_at_period_end", False)),
            canceled_at=from_unix(payload.get("canceled_at")),
            metadata=_string_metadata(payload.get("metadata")),
        )


@dataclass(frozen=True)
class ProviderCheckoutSession:
    id: str
    url: str | None
    status: str | None
    payment_status: str | None
    customer_email: str | None
    amount_total: int | None
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict) -> ProviderCheckoutSession:
        session_id = _object_id(payload.get("id"))
        if not session_id:
            raise ProviderPayloadError("Checkout session payload is missing 'id'")
        customer_details = payload.get("customer_details") if isinstance(payload.get("customer_details"), dict) else {}
        amount_total = payload.get("amount_total")
        return cls(
            id=session_id,
            url=payload.get("url"),
            status=payload.get("status"),
            payment_status=payload.get("payment_status"),
            customer_email=payload.get("customer_email") or customer_details.get("email"),
            amount_total=int(amount_total) if isinstance(amount_total, int) else None,
            metadata=_string_metadata(payload.get("metadata")),
        )
