"""
Applies verified Stripe events to the local subscription tables.

Every effect is an upsert or a keyed update on ``stripe_subscription_id``, so
replaying an event converges on the same row state. Anything that cannot be
attributed (unknown price, unknown member, missing ids) is logged and skipped
rather than raised, because Stripe retrying would not make it resolvable.
"""
from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from app.application.services.plan_resolver import PricePlanResolver, billing_cycle_for_interval
from app.application.services.subscriber_resolver import SubscriberResolver
from app.domain.errors import BillingProviderNotFound, ProviderPayloadError, StoreWriteError
from app.domain.models.service_subscription import SERVICE_PLAN_TYPE
from app.domain.models.subscription import BillingCycle, SubscriptionStatus, normalize_subscription_status
from app.infrastructure.db.subscription_store import SqlAlchemySubscriptionStore
from app.integrations.stripe.client import BillingProviderClient
from app.integrations.stripe.objects import ProviderSubscription
from app.integrations.stripe.signature import VerifiedEvent

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAID = "invoice.paid"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"

DEFAULT_SERVICE_PLAN_ID = "service"


class ReconcileOutcome(StrEnum):
    APPLIED = "applied"
    SKIPPED = "skipped"
    IGNORED = "ignored"


@dataclass(frozen=True)
class ReconcileResult:
    outcome: ReconcileOutcome
    reason: str | None = None
    stripe_subscription_id: str | None = None

    @classmethod
    def applied(cls, stripe_subscription_id: str, reason: str | None = None) -> ReconcileResult:
        return cls(ReconcileOutcome.APPLIED, reason, stripe_subscription_id)

    @classmethod
    def skipped(cls, reason: str, stripe_subscription_id: str | None = None) -> ReconcileResult:
        return cls(ReconcileOutcome.SKIPPED, reason, stripe_subscription_id)


def _object_id(value) -> str | None:
    if isinstance(value, dict):
        value = value.get("id")
    text = str(value or "").strip()
    return text or None


def _metadata(raw) -> dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    return {str(key): str(value) for key, value in raw.items() if value is not None}


def parse_selected_services(raw: str | None) -> list[str]:
    """Accepts a JSON array or a comma separated list, as checkout metadata allows both."""
    text = (raw or "").strip()
    if not text:
        return []
    if text.startswith("["):
        try:
            decoded = json.loads(text)
        except json.JSONDecodeError:
            decoded = None
        if isinstance(decoded, list):
            return [str(item).strip() for item in decoded if str(item).strip()]
    return [item.strip() for item in text.split(",") if item.strip()]


def invoice_subscription_id(invoice: dict) -> str | None:
    subscription_id = _object_id(invoice.get("subscription"))
    if subscription_id:
        return subscription_id
    # API versions from 2025 nest it under the invoice parent.
    parent = invoice.get("parent") if isinstance(invoice.get("parent"), dict) else {}
    details = parent.get("subscription_details") if isinstance(parent.get("subscription_details"), dict) else {}
    return _object_id(details.get("subscription"))


def _status(subscription: ProviderSubscription) -> str:
    try:
        return normalize_subscription_status(subscription.status).value
    except ValueError as exc:
        raise ProviderPayloadError(
            f"Subscription {subscription.id} has unsupported status '{subscription.status}'"
        ) from exc


def _period_fields(subscription: ProviderSubscription) -> dict[str, Any]:
    return {
        "current_period_start": subscription.current_period_start,
        "current_period_end": subscription.current_period_end,
    }


class SubscriptionReconciler:
    def __init__(
        self,
        billing_client: BillingProviderClient,
        store: SqlAlchemySubscriptionStore,
        plan_resolver: PricePlanResolver,
        subscriber_resolver: SubscriberResolver,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.billing_client = billing_client
        self.store = store
        self.plan_resolver = plan_resolver
        self.subscriber_resolver = subscriber_resolver
        self.clock = clock or (lambda: datetime.now(UTC))
        self._handlers: dict[str, Callable[[dict], ReconcileResult]] = {
            CHECKOUT_COMPLETED: self._checkout_completed,
            SUBSCRIPTION_CREATED: self._subscription_changed,
            SUBSCRIPTION_UPDATED: self._subscription_changed,
            SUBSCRIPTION_DELETED: self._subscription_deleted,
            INVOICE_PAID: self._invoice_paid,
            INVOICE_PAYMENT_FAILED: self._invoice_payment_failed,
        }

    def handles(self, event_type: str) -> bool:
        return event_type in self._handlers

    def reconcile(self, event: VerifiedEvent) -> ReconcileResult:
        handler = self._handlers.get(event.type)
        if handler is None:
            logger.info("stripe_webhook_unhandled event_type=%s event_id=%s", event.type, event.id)
            return ReconcileResult(ReconcileOutcome.IGNORED, "unhandled_event_type")
        result = handler(event.data_object)
        logger.info(
            "stripe_webhook_reconciled event_type=%s event_id=%s outcome=%s reason=%s stripe_subscription_id=%s",
            event.type,
            event.id,
            result.outcome.value,
            result.reason,
            result.stripe_subscription_id,
        )
        return result

    def _checkout_completed(self, session: dict) -> ReconcileResult:
        mode = session.get("mode")
        if mode and mode != "subscription":
            return ReconcileResult(ReconcileOutcome.IGNORED, "not_subscription_mode")

        subscription_id = _object_id(session.get("subscription"))
        if not subscription_id:
            logger.warning("checkout_missing_subscription session_id=%s", session.get("id"))
            return ReconcileResult.skipped("missing_subscription_id")

        customer_details = session.get("customer_details") if isinstance(session.get("customer_details"), dict) else {}
        email = customer_details.get("email") or session.get("customer_email")
        if not email:
            logger.error("checkout_missing_email session_id=%s", session.get("id"))
            return ReconcileResult.skipped("missing_customer_email", subscription_id)

        user_id = self.subscriber_resolver.resolve_by_email(email)
        if user_id is None:
            logger.error("checkout_subscriber_not_found email=%s stripe_subscription_id=%s", email, subscription_id)
            return ReconcileResult.skipped("subscriber_not_found", subscription_id)

        try:
            live = self.billing_client.retrieve_subscription(subscription_id)
        except BillingProviderNotFound:
            logger.warning("stripe_subscription_not_found stripe_subscription_id=%s", subscription_id)
            return ReconcileResult.skipped("provider_subscription_not_found", subscription_id)

        customer_id = _object_id(session.get("customer")) or live.customer_id
        metadata = {**live.metadata, **_metadata(session.get("metadata"))}

        if metadata.get("planType") == SERVICE_PLAN_TYPE:
            billing_cycle = metadata.get("billingCycle")
            if billing_cycle not in {cycle.value for cycle in BillingCycle}:
                billing_cycle = billing_cycle_for_interval(live.price_interval).value
            self.store.upsert_service_subscription(
                {
                    "user_id": user_id,
                    "stripe_customer_id": customer_id,
                    "stripe_subscription_id": subscription_id,
                    "plan_id": metadata.get("planId") or DEFAULT_SERVICE_PLAN_ID,
                    "plan_name": metadata.get("planName"),
                    "selected_services": parse_selected_services(metadata.get("selectedServices")),
                    "billing_cycle": billing_cycle,
                    "status": _status(live),
                    **_period_fields(live),
                }
            )
            logger.info("service_subscription_upserted user_id=%s stripe_subscription_id=%s", user_id, subscription_id)
            return ReconcileResult.applied(subscription_id, "service_subscription")

        # An id already held by a service row never gets a regular row as well.
        if self.store.find_service_subscription(subscription_id) is not None:
            matched = self.store.update_service_subscription(
                subscription_id,
                {"stripe_customer_id": customer_id, "status": _status(live), **_period_fields(live)},
            )
            return self._update_result(matched, subscription_id, "service_subscription")

        plan = self.plan_resolver.resolve(live.price_id)
        if plan is None:
            logger.error("stripe_webhook_unknown_price price_id=%s stripe_subscription_id=%s", live.price_id, subscription_id)
            return ReconcileResult.skipped("unknown_price", subscription_id)

        self.store.upsert_subscription(
            {
                "user_id": user_id,
                "stripe_customer_id": customer_id,
                "stripe_subscription_id": subscription_id,
                "stripe_price_id": live.price_id,
                "plan_id": plan.plan_id.value,
                "billing_cycle": plan.billing_cycle.value,
                "status": _status(live),
                **_period_fields(live),
                "cancel_at_period_end": live.cancel_at_period_end,
                "canceled_at": live.canceled_at,
            }
        )
        logger.info(
            "subscription_upserted user_id=%s plan_id=%s stripe_subscription_id=%s",
            user_id,
            plan.plan_id.value,
            subscription_id,
        )
        return ReconcileResult.applied(subscription_id, "subscription")

    def _subscription_changed(self, subscription: dict) -> ReconcileResult:
        subscription_id = _object_id(subscription.get("id"))
        if not subscription_id:
            return ReconcileResult.skipped("missing_subscription_id")

        # The event body may be stale by the time it arrives; read current state instead.
        try:
            live = self.billing_client.retrieve_subscription(subscription_id)
        except BillingProviderNotFound:
            logger.warning("stripe_subscription_not_found stripe_subscription_id=%s", subscription_id)
            return ReconcileResult.skipped("provider_subscription_not_found", subscription_id)

        if self.store.find_service_subscription(subscription_id) is not None:
            matched = self.store.update_service_subscription(
                subscription_id,
                {"status": _status(live), **_period_fields(live)},
            )
            return self._update_result(matched, subscription_id, "service_subscription")

        plan = self.plan_resolver.resolve(live.price_id)
        if plan is None:
            logger.error("stripe_webhook_unknown_price price_id=%s stripe_subscription_id=%s", live.price_id, subscription_id)
            return ReconcileResult.skipped("unknown_price", subscription_id)

        matched = self.store.update_subscription(
            subscription_id,
            {
                "stripe_price_id": live.price_id,
                "plan_id": plan.plan_id.value,
                "billing_cycle": plan.billing_cycle.value,
                "status": _status(live),
                **_period_fields(live),
                "cancel_at_period_end": live.cancel_at_period_end,
                "canceled_at": live.canceled_at,
            },
        )
        return self._update_result(matched, subscription_id, "subscription")

    def _subscription_deleted(self, subscription: dict) -> ReconcileResult:
        subscription_id = _object_id(subscription.get("id"))
        if not subscription_id:
            return ReconcileResult.skipped("missing_subscription_id")

        if self.store.find_service_subscription(subscription_id) is not None:
            matched = self.store.update_service_subscription(
                subscription_id,
                {"status": SubscriptionStatus.CANCELED.value},
            )
            return self._update_result(matched, subscription_id, "service_subscription")

        matched = self.store.update_subscription(
            subscription_id,
            {"status": SubscriptionStatus.CANCELED.value, "canceled_at": self.clock()},
        )
        return self._update_result(matched, subscription_id, "subscription")

    def _invoice_paid(self, invoice: dict) -> ReconcileResult:
        subscription_id = invoice_subscription_id(invoice)
        if not subscription_id:
            return ReconcileResult(ReconcileOutcome.IGNORED, "invoice_without_subscription")

        try:
            live = self.billing_client.retrieve_subscription(subscription_id)
        except BillingProviderNotFound:
            logger.warning("stripe_subscription_not_found stripe_subscription_id=%s", subscription_id)
            return ReconcileResult.skipped("provider_subscription_not_found", subscription_id)

        try:
            if self.store.find_service_subscription(subscription_id) is not None:
                matched = self.store.update_service_subscription(
                    subscription_id,
                    {"status": SubscriptionStatus.ACTIVE.value, **_period_fields(live)},
                )
                return self._update_result(matched, subscription_id, "service_subscription")

            patch: dict[str, Any] = {"status": SubscriptionStatus.ACTIVE.value, **_period_fields(live)}
            plan = self.plan_resolver.resolve(live.price_id)
            if plan is not None:
                patch.update(
                    stripe_price_id=live.price_id,
                    plan_id=plan.plan_id.value,
                    billing_cycle=billing_cycle_for_interval(live.price_interval).value,
                )
            matched = self.store.update_subscription(subscription_id, patch)
            return self._update_result(matched, subscription_id, "subscription")
        except StoreWriteError as exc:
            logger.error("invoice_paid_store_write_failed stripe_subscription_id=%s error=%s", subscription_id, exc)
            return ReconcileResult.skipped("store_write_failed", subscription_id)

    def _invoice_payment_failed(self, invoice: dict) -> ReconcileResult:
        subscription_id = invoice_subscription_id(invoice)
        if not subscription_id:
            return ReconcileResult(ReconcileOutcome.IGNORED, "invoice_without_subscription")

        patch = {"status": SubscriptionStatus.PAST_DUE.value}
        try:
            if self.store.find_service_subscription(subscription_id) is not None:
                matched = self.store.update_service_subscription(subscription_id, patch)
                return self._update_result(matched, subscription_id, "service_subscription")
            matched = self.store.update_subscription(subscription_id, patch)
            return self._update_result(matched, subscription_id, "subscription")
        except StoreWriteError as exc:
            logger.error(
                "invoice_payment_failed_store_write_failed stripe_subscription_id=%s error=%s",
                subscription_id,
                exc,
            )
            return ReconcileResult.skipped("store_write_failed", subscription_id)

    @staticmethod
    def _update_result(matched: int, subscription_id: str, target: str) -> ReconcileResult:
        if matched == 0:
            return ReconcileResult.skipped("no_matching_row", subscription_id)
        return ReconcileResult.applied(subscription_id, target)
