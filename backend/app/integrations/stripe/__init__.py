from app.integrations.stripe.client import BillingProviderClient, StripeBillingClient, encode_form
from app.integrations.stripe.objects import ProviderCheckoutSession, ProviderSubscription
from app.integrations.stripe.signature import VerifiedEvent, compute_signature, verify_webhook_event

__all__ = [
    "BillingProviderClient",
    "StripeBillingClient",
    "ProviderSubscription",
    "ProviderCheckoutSession",
    "VerifiedEvent",
    "compute_signature",
    "verify_webhook_event",
    "encode_form",
]
