from app.domain.models.profile import Profile
from app.domain.models.service_subscription import ServiceSubscription
from app.domain.models.stripe_event import StripeEvent, StripeEventStatus
from app.domain.models.subscription import BillingCycle, PlanId, Subscription, SubscriptionStatus

__all__ = [
    "Profile",
    "Subscription",
    "ServiceSubscription",
    "StripeEvent",
    "StripeEventStatus",
    "PlanId",
    "BillingCycle",
    "SubscriptionStatus",
]
