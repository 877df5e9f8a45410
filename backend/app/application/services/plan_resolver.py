from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from app.core.config import Settings
from app.domain.models.subscription import BillingCycle, PlanId


@dataclass(frozen=True)
class PlanInfo:
    plan_id: PlanId
    billing_cycle: BillingCycle


def billing_cycle_for_interval(interval: str | None) -> BillingCycle:
    if (interval or "").strip().lower() == "year":
        return BillingCycle.ANNUAL
    return BillingCycle.MONTHLY


class PricePlanResolver:
    """Maps the four catalog price ids to a plan tier and billing cycle."""

    def __init__(self, table: Mapping[str, PlanInfo]) -> None:
        self._table = dict(table)

    @classmethod
    def from_settings(cls, settings: Settings) -> PricePlanResolver:
        return cls(
            {
                settings.stripe_price_id_essential_monthly: PlanInfo(PlanId.ESSENTIAL, BillingCycle.MONTHLY),
                settings.stripe_price_id_essential_annual: PlanInfo(PlanId.ESSENTIAL, BillingCycle.ANNUAL),
                settings.stripe_price_id_pro_monthly: PlanInfo(PlanId.PRO, BillingCycle.MONTHLY),
                settings.stripe_price_id_pro_annual: PlanInfo(PlanId.PRO, BillingCycle.ANNUAL),
            }
        )

    def resolve(self, price_id: str | None) -> PlanInfo | None:
        if not price_id:
            return None
        return self._table.get(price_id)
