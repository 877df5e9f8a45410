from uuid import uuid4

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.application.services.plan_resolver import PlanInfo, PricePlanResolver, billing_cycle_for_interval
from app.application.services.subscriber_resolver import SubscriberResolver
from app.core.config import Settings
from app.domain.models.profile import Profile
from app.domain.models.subscription import BillingCycle, PlanId
from app.infrastructure.db.base import Base


@pytest.fixture
def db():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


def test_catalog_prices_resolve_to_plan_and_cycle():
    settings = Settings(_env_file=None)
    resolver = PricePlanResolver.from_settings(settings)

    assert resolver.resolve(settings.stripe_price_id_essential_monthly) == PlanInfo(PlanId.ESSENTIAL, BillingCycle.MONTHLY)
    assert resolver.resolve(settings.stripe_price_id_essential_annual) == PlanInfo(PlanId.ESSENTIAL, BillingCycle.ANNUAL)
    assert resolver.resolve(settings.stripe_price_id_pro_monthly) == PlanInfo(PlanId.PRO, BillingCycle.MONTHLY)
    assert resolver.resolve(settings.stripe_price_id_pro_annual) == PlanInfo(PlanId.PRO, BillingCycle.ANNUAL)


def test_price_table_follows_settings_overrides():
    settings = Settings(_env_file=None, stripe_price_id_pro_annual="price_pro_year_test")
    resolver = PricePlanResolver.from_settings(settings)

    assert resolver.resolve("price_pro_year_test") == PlanInfo(PlanId.PRO, BillingCycle.ANNUAL)


@pytest.mark.parametrize("price_id", ["price_unknown", "", None])
def test_unknown_price_resolves_to_none(price_id):
    resolver = PricePlanResolver({"price_A": PlanInfo(PlanId.ESSENTIAL, BillingCycle.MONTHLY)})

    assert resolver.resolve(price_id) is None


@pytest.mark.parametrize(
    ("interval", "expected"),
    [
        ("year", BillingCycle.ANNUAL),
        ("YEAR", BillingCycle.ANNUAL),
        ("month", BillingCycle.MONTHLY),
        ("week", BillingCycle.MONTHLY),
        (None, BillingCycle.MONTHLY),
    ],
)
def test_billing_cycle_for_interval(interval, expected):
    assert billing_cycle_for_interval(interval) == expected


def test_subscriber_resolves_by_email_ignoring_case_and_whitespace(db):
    profile = Profile(id=uuid4(), email="Member@Example.com", full_name="Member")
    db.add(profile)
    db.commit()

    resolver = SubscriberResolver(db)

    assert resolver.resolve_by_email("member@example.com") == profile.id
    assert resolver.resolve_by_email("  MEMBER@example.COM ") == profile.id


def test_unknown_or_blank_email_resolves_to_none(db):
    db.add(Profile(id=uuid4(), email="someone@example.com"))
    db.commit()

    resolver = SubscriberResolver(db)

    assert resolver.resolve_by_email("nobody@example.com") is None
    assert resolver.resolve_by_email("") is None
    assert resolver.resolve_by_email(None) is None
