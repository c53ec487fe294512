"""Pricing catalog lookups, owner price changes and cycle recommendations."""

from decimal import Decimal

import pytest

from tenantpay.core.errors import UnknownPlan, ValidationError
from tenantpay.features.pricing.service import PricingCatalog
from tenantpay.models.plan import BillingCycle, Plan


@pytest.fixture
def catalog(store):
    return PricingCatalog(store)


def _plan(weekly, monthly, annually):
    return Plan(
        plan_id="basic",
        name="Basic",
        price={
            BillingCycle.WEEKLY: Decimal(weekly),
            BillingCycle.MONTHLY: Decimal(monthly),
            BillingCycle.ANNUALLY: Decimal(annually),
        },
    )


def test_seed_prices(catalog):
    assert catalog.get_price("premium", BillingCycle.WEEKLY) == Decimal("19.99")
    assert catalog.get_price("premium", BillingCycle.MONTHLY) == Decimal("59.99")
    assert catalog.get_price("premium", BillingCycle.ANNUALLY) == Decimal("599.99")
    features = catalog.get_plan("premium").features
    assert features[0] == "Full access to all app services"
    assert "Unlimited inventory management" in features
    assert len(features) == 14


def test_unknown_plan(catalog):
    with pytest.raises(UnknownPlan) as exc:
        catalog.get_price("platinum", BillingCycle.MONTHLY)
    assert exc.value.code == "unknown_plan"
    assert exc.value.status_code == 404


def test_set_price_persists(catalog, store):
    catalog.set_price("premium", BillingCycle.MONTHLY, "64.99", actor="owner")

    # A fresh catalog over the same store sees the change
    reloaded = PricingCatalog(store)
    assert reloaded.get_price("premium", BillingCycle.MONTHLY) == Decimal("64.99")
    assert reloaded.get_price("premium", BillingCycle.WEEKLY) == Decimal("19.99")


def test_set_price_twice_bumps_version(catalog, store):
    catalog.set_price("premium", BillingCycle.WEEKLY, "21")
    catalog.set_price("premium", BillingCycle.ANNUALLY, "650")
    version, _ = store.get("pricing", "premium")
    assert version == 2
    plan = catalog.get_plan("premium")
    assert plan.price[BillingCycle.WEEKLY] == Decimal("21")
    assert plan.price[BillingCycle.ANNUALLY] == Decimal("650")


@pytest.mark.parametrize("amount", ["0", "-5", "abc"])
def test_set_price_rejects_non_positive(catalog, amount):
    with pytest.raises(ValidationError):
        catalog.set_price("premium", BillingCycle.MONTHLY, amount)
    assert catalog.get_price("premium", BillingCycle.MONTHLY) == Decimal("59.99")


def test_set_price_unknown_plan(catalog):
    with pytest.raises(UnknownPlan):
        catalog.set_price("platinum", BillingCycle.MONTHLY, "10")


def test_list_plans(catalog):
    assert [plan.plan_id for plan in catalog.list_plans()] == ["premium"]


def test_annual_savings_and_recommendation_for_premium(catalog):
    # (59.99*12 - 599.99) / (59.99*12) = 16.65%
    assert catalog.annual_savings_percent("premium") == 17
    assert catalog.recommended_cycle("premium") == BillingCycle.ANNUALLY


def test_recommends_monthly_when_weekly_is_expensive(store):
    catalog = PricingCatalog(store, plans=[_plan("3", "10", "115")])
    assert catalog.annual_savings_percent("basic") == 4
    assert catalog.recommended_cycle("basic") == BillingCycle.MONTHLY


def test_recommends_weekly_when_it_is_cheap(store):
    catalog = PricingCatalog(store, plans=[_plan("2.50", "10", "120")])
    assert catalog.annual_savings_percent("basic") == 0
    assert catalog.recommended_cycle("basic") == BillingCycle.WEEKLY
