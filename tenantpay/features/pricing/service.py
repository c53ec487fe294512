"""
Pricing catalog.

Seed plans are defined in code; owner price changes are stored in the blob
store (namespace "pricing", one row per plan holding only the overridden
cycles). Changing a price never touches existing subscriptions: the amount a
subscription pays is captured at settlement time.
"""

import json
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from tenantpay.core.blob_store import BlobStore, get_blob_store
from tenantpay.core.errors import UnknownPlan, ValidationError
from tenantpay.core.logging import log_event
from tenantpay.models.plan import BillingCycle, Plan

PRICING_NAMESPACE = "pricing"

DEFAULT_PLANS: List[Plan] = [
    Plan(
        plan_id="premium",
        name="Premium",
        description="Full business management suite for your team",
        price={
            BillingCycle.WEEKLY: Decimal("19.99"),
            BillingCycle.MONTHLY: Decimal("59.99"),
            BillingCycle.ANNUALLY: Decimal("599.99"),
        },
        features=[
            "Full access to all app services",
            "Complete sales management",
            "Unlimited inventory management",
            "Unlimited customer database",
            "Advanced analytics & reporting",
            "Receipt customization",
            "Low stock alerts",
            "Multi-location support",
            "Advanced user management",
            "API access",
            "Dedicated support",
            "Custom integrations",
            "White-label options",
            "Advanced security features",
        ],
    ),
]


def _parse_amount(amount) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid price: {amount}", code="invalid_price")
    if not value.is_finite() or value <= 0:
        raise ValidationError("Price must be greater than zero", code="invalid_price")
    return value


class PricingCatalog:
    def __init__(self, store: Optional[BlobStore] = None, plans: Optional[List[Plan]] = None):
        self._store = store or get_blob_store()
        self._seed: Dict[str, Plan] = {plan.plan_id: plan for plan in (plans or DEFAULT_PLANS)}

    def _overrides(self, plan_id: str):
        row = self._store.get(PRICING_NAMESPACE, plan_id)
        if row is None:
            return 0, {}
        version, payload = row
        return version, json.loads(payload)

    def get_plan(self, plan_id: str) -> Plan:
        seed = self._seed.get(plan_id)
        if seed is None:
            raise UnknownPlan(plan_id)
        _, overrides = self._overrides(plan_id)
        if not overrides:
            return seed
        price = dict(seed.price)
        for cycle, amount in overrides.items():
            price[BillingCycle(cycle)] = Decimal(amount)
        data = seed.model_dump()
        data["price"] = price
        return Plan.model_validate(data)

    def list_plans(self) -> List[Plan]:
        return [self.get_plan(plan_id) for plan_id in self._seed]

    def get_price(self, plan_id: str, cycle: BillingCycle) -> Decimal:
        plan = self.get_plan(plan_id)
        if cycle not in plan.price:
            raise ValidationError(
                f"Plan {plan_id} is not sold {cycle.value}", code="unknown_cycle"
            )
        return plan.price[cycle]

    def set_price(self, plan_id: str, cycle: BillingCycle, amount, actor: Optional[str] = None) -> Plan:
        """Owner-only price change. Takes effect for settlements from now on."""
        if plan_id not in self._seed:
            raise UnknownPlan(plan_id)
        value = _parse_amount(amount)

        version, overrides = self._overrides(plan_id)
        overrides[cycle.value] = str(value)
        self._store.put(PRICING_NAMESPACE, plan_id, json.dumps(overrides), expected_version=version)

        log_event(
            "info",
            "pricing.price_set",
            event_type="pricing.price_set",
            extra={"plan": plan_id, "cycle": cycle.value, "amount": str(value), "actor": actor},
        )
        return self.get_plan(plan_id)

    def annual_savings_percent(self, plan_id: str) -> int:
        """Percent saved by paying annually instead of twelve monthly payments."""
        plan = self.get_plan(plan_id)
        monthly_total = plan.price[BillingCycle.MONTHLY] * 12
        if monthly_total <= 0:
            return 0
        savings = (monthly_total - plan.price[BillingCycle.ANNUALLY]) / monthly_total * 100
        return int(round(savings))

    def recommended_cycle(self, plan_id: str) -> BillingCycle:
        plan = self.get_plan(plan_id)
        if self.annual_savings_percent(plan_id) > 15:
            return BillingCycle.ANNUALLY
        weekly_markup = plan.price[BillingCycle.WEEKLY] * 4 / plan.price[BillingCycle.MONTHLY]
        if weekly_markup > Decimal("1.1"):
            return BillingCycle.MONTHLY
        return BillingCycle.WEEKLY
