"""Plan catalogue and payment method listings (public), price changes (owner)."""

from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from tenantpay.api.deps import Services, get_services, require_owner
from tenantpay.models.plan import BillingCycle, Plan

router = APIRouter(tags=["pricing"])


class PriceUpdateRequest(BaseModel):
    amount: Decimal


def _plan_view(plan: Plan, services: Services) -> dict:
    data = plan.model_dump(mode="json")
    data["annual_savings_percent"] = services.catalog.annual_savings_percent(plan.plan_id)
    data["recommended_cycle"] = services.catalog.recommended_cycle(plan.plan_id).value
    return data


@router.get("/api/pricing/plans")
def list_plans(services: Services = Depends(get_services)):
    return {"plans": [_plan_view(plan, services) for plan in services.catalog.list_plans()]}


@router.put("/api/pricing/plans/{plan_id}/{cycle}")
def set_price(
    plan_id: str,
    cycle: str,
    body: PriceUpdateRequest,
    actor: str = Depends(require_owner),
    services: Services = Depends(get_services),
):
    plan = services.catalog.set_price(plan_id, BillingCycle.parse(cycle), body.amount, actor=actor)
    return {"plan": _plan_view(plan, services)}


@router.get("/api/payment-methods")
def list_payment_methods(services: Services = Depends(get_services)):
    methods = []
    for spec in services.registry.list_specs():
        data = spec.model_dump(mode="json")
        config = services.destinations.get_config(spec.method_id)
        data["destination"] = services.destinations.describe(spec.method_id) if config.get("enabled") else None
        methods.append(data)
    return {"methods": methods}
