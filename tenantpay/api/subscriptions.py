"""
Admin-facing upgrade wizard.

The caller is identified by the admin id header. Each step returns the new
wizard state plus the subscription snapshot; recoverable errors come back as
4xx with the state left where it was.
"""

from datetime import datetime, timezone
from typing import Dict

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel, Field

from tenantpay.api.deps import Services, get_services, require_admin_id
from tenantpay.features.subscriptions.state_machine import TransitionResult, days_remaining, effective_status
from tenantpay.models.plan import BillingCycle
from tenantpay.models.subscription import Subscription

router = APIRouter(prefix="/api/subscription", tags=["subscription"])


class UpgradeRequest(BaseModel):
    plan: str = "premium"
    billing_cycle: str = Field(..., description="weekly | monthly | annually")


class MethodRequest(BaseModel):
    method_id: str


class DetailsRequest(BaseModel):
    fields: Dict[str, str] = Field(default_factory=dict)


class VerifyRequest(BaseModel):
    code: str


def serialize_subscription(subscription: Subscription) -> dict:
    """Snapshot for the admin UI. Raw payment details stay server-side."""
    now = datetime.now(timezone.utc)
    data = subscription.model_dump(
        mode="json",
        exclude={"payment_history": {"__all__": {"raw_details", "owner_config_snapshot"}}},
    )
    data["effective_status"] = effective_status(subscription, now).value
    data["days_remaining"] = days_remaining(subscription, now)
    return data


def serialize_result(result: TransitionResult) -> dict:
    data = result.model_dump(mode="json", exclude={"subscription"})
    data["subscription"] = serialize_subscription(result.subscription)
    return data


def _send_after_response(background_tasks: BackgroundTasks, services: Services, outbox: list) -> None:
    # owner inbox delivery runs once the settlement response has been sent
    if outbox:
        background_tasks.add_task(services.dispatcher.deliver_all, list(outbox))


@router.get("")
def get_subscription(admin_id: str = Depends(require_admin_id), services: Services = Depends(get_services)):
    return serialize_result(services.machine.get_state(admin_id))


@router.post("/upgrade")
def initiate_upgrade(
    body: UpgradeRequest,
    admin_id: str = Depends(require_admin_id),
    services: Services = Depends(get_services),
):
    cycle = BillingCycle.parse(body.billing_cycle)
    return serialize_result(services.machine.initiate_upgrade(admin_id, body.plan, cycle))


@router.post("/method")
def select_method(
    body: MethodRequest,
    admin_id: str = Depends(require_admin_id),
    services: Services = Depends(get_services),
):
    return serialize_result(services.machine.select_method(admin_id, body.method_id))


@router.post("/details")
def submit_details(
    body: DetailsRequest,
    admin_id: str = Depends(require_admin_id),
    services: Services = Depends(get_services),
):
    return serialize_result(services.machine.submit_details(admin_id, body.fields))


@router.post("/resend-code")
def resend_code(admin_id: str = Depends(require_admin_id), services: Services = Depends(get_services)):
    return serialize_result(services.machine.resend_code(admin_id))


@router.post("/verify")
def submit_verification(
    body: VerifyRequest,
    background_tasks: BackgroundTasks,
    admin_id: str = Depends(require_admin_id),
    services: Services = Depends(get_services),
):
    with services.dispatcher.deferred() as outbox:
        result = services.machine.submit_verification(admin_id, body.code)
    _send_after_response(background_tasks, services, outbox)
    return serialize_result(result)


@router.post("/resume")
def resume(
    background_tasks: BackgroundTasks,
    admin_id: str = Depends(require_admin_id),
    services: Services = Depends(get_services),
):
    with services.dispatcher.deferred() as outbox:
        result = services.machine.resume(admin_id)
    _send_after_response(background_tasks, services, outbox)
    return serialize_result(result)


@router.post("/abandon")
def abandon(admin_id: str = Depends(require_admin_id), services: Services = Depends(get_services)):
    return serialize_result(services.machine.abandon(admin_id))


@router.post("/cancel")
def cancel(admin_id: str = Depends(require_admin_id), services: Services = Depends(get_services)):
    return {"subscription": serialize_subscription(services.machine.cancel(admin_id))}
