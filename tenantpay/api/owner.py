"""
Owner-only operations router.
Requires X-Owner-Key header for all endpoints.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from tenantpay.api.deps import Services, get_services, require_owner
from tenantpay.api.subscriptions import serialize_subscription
from tenantpay.core.errors import NotFoundError
from tenantpay.features.notifications.inbox import InMemoryInbox
from tenantpay.models.subscription import SubscriptionStatus

router = APIRouter(prefix="/api/owner", tags=["owner"], dependencies=[Depends(require_owner)])


class PaymentConfigUpdate(BaseModel):
    values: Dict[str, Any] = Field(default_factory=dict)


def _local_inbox(services: Services) -> InMemoryInbox:
    if not isinstance(services.inbox, InMemoryInbox):
        raise NotFoundError("Owner inbox is delivered to an external endpoint", code="inbox_external")
    return services.inbox


@router.get("/subscriptions")
def list_subscriptions(
    status: Optional[SubscriptionStatus] = Query(default=None),
    services: Services = Depends(get_services),
):
    subscriptions = services.owner.list_subscriptions(status)
    return {
        "subscriptions": [serialize_subscription(sub) for sub in subscriptions],
        "summary": services.owner.revenue_summary(),
    }


@router.post("/subscriptions/{admin_id}/activate")
def force_activate(admin_id: str, actor: str = Depends(require_owner), services: Services = Depends(get_services)):
    return {"subscription": serialize_subscription(services.owner.force_activate(admin_id, actor))}


@router.post("/subscriptions/{admin_id}/suspend")
def suspend(admin_id: str, actor: str = Depends(require_owner), services: Services = Depends(get_services)):
    return {"subscription": serialize_subscription(services.owner.suspend(admin_id, actor))}


@router.get("/payment-config/{method_id}")
def get_payment_config(method_id: str, services: Services = Depends(get_services)):
    config = services.destinations.get_config(method_id)
    return {"method_id": method_id, "config": config, "display": services.destinations.describe(method_id)}


@router.put("/payment-config/{method_id}")
def set_payment_config(
    method_id: str,
    body: PaymentConfigUpdate,
    actor: str = Depends(require_owner),
    services: Services = Depends(get_services),
):
    config = services.destinations.set_config(method_id, body.values, actor=actor)
    return {"method_id": method_id, "config": config, "display": services.destinations.describe(method_id)}


@router.get("/inbox")
def owner_inbox(
    unread_only: bool = Query(default=False),
    actor: str = Depends(require_owner),
    services: Services = Depends(get_services),
):
    inbox = _local_inbox(services)
    return {"messages": [event.model_dump(mode="json") for event in inbox.for_user(actor, unread_only=unread_only)]}


@router.post("/inbox/{notification_id}/read")
def mark_read(notification_id: str, services: Services = Depends(get_services)):
    event = _local_inbox(services).mark_read(notification_id)
    return {"message": event.model_dump(mode="json")}
