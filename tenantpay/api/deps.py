"""
Service wiring and request dependencies shared by the routers.

All services are built once per application and hung off app.state, so tests
get a fresh world by building a fresh app.
"""

import hmac
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from fastapi import Request

from tenantpay.core.blob_store import BlobStore, get_blob_store
from tenantpay.core.config import settings
from tenantpay.core.errors import AppError, PermissionError
from tenantpay.features.notifications.dispatcher import NotificationDispatcher
from tenantpay.features.notifications.inbox import HttpInbox, Inbox, InMemoryInbox
from tenantpay.features.owner.service import OwnerSubscriptionController
from tenantpay.features.payment_methods.destinations import OwnerPaymentConfig
from tenantpay.features.payment_methods.registry import PaymentMethodRegistry
from tenantpay.features.pricing.service import PricingCatalog
from tenantpay.features.subscriptions.state_machine import SubscriptionStateMachine
from tenantpay.features.subscriptions.store import AccountStore, AdminDirectory, AttemptStore
from tenantpay.features.verification.service import CodeSender, VerificationChallengeIssuer
from tenantpay.models.notification import AdminProfile


@dataclass
class Services:
    catalog: PricingCatalog
    registry: PaymentMethodRegistry
    destinations: OwnerPaymentConfig
    accounts: AccountStore
    directory: AdminDirectory
    inbox: Inbox
    dispatcher: NotificationDispatcher
    machine: SubscriptionStateMachine
    owner: OwnerSubscriptionController


def build_services(
    store: Optional[BlobStore] = None,
    inbox: Optional[Inbox] = None,
    sender: Optional[CodeSender] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> Services:
    store = store or get_blob_store()
    if inbox is None:
        if settings.OWNER_INBOX_URL:
            inbox = HttpInbox(settings.OWNER_INBOX_URL, timeout=settings.NOTIFICATION_TIMEOUT_SECONDS)
        else:
            inbox = InMemoryInbox()

    catalog = PricingCatalog(store)
    registry = PaymentMethodRegistry()
    destinations = OwnerPaymentConfig(store)
    accounts = AccountStore(store, clock=clock)
    directory = AdminDirectory()
    dispatcher = NotificationDispatcher(inbox, clock=clock)
    machine = SubscriptionStateMachine(
        accounts=accounts,
        attempts=AttemptStore(store),
        catalog=catalog,
        registry=registry,
        destinations=destinations,
        issuer=VerificationChallengeIssuer(sender=sender, clock=clock),
        dispatcher=dispatcher,
        directory=directory,
        clock=clock,
    )
    return Services(
        catalog=catalog,
        registry=registry,
        destinations=destinations,
        accounts=accounts,
        directory=directory,
        inbox=inbox,
        dispatcher=dispatcher,
        machine=machine,
        owner=OwnerSubscriptionController(accounts, clock=clock),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def require_admin_id(request: Request) -> str:
    """Admin identity comes from the auth proxy header; name/email are optional extras."""
    admin_id = (request.headers.get(settings.ADMIN_ID_HEADER) or "").strip()
    if not admin_id:
        raise AppError("Missing admin identity", code="unauthorized", status_code=401)
    name = request.headers.get("x-admin-name")
    if name:
        get_services(request).directory.register(
            AdminProfile(admin_id=admin_id, name=name, email=request.headers.get("x-admin-email"))
        )
    return admin_id


def require_owner(request: Request) -> str:
    """Check X-Owner-Key and return the owner's actor id."""
    expected = settings.OWNER_KEY
    provided = request.headers.get("x-owner-key") or ""
    if not expected or not hmac.compare_digest(provided.encode(), expected.encode()):
        raise PermissionError("Invalid or missing X-Owner-Key header", code="owner_forbidden")
    return settings.OWNER_ID
