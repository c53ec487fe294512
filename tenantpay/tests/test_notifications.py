"""Owner notification content and best-effort delivery."""

import asyncio
import json
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import httpx
import pytest

from tenantpay.core.errors import DeliveryFailed, NotFoundError
from tenantpay.core.metrics import notification_deliveries_total
from tenantpay.features.notifications.dispatcher import NotificationDispatcher
from tenantpay.features.notifications.inbox import HttpInbox, InMemoryInbox
from tenantpay.models.notification import AdminProfile, NotificationPriority
from tenantpay.models.plan import BillingCycle
from tenantpay.models.subscription import (
    PaymentDestination,
    PaymentRecord,
    PaymentStatus,
    Subscription,
    SubscriptionStatus,
)

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
ADMIN = AdminProfile(admin_id="sarah", name="Sarah Admin", email="sarah@shop.io")


def _active_subscription():
    return Subscription(
        admin_id="sarah",
        plan="premium",
        billing_cycle=BillingCycle.MONTHLY,
        amount=Decimal("59.99"),
        status=SubscriptionStatus.ACTIVE,
        start_date=NOW,
        end_date=NOW + timedelta(days=30),
        payment_history=[
            PaymentRecord(
                attempt_id="att-1", amount=Decimal("59.99"), date=NOW, method="credit_card", status=PaymentStatus.COMPLETED
            )
        ],
        payment_method="Credit Card",
        payment_destination=PaymentDestination(
            method="credit_card",
            owner_config={"bankName": "Equity Bank", "accountName": "Acme Ltd"},
            admin_payment_details={
                "cardNumber": "4111111111111111",
                "cardholderName": "Sarah Admin",
                "expiryDate": "12/27",
                "cvv": "123",
            },
        ),
    )


class FailingInbox:
    async def deliver(self, event):
        raise httpx.ConnectError("inbox down")


class SlowInbox:
    async def deliver(self, event):
        await asyncio.sleep(1)


class RefusingInbox:
    async def deliver(self, event):
        raise ConnectionRefusedError("inbox socket refused")


def test_build_event_content():
    dispatcher = NotificationDispatcher(InMemoryInbox(), owner_id="owner", clock=lambda: NOW)
    event = dispatcher.build_event(_active_subscription(), ADMIN)

    assert event.subject == "Subscription Payment - Sarah Admin"
    assert event.to_user == "owner"
    assert event.from_user == "sarah"
    assert event.priority == NotificationPriority.HIGH
    assert event.type == "subscription_payment_notification"
    assert event.read is False
    assert "Admin: Sarah Admin (sarah@shop.io)" in event.body
    assert "Amount: $59.99" in event.body
    assert "Billing Cycle: monthly" in event.body
    assert "BankName: Equity Bank" in event.body
    assert event.payment_data["adminId"] == "sarah"
    assert event.payment_data["amount"] == "59.99"


def test_card_details_are_masked():
    dispatcher = NotificationDispatcher(InMemoryInbox(), owner_id="owner", clock=lambda: NOW)
    event = dispatcher.build_event(_active_subscription(), ADMIN)
    assert "4111111111111111" not in event.body
    assert "************1111" in event.body
    assert "123" not in event.body.split("Admin Payment Details:")[1]
    assert "cvv" not in event.payment_data["destination"]["adminPaymentDetails"]


def test_build_admin_update():
    dispatcher = NotificationDispatcher(InMemoryInbox(), owner_id="owner", clock=lambda: NOW)
    event = dispatcher.build_admin_update(_active_subscription(), ADMIN, "suspended")
    assert event.subject == "Subscription suspended"
    assert event.to_user == "sarah"
    assert event.priority == NotificationPriority.MEDIUM


def test_notify_owner_without_loop_uses_worker_thread():
    inbox = InMemoryInbox()
    dispatcher = NotificationDispatcher(inbox, owner_id="owner")
    event = dispatcher.notify_owner(_active_subscription(), ADMIN)
    dispatcher.flush(timeout=5)
    assert [e.notification_id for e in inbox.for_user("owner")] == [event.notification_id]
    assert notification_deliveries_total.value({"result": "delivered"}) == 1


def test_delivery_failure_is_swallowed_without_loop():
    dispatcher = NotificationDispatcher(FailingInbox(), owner_id="owner")
    dispatcher.notify_owner(_active_subscription(), ADMIN)
    dispatcher.flush(timeout=5)
    assert notification_deliveries_total.value({"result": "failed"}) == 1


@pytest.mark.asyncio
async def test_notify_owner_in_running_loop_does_not_block():
    inbox = InMemoryInbox()
    dispatcher = NotificationDispatcher(inbox, owner_id="owner")
    event = dispatcher.notify_owner(_active_subscription(), ADMIN)
    assert inbox.for_user("owner") == []
    await dispatcher.drain()
    assert [e.notification_id for e in inbox.for_user("owner")] == [event.notification_id]


@pytest.mark.asyncio
async def test_deliver_raises_delivery_failed_on_timeout():
    dispatcher = NotificationDispatcher(SlowInbox(), owner_id="owner", timeout=0.01)
    event = dispatcher.build_event(_active_subscription(), ADMIN)
    with pytest.raises(DeliveryFailed):
        await dispatcher.deliver(event)


@pytest.mark.asyncio
async def test_background_failure_is_logged_and_dropped():
    dispatcher = NotificationDispatcher(FailingInbox(), owner_id="owner")
    dispatcher.notify_owner(_active_subscription(), ADMIN)
    await dispatcher.drain()
    assert notification_deliveries_total.value({"result": "failed"}) == 1


@pytest.mark.asyncio
async def test_http_inbox_posts_json():
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(202)

    inbox = HttpInbox("https://owner.example/inbox", transport=httpx.MockTransport(handler))
    dispatcher = NotificationDispatcher(inbox, owner_id="owner")
    event = dispatcher.build_event(_active_subscription(), ADMIN)
    assert await dispatcher.deliver_quietly(event) is True

    assert received[0]["notification_id"] == event.notification_id
    assert received[0]["subject"] == "Subscription Payment - Sarah Admin"
    assert received[0]["priority"] == "high"


@pytest.mark.asyncio
async def test_http_inbox_error_status_becomes_delivery_failed():
    inbox = HttpInbox(
        "https://owner.example/inbox",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )
    dispatcher = NotificationDispatcher(inbox, owner_id="owner")
    event = dispatcher.build_event(_active_subscription(), ADMIN)
    with pytest.raises(DeliveryFailed):
        await dispatcher.deliver(event)
    assert await dispatcher.deliver_quietly(event) is False


def test_inbox_mark_read_and_filters():
    inbox = InMemoryInbox()
    dispatcher = NotificationDispatcher(inbox, owner_id="owner")
    first = dispatcher.notify_owner(_active_subscription(), ADMIN)
    dispatcher.notify_owner(_active_subscription(), ADMIN)
    dispatcher.flush(timeout=5)

    inbox.mark_read(first.notification_id)
    assert len(inbox.for_user("owner")) == 2
    assert first.notification_id not in [e.notification_id for e in inbox.for_user("owner", unread_only=True)]
    assert inbox.for_user("sarah") == []

    with pytest.raises(NotFoundError):
        inbox.mark_read("missing")


@pytest.mark.asyncio
async def test_any_inbox_error_becomes_delivery_failed():
    dispatcher = NotificationDispatcher(RefusingInbox(), owner_id="owner")
    event = dispatcher.build_event(_active_subscription(), ADMIN)
    with pytest.raises(DeliveryFailed) as exc:
        await dispatcher.deliver(event)
    assert isinstance(exc.value.__cause__, ConnectionRefusedError)
    assert await dispatcher.deliver_quietly(event) is False


def test_refusing_inbox_is_swallowed_without_loop():
    dispatcher = NotificationDispatcher(RefusingInbox(), owner_id="owner")
    dispatcher.notify_owner(_active_subscription(), ADMIN)
    dispatcher.flush(timeout=5)
    assert notification_deliveries_total.value({"result": "failed"}) == 1


def test_notify_owner_without_loop_returns_before_delivery():
    dispatcher = NotificationDispatcher(SlowInbox(), owner_id="owner", timeout=5)
    started = time.perf_counter()
    dispatcher.notify_owner(_active_subscription(), ADMIN)
    assert time.perf_counter() - started < 0.5
    dispatcher.flush(timeout=5)
    assert notification_deliveries_total.value({"result": "delivered"}) == 1


def test_deferred_collects_instead_of_sending():
    inbox = InMemoryInbox()
    dispatcher = NotificationDispatcher(inbox, owner_id="owner")
    with dispatcher.deferred() as outbox:
        event = dispatcher.notify_owner(_active_subscription(), ADMIN)
    dispatcher.flush(timeout=5)
    assert [e.notification_id for e in outbox] == [event.notification_id]
    assert inbox.for_user("owner") == []

    asyncio.run(dispatcher.deliver_all(outbox))
    assert [e.notification_id for e in inbox.for_user("owner")] == [event.notification_id]
