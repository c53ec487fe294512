"""
Owner notifications for settled payments.

notify_owner() never blocks or fails the settlement that triggered it:
- inside a deferred() block the event is collected for the caller to send
  after its response (request handlers use BackgroundTasks)
- inside a running event loop the delivery is scheduled as a task
- otherwise it is handed to a single worker thread; flush() waits for it

Any delivery error becomes DeliveryFailed, which is logged and dropped
(best effort, at most once).
"""

import asyncio
import threading
import uuid
from concurrent import futures
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Callable, Dict, Iterator, List, Optional, Set

import httpx

from tenantpay.core.config import settings
from tenantpay.core.errors import DeliveryFailed
from tenantpay.core.logging import log_event
from tenantpay.core.metrics import notification_deliveries_total
from tenantpay.features.notifications.inbox import Inbox
from tenantpay.models.notification import AdminProfile, NotificationEvent, NotificationPriority
from tenantpay.models.subscription import Subscription

PAYMENT_NOTIFICATION_TYPE = "subscription_payment_notification"
ADMIN_UPDATE_TYPE = "subscription_update"

# Admin-entered fields shown only by their last four characters
_MASKED_FIELDS = {"cardNumber", "accountNumber", "routingNumber"}
_HIDDEN_FIELDS = {"cvv"}

_outbox: ContextVar[Optional[List[NotificationEvent]]] = ContextVar("notification_outbox", default=None)


def _label(key: str) -> str:
    return key[:1].upper() + key[1:]


def _mask_details(details: Dict[str, str]) -> Dict[str, str]:
    masked = {}
    for key, value in details.items():
        if key in _HIDDEN_FIELDS:
            continue
        if key in _MASKED_FIELDS:
            text = str(value)
            masked[key] = "*" * max(len(text) - 4, 0) + text[-4:]
        else:
            masked[key] = value
    return masked


class NotificationDispatcher:
    def __init__(
        self,
        inbox: Inbox,
        owner_id: Optional[str] = None,
        timeout: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.inbox = inbox
        self.owner_id = owner_id or settings.OWNER_ID
        self.timeout = settings.NOTIFICATION_TIMEOUT_SECONDS if timeout is None else timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._pending: Set[asyncio.Task] = set()
        self._pending_futures: Set[futures.Future] = set()
        self._futures_lock = threading.Lock()
        self._worker = futures.ThreadPoolExecutor(max_workers=1, thread_name_prefix="owner-notify")

    def build_event(self, subscription: Subscription, admin: AdminProfile) -> NotificationEvent:
        destination = subscription.payment_destination
        admin_details = _mask_details(destination.admin_payment_details) if destination else {}

        lines = [
            "New Subscription Payment Received!",
            "",
            f"Admin: {admin.name} ({admin.email or 'no email'})",
            f"Plan: {_label(subscription.plan)}",
            f"Amount: ${subscription.amount}",
            f"Billing Cycle: {subscription.billing_cycle.value}",
            f"Status: {subscription.status.value}",
            f"Payment Method: {subscription.payment_method or 'n/a'}",
        ]
        if destination is not None:
            lines += ["", "Payment Destination:", f"Method: {_label(destination.method)}"]
            lines += [f"{_label(key)}: {value}" for key, value in destination.owner_config.items()]
            lines += ["", "Admin Payment Details:"]
            lines += [f"{_label(key)}: {value}" for key, value in admin_details.items()]
        lines += ["", "The admin has been activated and now has full access to all app services."]

        now = self._clock()
        return NotificationEvent(
            notification_id=f"notification_{uuid.uuid4().hex}",
            from_user=admin.admin_id,
            to_user=self.owner_id,
            subject=f"Subscription Payment - {admin.name}",
            body="\n".join(lines),
            timestamp=now,
            priority=NotificationPriority.HIGH,
            type=PAYMENT_NOTIFICATION_TYPE,
            payment_data={
                "adminId": admin.admin_id,
                "amount": str(subscription.amount),
                "method": subscription.payment_method,
                "destination": {
                    "method": destination.method,
                    "ownerConfig": destination.owner_config,
                    "adminPaymentDetails": admin_details,
                } if destination else None,
            },
        )

    def build_admin_update(self, subscription: Subscription, admin: AdminProfile, status: str) -> NotificationEvent:
        """Message from the owner telling an admin their subscription changed."""
        body = "\n".join([
            f"Your subscription status has been updated to: {status}",
            "",
            f"Plan: {_label(subscription.plan)}",
            f"Amount: ${subscription.amount}",
            f"Billing Cycle: {subscription.billing_cycle.value}",
        ])
        return NotificationEvent(
            notification_id=f"notification_{uuid.uuid4().hex}",
            from_user=self.owner_id,
            to_user=admin.admin_id,
            subject=f"Subscription {status}",
            body=body,
            timestamp=self._clock(),
            priority=NotificationPriority.MEDIUM,
            type=ADMIN_UPDATE_TYPE,
        )

    async def deliver(self, event: NotificationEvent) -> None:
        """Deliver one event or raise DeliveryFailed, whatever the inbox raised."""
        try:
            await asyncio.wait_for(self.inbox.deliver(event), timeout=self.timeout)
        except DeliveryFailed:
            raise
        except asyncio.TimeoutError as exc:
            raise DeliveryFailed(f"Delivery timed out after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise DeliveryFailed(f"Delivery failed: {exc}") from exc
        except Exception as exc:
            raise DeliveryFailed(f"Delivery failed: {type(exc).__name__}: {exc}") from exc

    async def deliver_quietly(self, event: NotificationEvent) -> bool:
        try:
            await self.deliver(event)
        except DeliveryFailed as exc:
            notification_deliveries_total.inc({"result": "failed"})
            log_event(
                "warning",
                "notification.delivery_failed",
                admin_id=event.from_user,
                event_type="notification.delivery_failed",
                error_code=exc.code,
                extra={"notification_id": event.notification_id, "reason": exc.message},
            )
            return False
        notification_deliveries_total.inc({"result": "delivered"})
        log_event(
            "info",
            "notification.delivered",
            admin_id=event.from_user,
            event_type="notification.delivered",
            extra={"notification_id": event.notification_id, "to": event.to_user},
        )
        return True

    async def deliver_all(self, events: List[NotificationEvent]) -> None:
        for event in events:
            await self.deliver_quietly(event)

    @contextmanager
    def deferred(self) -> Iterator[List[NotificationEvent]]:
        """Collect events raised inside the block instead of sending them.

        Request handlers hand the collected list to a background task so the
        response goes out before any inbox is contacted.
        """
        collected: List[NotificationEvent] = []
        token = _outbox.set(collected)
        try:
            yield collected
        finally:
            _outbox.reset(token)

    def notify_owner(self, subscription: Subscription, admin: AdminProfile) -> NotificationEvent:
        event = self.build_event(subscription, admin)

        outbox = _outbox.get()
        if outbox is not None:
            outbox.append(event)
            return event

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            task = loop.create_task(self.deliver_quietly(event))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        else:
            future = self._worker.submit(asyncio.run, self.deliver_quietly(event))
            with self._futures_lock:
                self._pending_futures.add(future)
            future.add_done_callback(self._forget_future)
        return event

    def _forget_future(self, future: futures.Future) -> None:
        with self._futures_lock:
            self._pending_futures.discard(future)

    def _outstanding_futures(self) -> List[futures.Future]:
        with self._futures_lock:
            return list(self._pending_futures)

    def flush(self, timeout: Optional[float] = None) -> None:
        """Block until deliveries handed to the worker thread have finished."""
        futures.wait(self._outstanding_futures(), timeout=timeout)

    async def drain(self) -> None:
        """Wait for scheduled deliveries (shutdown and tests)."""
        waiting = [asyncio.wrap_future(f) for f in self._outstanding_futures()]
        waiting += list(self._pending)
        if waiting:
            await asyncio.gather(*waiting)
