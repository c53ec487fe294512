"""
Owner overrides on admin subscriptions.

The owner can switch an admin on or off without any payment. Overrides
never touch payment_history and never notify. Every override is written to
the audit log.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from tenantpay.core.errors import InvalidTransition
from tenantpay.core.logging import log_event
from tenantpay.core.metrics import owner_overrides_total
from tenantpay.features.subscriptions.store import AccountStore
from tenantpay.models.subscription import Subscription, SubscriptionStatus


def record_owner_audit(actor: str, action: str, admin_id: str, payload: Optional[dict] = None) -> None:
    log_event(
        "info",
        f"owner.{action}",
        admin_id=admin_id,
        event_type=f"owner.{action}",
        extra={"actor": actor, **(payload or {})},
    )


class OwnerSubscriptionController:
    def __init__(self, accounts: AccountStore, clock: Optional[Callable[[], datetime]] = None):
        self.accounts = accounts
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def force_activate(self, admin_id: str, actor: str) -> Subscription:
        """Activate without payment; allowed from any status except active."""
        subscription = self.accounts.get_subscription(admin_id)
        if subscription.status == SubscriptionStatus.ACTIVE:
            raise InvalidTransition(subscription.status.value, "force_activate")

        now = self._clock()
        updated = subscription.evolve(
            status=SubscriptionStatus.ACTIVE,
            activated_at=now,
            activated_by=actor,
        )
        saved = self.accounts.save_subscription(admin_id, updated, expected_version=subscription.version)
        owner_overrides_total.inc({"action": "force_activate"})
        record_owner_audit(actor, "force_activate", admin_id, {"previous_status": subscription.status.value})
        return saved

    def suspend(self, admin_id: str, actor: str) -> Subscription:
        subscription = self.accounts.get_subscription(admin_id)
        if subscription.status != SubscriptionStatus.ACTIVE:
            raise InvalidTransition(subscription.status.value, "suspend")

        now = self._clock()
        updated = subscription.evolve(
            status=SubscriptionStatus.SUSPENDED,
            deactivated_at=now,
            deactivated_by=actor,
        )
        saved = self.accounts.save_subscription(admin_id, updated, expected_version=subscription.version)
        owner_overrides_total.inc({"action": "suspend"})
        record_owner_audit(actor, "suspend", admin_id)
        return saved

    def list_subscriptions(self, status: Optional[SubscriptionStatus] = None) -> List[Subscription]:
        subscriptions = self.accounts.list_subscriptions()
        if status is not None:
            subscriptions = [s for s in subscriptions if s.status == status]
        return subscriptions

    def revenue_summary(self) -> Dict[str, object]:
        """Count and total amount of active subscriptions, plus a per-status count."""
        by_status: Dict[str, int] = {status.value: 0 for status in SubscriptionStatus}
        active_total = Decimal("0")
        active_count = 0
        for subscription in self.accounts.list_subscriptions():
            by_status[subscription.status.value] += 1
            if subscription.status == SubscriptionStatus.ACTIVE:
                active_count += 1
                active_total += subscription.amount
        return {
            "active_subscriptions": active_count,
            "active_revenue": str(active_total),
            "by_status": by_status,
        }
