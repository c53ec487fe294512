"""Owner force-activate / suspend and subscription listing."""

import logging
from decimal import Decimal

import pytest

from tenantpay.core.errors import InvalidTransition
from tenantpay.core.metrics import owner_overrides_total
from tenantpay.models.plan import BillingCycle
from tenantpay.models.subscription import SubscriptionStatus

ADMIN = "admin-1"


def _settle(machine, sender, admin_id=ADMIN, cycle=BillingCycle.MONTHLY):
    machine.initiate_upgrade(admin_id, "premium", cycle)
    machine.select_method(admin_id, "paypal")
    machine.submit_details(admin_id, {"paypalEmail": f"{admin_id}@b.com"})
    return machine.submit_verification(admin_id, sender.last_code).subscription


def test_scenario_c_suspend_active(machine, services, sender, clock):
    active = _settle(machine, sender)
    services.dispatcher.flush()
    messages_before = len(services.inbox.for_user("owner"))

    suspended = services.owner.suspend(ADMIN, "owner")
    assert suspended.status == SubscriptionStatus.SUSPENDED
    assert suspended.payment_history == active.payment_history
    assert suspended.deactivated_by == "owner"
    assert suspended.deactivated_at == clock.now
    assert len(services.inbox.for_user("owner")) == messages_before
    assert owner_overrides_total.value({"action": "suspend"}) == 1


def test_suspend_requires_active(services):
    with pytest.raises(InvalidTransition) as exc:
        services.owner.suspend(ADMIN, "owner")
    assert exc.value.current_state == "trial"


def test_force_activate_trial_without_payment(services):
    activated = services.owner.force_activate(ADMIN, "owner")
    assert activated.status == SubscriptionStatus.ACTIVE
    assert activated.activated_by == "owner"
    assert activated.payment_history == []
    assert services.inbox.for_user("owner") == []


def test_force_activate_after_suspend(machine, services, sender):
    _settle(machine, sender)
    services.owner.suspend(ADMIN, "owner")
    reactivated = services.owner.force_activate(ADMIN, "owner")
    assert reactivated.status == SubscriptionStatus.ACTIVE
    assert len(reactivated.payment_history) == 1


def test_force_activate_rejects_active(services):
    services.owner.force_activate(ADMIN, "owner")
    with pytest.raises(InvalidTransition):
        services.owner.force_activate(ADMIN, "owner")


def test_override_is_audited(services, caplog):
    with caplog.at_level(logging.INFO, logger="tenantpay"):
        services.owner.force_activate(ADMIN, "owner")
    records = [r for r in caplog.records if r.getMessage() == "owner.force_activate"]
    assert records
    assert records[0].admin_id == ADMIN
    assert records[0].actor == "owner"


def test_list_and_revenue_summary(machine, services, sender):
    _settle(machine, sender, "admin-a", BillingCycle.MONTHLY)
    _settle(machine, sender, "admin-b", BillingCycle.WEEKLY)
    services.accounts.get_subscription("admin-c")
    services.owner.suspend("admin-b", "owner")

    assert {s.admin_id for s in services.owner.list_subscriptions()} == {"admin-a", "admin-b", "admin-c"}
    assert [s.admin_id for s in services.owner.list_subscriptions(SubscriptionStatus.ACTIVE)] == ["admin-a"]

    summary = services.owner.revenue_summary()
    assert summary["active_subscriptions"] == 1
    assert Decimal(summary["active_revenue"]) == Decimal("59.99")
    assert summary["by_status"]["suspended"] == 1
    assert summary["by_status"]["trial"] == 1
