"""
Upgrade wizard state machine.

    idle -> choosing_method -> entering_details -> verifying -> processing -> idle (active)

One attempt per admin. The attempt is persisted after every step, so an
admin who disappears while `processing` can be resumed; settlement is keyed
by attempt_id and appends at most one PaymentRecord per attempt.

Recoverable errors (UnknownPlan, UnknownMethod, MissingFields, InvalidCode)
leave the stored state untouched. InvalidTransition and StaleSnapshot mean
the caller must re-read state before retrying.
"""

import math
import uuid
from datetime import datetime, timezone
from typing import Callable, Iterable, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from tenantpay.core.errors import InvalidCode, InvalidTransition
from tenantpay.core.idempotency import check_and_set
from tenantpay.core.logging import log_event
from tenantpay.core.metrics import subscription_settlements_total, subscription_transitions_total
from tenantpay.features.notifications.dispatcher import NotificationDispatcher
from tenantpay.features.payment_methods.destinations import OwnerPaymentConfig
from tenantpay.features.payment_methods.registry import PaymentMethodRegistry
from tenantpay.features.pricing.service import PricingCatalog
from tenantpay.features.subscriptions.store import AccountStore, AdminDirectory, AttemptStore
from tenantpay.features.verification.service import VerificationChallengeIssuer
from tenantpay.models.payment_method import VerificationMedium
from tenantpay.models.plan import BillingCycle, compute_end_date
from tenantpay.models.subscription import (
    PaymentDestination,
    PaymentRecord,
    PaymentStatus,
    Subscription,
    SubscriptionStatus,
    UpgradeAttempt,
    UpgradeState,
)


class TransitionResult(BaseModel):
    """What the wizard needs to render its next screen."""

    model_config = ConfigDict(frozen=True)

    state: UpgradeState
    subscription: Subscription
    attempt_id: Optional[str] = None
    plan: Optional[str] = None
    billing_cycle: Optional[BillingCycle] = None
    quoted_amount: Optional[str] = None
    method_id: Optional[str] = None
    challenge_medium: Optional[VerificationMedium] = None
    settled: bool = False


def effective_status(subscription: Subscription, now: datetime) -> SubscriptionStatus:
    """Stored status, except an active subscription past its end date reads as expired."""
    if subscription.status == SubscriptionStatus.ACTIVE and now > subscription.end_date:
        return SubscriptionStatus.EXPIRED
    return subscription.status


def days_remaining(subscription: Subscription, now: datetime) -> int:
    seconds = (subscription.end_date - now).total_seconds()
    if seconds <= 0:
        return 0
    return math.ceil(seconds / 86400)


class SubscriptionStateMachine:
    def __init__(
        self,
        accounts: AccountStore,
        attempts: AttemptStore,
        catalog: PricingCatalog,
        registry: PaymentMethodRegistry,
        destinations: OwnerPaymentConfig,
        issuer: VerificationChallengeIssuer,
        dispatcher: NotificationDispatcher,
        directory: Optional[AdminDirectory] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.accounts = accounts
        self.attempts = attempts
        self.catalog = catalog
        self.registry = registry
        self.destinations = destinations
        self.issuer = issuer
        self.dispatcher = dispatcher
        self.directory = directory or AdminDirectory()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _require(self, attempt: Optional[UpgradeAttempt], allowed: Iterable[UpgradeState], event: str) -> None:
        current = attempt.state if attempt else UpgradeState.IDLE
        if current not in allowed:
            raise InvalidTransition(current.value, event)

    def _result(self, admin_id: str, attempt: Optional[UpgradeAttempt], subscription: Optional[Subscription] = None, settled: bool = False) -> TransitionResult:
        subscription = subscription or self.accounts.get_subscription(admin_id)
        if attempt is None:
            return TransitionResult(state=UpgradeState.IDLE, subscription=subscription, settled=settled)
        return TransitionResult(
            state=attempt.state,
            subscription=subscription,
            attempt_id=attempt.attempt_id,
            plan=attempt.plan,
            billing_cycle=attempt.billing_cycle,
            quoted_amount=str(attempt.quoted_amount),
            method_id=attempt.method_id,
            challenge_medium=attempt.challenge.medium if attempt.challenge else None,
        )

    def _record(self, event: str, attempt: UpgradeAttempt, **extra) -> None:
        subscription_transitions_total.inc({"event": event})
        log_event(
            "info",
            f"subscription.{event}",
            admin_id=attempt.admin_id,
            attempt_id=attempt.attempt_id,
            event_type=f"subscription.{event}",
            extra=extra or None,
        )

    # ------------------------------------------------------------------
    # wizard
    # ------------------------------------------------------------------

    def get_state(self, admin_id: str) -> TransitionResult:
        _, attempt = self.attempts.load(admin_id)
        return self._result(admin_id, attempt)

    def initiate_upgrade(self, admin_id: str, plan_id: str, cycle: BillingCycle) -> TransitionResult:
        _, attempt = self.attempts.load(admin_id)
        self._require(attempt, [UpgradeState.IDLE], "initiate_upgrade")

        price = self.catalog.get_price(plan_id, cycle)
        attempt = UpgradeAttempt(
            attempt_id=uuid.uuid4().hex,
            admin_id=admin_id,
            state=UpgradeState.CHOOSING_METHOD,
            plan=plan_id,
            billing_cycle=cycle,
            quoted_amount=price,
            started_at=self._clock(),
        )
        # expected_version=0 rejects a second attempt racing this one
        self.attempts.save(attempt, expected_version=0)
        self._record("initiate_upgrade", attempt, plan=plan_id, cycle=cycle.value)
        return self._result(admin_id, attempt)

    def select_method(self, admin_id: str, method_id: str) -> TransitionResult:
        version, attempt = self.attempts.load(admin_id)
        self._require(attempt, [UpgradeState.CHOOSING_METHOD], "select_method")

        spec = self.registry.get_spec(method_id)
        attempt = attempt.model_copy(update={
            "state": UpgradeState.ENTERING_DETAILS,
            "method_id": spec.method_id,
            "verification_medium": spec.verification_medium,
        })
        self.attempts.save(attempt, expected_version=version)
        self._record("select_method", attempt, method=method_id)
        return self._result(admin_id, attempt)

    def submit_details(self, admin_id: str, fields: Mapping[str, str]) -> TransitionResult:
        version, attempt = self.attempts.load(admin_id)
        self._require(attempt, [UpgradeState.ENTERING_DETAILS], "submit_details")

        self.registry.require_valid(attempt.method_id, fields)
        details = {str(key): str(value) for key, value in fields.items()}
        challenge = self.issuer.issue(attempt.attempt_id, admin_id, attempt.verification_medium)
        attempt = attempt.model_copy(update={
            "state": UpgradeState.VERIFYING,
            "details": details,
            "challenge": challenge,
            "failed_verifications": 0,
        })
        self.attempts.save(attempt, expected_version=version)
        self._record("submit_details", attempt, medium=challenge.medium.value)
        return self._result(admin_id, attempt)

    def resend_code(self, admin_id: str) -> TransitionResult:
        """Issue a fresh code; the previous one stops working."""
        version, attempt = self.attempts.load(admin_id)
        self._require(attempt, [UpgradeState.VERIFYING], "resend_code")

        challenge = self.issuer.issue(attempt.attempt_id, admin_id, attempt.verification_medium)
        attempt = attempt.model_copy(update={"challenge": challenge, "failed_verifications": 0})
        self.attempts.save(attempt, expected_version=version)
        self._record("resend_code", attempt, medium=challenge.medium.value)
        return self._result(admin_id, attempt)

    def submit_verification(self, admin_id: str, code: str) -> TransitionResult:
        version, attempt = self.attempts.load(admin_id)
        self._require(attempt, [UpgradeState.VERIFYING], "submit_verification")

        try:
            self.issuer.verify(attempt.challenge, code, attempt.failed_verifications)
        except InvalidCode as exc:
            if exc.reason == "mismatch":
                failed = attempt.model_copy(update={"failed_verifications": attempt.failed_verifications + 1})
                self.attempts.save(failed, expected_version=version)
            log_event(
                "warning",
                "subscription.verification_failed",
                admin_id=admin_id,
                attempt_id=attempt.attempt_id,
                event_type="subscription.verification_failed",
                error_code=exc.code,
                extra={"reason": exc.reason},
            )
            raise

        attempt = attempt.model_copy(update={"state": UpgradeState.PROCESSING})
        self.attempts.save(attempt, expected_version=version)
        self._record("submit_verification", attempt)
        return self.settle(admin_id)

    # ------------------------------------------------------------------
    # settlement
    # ------------------------------------------------------------------

    def settle(self, admin_id: str) -> TransitionResult:
        """
        Settle the attempt sitting in `processing`.

        Safe to call again for the same attempt: if its PaymentRecord is
        already in the history the attempt is simply closed.
        """
        _, attempt = self.attempts.load(admin_id)
        self._require(attempt, [UpgradeState.PROCESSING], "settle")

        subscription = self.accounts.get_subscription(admin_id)
        if subscription.has_payment_for(attempt.attempt_id):
            subscription_settlements_total.inc({"result": "duplicate"})
            saved = subscription
        else:
            now = self._clock()
            cycle = attempt.billing_cycle
            amount = self.catalog.get_price(attempt.plan, cycle)
            spec = self.registry.get_spec(attempt.method_id)
            owner_config = self.destinations.get_config(attempt.method_id)
            end_date = compute_end_date(now, cycle)

            record = PaymentRecord(
                attempt_id=attempt.attempt_id,
                amount=amount,
                date=now,
                method=spec.method_id,
                method_name=spec.name,
                status=PaymentStatus.COMPLETED,
                raw_details=attempt.details,
                owner_config_snapshot=owner_config,
            )
            updated = subscription.evolve(
                plan=attempt.plan,
                billing_cycle=cycle,
                amount=amount,
                status=SubscriptionStatus.ACTIVE,
                start_date=now,
                end_date=end_date,
                next_payment_date=end_date,
                auto_renew=True,
                payment_history=[*subscription.payment_history, record],
                payment_destination=PaymentDestination(
                    method=spec.method_id,
                    owner_config=owner_config,
                    admin_payment_details=attempt.details,
                ),
                payment_method=spec.name,
                last_payment_at=now,
                activated_at=now,
                activated_by=None,
                deactivated_at=None,
                deactivated_by=None,
            )
            # StaleSnapshot leaves the attempt in processing for resume()
            saved = self.accounts.save_subscription(admin_id, updated, expected_version=subscription.version)
            subscription_settlements_total.inc({"result": "settled"})
            self._record("settle", attempt, amount=str(amount), cycle=cycle.value)

        self.attempts.discard(admin_id)
        self._notify_once(saved, attempt)
        return self._result(admin_id, None, subscription=saved, settled=True)

    def _notify_once(self, subscription: Subscription, attempt: UpgradeAttempt) -> None:
        if check_and_set(f"notify:{attempt.attempt_id}", "settlement_notification"):
            return
        self.dispatcher.notify_owner(subscription, self.directory.get(attempt.admin_id))

    def resume(self, admin_id: str) -> TransitionResult:
        """Finish an attempt left in `processing`; otherwise just report state."""
        _, attempt = self.attempts.load(admin_id)
        if attempt is not None and attempt.state == UpgradeState.PROCESSING:
            return self.settle(admin_id)
        return self._result(admin_id, attempt)

    def abandon(self, admin_id: str) -> TransitionResult:
        """Drop an attempt that has not reached processing."""
        _, attempt = self.attempts.load(admin_id)
        self._require(
            attempt,
            [UpgradeState.CHOOSING_METHOD, UpgradeState.ENTERING_DETAILS, UpgradeState.VERIFYING],
            "abandon",
        )
        self.attempts.discard(admin_id)
        self._record("abandon", attempt)
        return self._result(admin_id, None)

    def cancel(self, admin_id: str) -> Subscription:
        """Stop renewal of an active subscription. Paid time up to end_date is kept."""
        _, attempt = self.attempts.load(admin_id)
        self._require(attempt, [UpgradeState.IDLE], "cancel")

        subscription = self.accounts.get_subscription(admin_id)
        if subscription.status != SubscriptionStatus.ACTIVE:
            raise InvalidTransition(subscription.status.value, "cancel")

        now = self._clock()
        updated = subscription.evolve(
            status=SubscriptionStatus.CANCELLED,
            auto_renew=False,
            deactivated_at=now,
            deactivated_by=admin_id,
        )
        saved = self.accounts.save_subscription(admin_id, updated, expected_version=subscription.version)
        subscription_transitions_total.inc({"event": "cancel"})
        log_event("info", "subscription.cancel", admin_id=admin_id, event_type="subscription.cancel")
        return saved
