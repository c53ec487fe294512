"""
tenantpay/models/subscription.py

Subscription snapshot, payment records and the upgrade attempt.

Snapshots are frozen. Every change goes through `evolve()`, which re-runs
validation so the invariants below hold for every stored snapshot:
- end_date >= start_date
- payment_history is ordered by date ascending
- status=active implies the last payment completed, unless the owner
  force-activated the subscription (activated_by is set)
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from tenantpay.models.payment_method import VerificationChallenge, VerificationMedium
from tenantpay.models.plan import BillingCycle, compute_end_date


class SubscriptionStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class PaymentStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentRecord(BaseModel):
    """Immutable once appended to a subscription's history."""

    model_config = ConfigDict(frozen=True)

    attempt_id: str
    amount: Decimal
    date: datetime
    method: str
    method_name: Optional[str] = None
    status: PaymentStatus
    raw_details: Dict[str, str] = Field(default_factory=dict)
    owner_config_snapshot: Dict[str, Any] = Field(default_factory=dict)


class PaymentDestination(BaseModel):
    """Where the last payment was routed: owner's account plus what the admin paid with."""

    model_config = ConfigDict(frozen=True)

    method: str
    owner_config: Dict[str, Any] = Field(default_factory=dict)
    admin_payment_details: Dict[str, str] = Field(default_factory=dict)


class Subscription(BaseModel):
    model_config = ConfigDict(frozen=True)

    admin_id: str
    plan: str
    billing_cycle: BillingCycle
    amount: Decimal = Decimal("0")
    status: SubscriptionStatus
    start_date: datetime
    end_date: datetime
    next_payment_date: Optional[datetime] = None
    auto_renew: bool = False
    payment_history: List[PaymentRecord] = Field(default_factory=list)
    payment_destination: Optional[PaymentDestination] = None
    payment_method: Optional[str] = None
    last_payment_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    activated_by: Optional[str] = None
    deactivated_at: Optional[datetime] = None
    deactivated_by: Optional[str] = None
    # Store-assigned optimistic concurrency token (0 = never saved)
    version: int = 0

    @model_validator(mode="after")
    def _check_invariants(self) -> "Subscription":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not precede start_date")
        dates = [record.date for record in self.payment_history]
        if dates != sorted(dates):
            raise ValueError("payment_history must be ordered by date ascending")
        if self.status == SubscriptionStatus.ACTIVE and self.activated_by is None:
            if not self.payment_history or self.payment_history[-1].status != PaymentStatus.COMPLETED:
                raise ValueError("active subscription requires a completed last payment")
        return self

    def evolve(self, **changes: Any) -> "Subscription":
        """Return a validated copy with `changes` applied."""
        data = self.model_dump()
        data.update(changes)
        return type(self).model_validate(data)

    def has_payment_for(self, attempt_id: str) -> bool:
        return any(record.attempt_id == attempt_id for record in self.payment_history)


def trial_subscription(admin_id: str, now: datetime, plan: str = "premium") -> Subscription:
    """Default state for an admin who has never paid: 30-day monthly trial."""
    return Subscription(
        admin_id=admin_id,
        plan=plan,
        billing_cycle=BillingCycle.MONTHLY,
        amount=Decimal("0"),
        status=SubscriptionStatus.TRIAL,
        start_date=now,
        end_date=compute_end_date(now, BillingCycle.MONTHLY),
        auto_renew=False,
    )


class UpgradeState(str, Enum):
    """Upgrade wizard lifecycle: idle -> choosing_method -> entering_details -> verifying -> processing -> idle"""

    IDLE = "idle"
    CHOOSING_METHOD = "choosing_method"
    ENTERING_DETAILS = "entering_details"
    VERIFYING = "verifying"
    PROCESSING = "processing"


class UpgradeAttempt(BaseModel):
    """In-flight upgrade for one admin. Discarded once settled or abandoned."""

    model_config = ConfigDict(frozen=True)

    attempt_id: str
    admin_id: str
    state: UpgradeState
    plan: str
    billing_cycle: BillingCycle
    quoted_amount: Decimal
    method_id: Optional[str] = None
    verification_medium: Optional[VerificationMedium] = None
    details: Dict[str, str] = Field(default_factory=dict)
    challenge: Optional[VerificationChallenge] = None
    failed_verifications: int = 0
    started_at: datetime
