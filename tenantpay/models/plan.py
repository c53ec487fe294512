"""
tenantpay/models/plan.py

Plan and billing-cycle models.

A plan is a named tier with one price per billing cycle. Plans are
immutable; the owner replaces prices through the pricing catalog.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field

from tenantpay.core.errors import ValidationError


class BillingCycle(str, Enum):
    """Recurrence period. Duration is derived, never stored."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ANNUALLY = "annually"

    @classmethod
    def parse(cls, value: str) -> "BillingCycle":
        """Parse a cycle id, accepting the legacy `annual` spelling."""
        normalized = (value or "").strip().lower()
        if normalized == "annual":
            normalized = "annually"
        try:
            return cls(normalized)
        except ValueError:
            raise ValidationError(f"Unknown billing cycle: {value}", code="unknown_cycle")

    @property
    def duration(self) -> timedelta:
        return cycle_duration(self)


_CYCLE_DAYS = {
    BillingCycle.WEEKLY: 7,
    BillingCycle.MONTHLY: 30,
    BillingCycle.ANNUALLY: 365,
}


def cycle_duration(cycle: BillingCycle) -> timedelta:
    return timedelta(days=_CYCLE_DAYS[cycle])


def compute_end_date(now: datetime, cycle: BillingCycle) -> datetime:
    """End of the paid period starting at `now` (also the next payment date)."""
    return now + cycle_duration(cycle)


class Plan(BaseModel):
    """
    Plan represents a paid tier.

    Examples:
    - premium

    `price` maps every billing cycle the plan is sold on to its amount.
    """
    model_config = ConfigDict(frozen=True)

    plan_id: str
    name: str
    description: str = ""
    price: Dict[BillingCycle, Decimal]
    features: List[str] = Field(default_factory=list)
    currency: str = "USD"
