"""
tenantpay/models/payment_method.py

Schema-driven payment method definitions and verification challenges.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class VerificationMedium(str, Enum):
    EMAIL = "email"
    SMS = "sms"


class FieldSpec(BaseModel):
    """One input the admin fills in for a payment method."""

    model_config = ConfigDict(frozen=True)

    name: str
    label: str
    type: str = "text"
    required: bool = True
    options: Optional[List[str]] = None


class PaymentMethodSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    method_id: str
    name: str
    description: str = ""
    required_fields: List[FieldSpec]
    verification_medium: VerificationMedium


class VerificationChallenge(BaseModel):
    """One-time code bound to a single upgrade attempt. Never persisted past it."""

    model_config = ConfigDict(frozen=True)

    code: str = Field(pattern=r"^[0-9]{6}$")
    issued_at: datetime
    medium: VerificationMedium
    attempt_id: str
