"""
Payment method registry.

Static, schema-driven definitions of the payment methods an admin can pay
with. Validation is presence-only: a field is missing when it is absent,
empty, or whitespace.
"""

from typing import Dict, List, Mapping, Optional

from tenantpay.core.errors import MissingFields, UnknownMethod
from tenantpay.models.payment_method import FieldSpec, PaymentMethodSpec, VerificationMedium

MOBILE_MONEY_PROVIDERS = ["M-Pesa", "Airtel Money", "MTN Mobile Money"]

DEFAULT_METHODS: List[PaymentMethodSpec] = [
    PaymentMethodSpec(
        method_id="credit_card",
        name="Credit Card",
        description="Pay with Visa, MasterCard, or American Express",
        verification_medium=VerificationMedium.EMAIL,
        required_fields=[
            FieldSpec(name="cardNumber", label="Card Number"),
            FieldSpec(name="cardholderName", label="Cardholder Name"),
            FieldSpec(name="expiryDate", label="Expiry Date"),
            FieldSpec(name="cvv", label="CVV", type="password"),
        ],
    ),
    PaymentMethodSpec(
        method_id="bank_transfer",
        name="Bank Transfer",
        description="Direct bank transfer to our account",
        verification_medium=VerificationMedium.SMS,
        required_fields=[
            FieldSpec(name="accountNumber", label="Account Number"),
            FieldSpec(name="bankName", label="Bank Name"),
            FieldSpec(name="routingNumber", label="Routing Number"),
        ],
    ),
    PaymentMethodSpec(
        method_id="paypal",
        name="PayPal",
        description="Pay with your PayPal account",
        verification_medium=VerificationMedium.EMAIL,
        required_fields=[
            FieldSpec(name="paypalEmail", label="PayPal Email", type="email"),
        ],
    ),
    PaymentMethodSpec(
        method_id="mobile_money",
        name="Mobile Money",
        description="Pay with mobile money services",
        verification_medium=VerificationMedium.SMS,
        required_fields=[
            FieldSpec(name="phoneNumber", label="Phone Number", type="tel"),
            FieldSpec(name="provider", label="Provider", type="select", options=MOBILE_MONEY_PROVIDERS),
        ],
    ),
]


class PaymentMethodRegistry:
    def __init__(self, methods: Optional[List[PaymentMethodSpec]] = None):
        self._specs: Dict[str, PaymentMethodSpec] = {
            spec.method_id: spec for spec in (methods or DEFAULT_METHODS)
        }

    def get_spec(self, method_id: str) -> PaymentMethodSpec:
        spec = self._specs.get(method_id)
        if spec is None:
            raise UnknownMethod(method_id)
        return spec

    def list_specs(self) -> List[PaymentMethodSpec]:
        return list(self._specs.values())

    def validate(self, method_id: str, fields: Mapping[str, str]) -> List[str]:
        """Return names of required fields that are absent or blank, in schema order."""
        spec = self.get_spec(method_id)
        missing = []
        for field in spec.required_fields:
            if not field.required:
                continue
            value = fields.get(field.name)
            if value is None or not str(value).strip():
                missing.append(field.name)
        return missing

    def require_valid(self, method_id: str, fields: Mapping[str, str]) -> None:
        missing = self.validate(method_id, fields)
        if missing:
            raise MissingFields(missing)
