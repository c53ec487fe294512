"""
Owner payment destinations.

Where the owner receives money for each payment method (bank account,
PayPal business account, mobile money number, crypto wallet). Settlement
snapshots the config for the chosen method into the subscription's payment
destination.
"""

import json
from typing import Dict, List, Mapping, Optional

from tenantpay.core.blob_store import BlobStore, get_blob_store
from tenantpay.core.errors import UnknownMethod, ValidationError
from tenantpay.core.logging import log_event

OWNER_CONFIG_NAMESPACE = "owner_payment_config"

_BANK_FIELDS = {
    "enabled": False,
    "accountName": "",
    "accountNumber": "",
    "bankName": "",
    "swiftCode": "",
    "routingNumber": "",
}

DEFAULT_OWNER_CONFIG: Dict[str, Dict[str, object]] = {
    "credit_card": dict(_BANK_FIELDS),
    "bank_transfer": dict(_BANK_FIELDS),
    "paypal": {"enabled": False, "email": "", "businessName": ""},
    "mobile_money": {"enabled": False, "provider": "", "phoneNumber": "", "accountName": ""},
    "cryptocurrency": {"enabled": False, "walletAddress": "", "network": "", "currency": ""},
}

# Fields an enabled destination must carry
_REQUIRED_WHEN_ENABLED = {
    "credit_card": [("accountName", "account name"), ("accountNumber", "account number"), ("bankName", "bank name")],
    "bank_transfer": [("accountName", "account name"), ("accountNumber", "account number"), ("bankName", "bank name")],
    "paypal": [("email", "email"), ("businessName", "business name")],
    "mobile_money": [("provider", "provider"), ("phoneNumber", "phone number"), ("accountName", "account name")],
    "cryptocurrency": [("walletAddress", "wallet address"), ("network", "network"), ("currency", "currency")],
}


def _coerce_enabled(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


class OwnerPaymentConfig:
    def __init__(self, store: Optional[BlobStore] = None):
        self._store = store or get_blob_store()

    def _defaults(self, method_id: str) -> Dict[str, object]:
        if method_id not in DEFAULT_OWNER_CONFIG:
            raise UnknownMethod(method_id)
        return dict(DEFAULT_OWNER_CONFIG[method_id])

    def get_config(self, method_id: str) -> Dict[str, object]:
        config = self._defaults(method_id)
        row = self._store.get(OWNER_CONFIG_NAMESPACE, method_id)
        if row is not None:
            config.update(json.loads(row[1]))
        return config

    def validate_config(self, method_id: str, values: Mapping[str, object]) -> List[str]:
        """Return human-readable problems; disabled destinations are never checked."""
        if method_id not in _REQUIRED_WHEN_ENABLED:
            raise UnknownMethod(method_id)
        if not _coerce_enabled(values.get("enabled")):
            return []
        errors = []
        for key, label in _REQUIRED_WHEN_ENABLED[method_id]:
            if not str(values.get(key) or "").strip():
                errors.append(f"{method_id} {label} is required")
        return errors

    def set_config(self, method_id: str, values: Mapping[str, object], actor: Optional[str] = None) -> Dict[str, object]:
        merged = self._defaults(method_id)
        unknown = sorted(set(values) - set(merged))
        if unknown:
            raise ValidationError(f"Unknown config keys: {', '.join(unknown)}", code="unknown_config_key")
        for key, value in values.items():
            merged[key] = _coerce_enabled(value) if key == "enabled" else str(value)

        errors = self.validate_config(method_id, merged)
        if errors:
            raise ValidationError("; ".join(errors), code="invalid_payment_config")

        row = self._store.get(OWNER_CONFIG_NAMESPACE, method_id)
        version = row[0] if row else 0
        self._store.put(OWNER_CONFIG_NAMESPACE, method_id, json.dumps(merged), expected_version=version)
        log_event(
            "info",
            "owner.payment_config_set",
            event_type="owner.payment_config_set",
            extra={"method": method_id, "enabled": merged["enabled"], "actor": actor},
        )
        return merged

    def describe(self, method_id: str) -> str:
        """One-line display of the destination, e.g. "Equity Bank - Acme Ltd"."""
        config = self.get_config(method_id)
        if method_id in ("credit_card", "bank_transfer"):
            return f"{config['bankName']} - {config['accountName']}"
        if method_id == "paypal":
            return f"{config['businessName']} ({config['email']})"
        if method_id == "mobile_money":
            return f"{config['provider']} - {config['phoneNumber']}"
        if method_id == "cryptocurrency":
            return f"{config['currency']} ({config['network']})"
        return method_id
