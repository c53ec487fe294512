"""
tenantpay/features/subscriptions/store.py

Account and upgrade-attempt persistence on top of the blob store.

Subscriptions are stored as JSON snapshots (namespace "subscriptions"); the
blob version is the snapshot's optimistic-concurrency token. Upgrade
attempts (namespace "upgrade_attempts") live only until they settle or are
abandoned, which is also the lifetime of their verification challenge.
"""

import threading
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from tenantpay.core.blob_store import BlobStore, get_blob_store
from tenantpay.core.errors import StaleSnapshot
from tenantpay.models.notification import AdminProfile
from tenantpay.models.subscription import Subscription, UpgradeAttempt, trial_subscription

SUBSCRIPTION_NAMESPACE = "subscriptions"
ATTEMPT_NAMESPACE = "upgrade_attempts"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AccountStore:
    def __init__(self, store: Optional[BlobStore] = None, clock: Optional[Callable[[], datetime]] = None):
        self._store = store or get_blob_store()
        self._clock = clock or _utcnow

    def _decode(self, version: int, payload: str) -> Subscription:
        return Subscription.model_validate_json(payload).model_copy(update={"version": version})

    def get_subscription(self, admin_id: str) -> Subscription:
        """
        Current snapshot for `admin_id`.

        An admin seen for the first time starts on the default trial, which is
        written immediately so its dates do not drift between reads.
        """
        row = self._store.get(SUBSCRIPTION_NAMESPACE, admin_id)
        if row is not None:
            return self._decode(*row)
        try:
            return self.save_subscription(admin_id, trial_subscription(admin_id, self._clock()), expected_version=0)
        except StaleSnapshot:
            # Another request created it first
            return self._decode(*self._store.get(SUBSCRIPTION_NAMESPACE, admin_id))

    def save_subscription(self, admin_id: str, subscription: Subscription, expected_version: int) -> Subscription:
        """Write `subscription` if the stored version is still `expected_version`; return it re-versioned."""
        payload = subscription.model_dump_json(exclude={"version"})
        version = self._store.put(SUBSCRIPTION_NAMESPACE, admin_id, payload, expected_version=expected_version)
        return subscription.model_copy(update={"version": version})

    def list_subscriptions(self) -> List[Subscription]:
        return [self._decode(version, payload) for _, version, payload in self._store.list(SUBSCRIPTION_NAMESPACE)]


class AttemptStore:
    def __init__(self, store: Optional[BlobStore] = None):
        self._store = store or get_blob_store()

    def load(self, admin_id: str) -> Tuple[int, Optional[UpgradeAttempt]]:
        """(version, attempt); (0, None) when the admin has nothing in flight."""
        row = self._store.get(ATTEMPT_NAMESPACE, admin_id)
        if row is None:
            return 0, None
        version, payload = row
        return version, UpgradeAttempt.model_validate_json(payload)

    def save(self, attempt: UpgradeAttempt, expected_version: int) -> int:
        return self._store.put(ATTEMPT_NAMESPACE, attempt.admin_id, attempt.model_dump_json(), expected_version=expected_version)

    def discard(self, admin_id: str) -> None:
        self._store.delete(ATTEMPT_NAMESPACE, admin_id)


class AdminDirectory:
    """Names and emails of admins, used to address owner notifications."""

    def __init__(self):
        self._profiles: Dict[str, AdminProfile] = {}
        self._lock = threading.Lock()

    def register(self, profile: AdminProfile) -> None:
        with self._lock:
            self._profiles[profile.admin_id] = profile

    def get(self, admin_id: str) -> AdminProfile:
        with self._lock:
            profile = self._profiles.get(admin_id)
        return profile or AdminProfile(admin_id=admin_id, name=admin_id)

    def clear(self) -> None:
        with self._lock:
            self._profiles.clear()
