# tenantpay/conftest.py
from datetime import datetime, timedelta, timezone
from typing import List, Tuple

import pytest
from fastapi.testclient import TestClient

from tenantpay.core.blob_store import InMemoryBlobStore
from tenantpay.core.config import settings
from tenantpay.core.idempotency import clear_all_keys
from tenantpay.core.metrics import METRICS
from tenantpay.models.payment_method import VerificationMedium

OWNER_KEY = "owner-secret"


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSender:
    """CodeSender that remembers what it sent, so tests can read the code."""

    def __init__(self):
        self.sent: List[Tuple[str, VerificationMedium, str]] = []

    def send(self, admin_id: str, medium: VerificationMedium, code: str) -> None:
        self.sent.append((admin_id, medium, code))

    @property
    def last_code(self) -> str:
        return self.sent[-1][2]


@pytest.fixture(autouse=True)
def clean_state(monkeypatch):
    """Keep every test on in-memory storage with no leftover keys or counters."""
    for var in ("DATABASE_URL", "TEST_DATABASE_URL", "OWNER_INBOX_URL"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(settings, "DATABASE_URL", None)
    monkeypatch.setattr(settings, "OWNER_INBOX_URL", None)
    monkeypatch.setattr(settings, "OWNER_KEY", OWNER_KEY)
    monkeypatch.setattr(settings, "VERIFICATION_CODE_TTL_SECONDS", 0)
    monkeypatch.setattr(settings, "VERIFICATION_MAX_ATTEMPTS", 0)
    clear_all_keys()
    METRICS.reset()
    yield
    clear_all_keys()


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return InMemoryBlobStore()


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def services(store, sender, clock):
    from tenantpay.api.deps import build_services
    from tenantpay.features.notifications.inbox import InMemoryInbox

    services = build_services(store=store, inbox=InMemoryInbox(), sender=sender, clock=clock)
    yield services
    # nothing from this test may land after the next one resets counters
    services.dispatcher.flush(timeout=5)


@pytest.fixture
def machine(services):
    return services.machine


@pytest.fixture
def client(services):
    from tenantpay.main import create_app

    return TestClient(create_app(services))


@pytest.fixture
def owner_headers():
    return {"X-Owner-Key": OWNER_KEY}


