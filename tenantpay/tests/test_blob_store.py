"""
tenantpay/tests/test_blob_store.py
Optimistic concurrency contract, in memory and on SQL (sqlite).
"""

import pytest

from tenantpay.core import database
from tenantpay.core.blob_store import InMemoryBlobStore, SqlBlobStore
from tenantpay.core.errors import StaleSnapshot
from tenantpay.features.subscriptions.store import AccountStore
from tenantpay.models.subscription import SubscriptionStatus


@pytest.fixture
def sql_store():
    database.reset_engine()
    database.init_engine("sqlite://")
    database.create_all_tables()
    yield SqlBlobStore()
    database.reset_engine()


@pytest.fixture(params=["memory", "sql"])
def any_store(request):
    if request.param == "memory":
        return InMemoryBlobStore()
    return request.getfixturevalue("sql_store")


def test_get_missing(any_store):
    assert any_store.get("ns", "k") is None


def test_create_then_update(any_store):
    assert any_store.put("ns", "k", "v1", expected_version=0) == 1
    assert any_store.put("ns", "k", "v2", expected_version=1) == 2
    assert any_store.get("ns", "k") == (2, "v2")


def test_create_twice_is_stale(any_store):
    any_store.put("ns", "k", "v1", expected_version=0)
    with pytest.raises(StaleSnapshot) as exc:
        any_store.put("ns", "k", "other", expected_version=0)
    assert exc.value.actual_version == 1
    assert any_store.get("ns", "k") == (1, "v1")


def test_stale_update_rejected(any_store):
    any_store.put("ns", "k", "v1", expected_version=0)
    any_store.put("ns", "k", "v2", expected_version=1)
    with pytest.raises(StaleSnapshot) as exc:
        any_store.put("ns", "k", "lost", expected_version=1)
    assert exc.value.expected_version == 1
    assert exc.value.actual_version == 2
    assert exc.value.status_code == 409


def test_update_missing_key_is_stale(any_store):
    with pytest.raises(StaleSnapshot):
        any_store.put("ns", "nope", "v", expected_version=3)


def test_namespaces_are_isolated_and_listed(any_store):
    any_store.put("a", "k2", "x", expected_version=0)
    any_store.put("a", "k1", "y", expected_version=0)
    any_store.put("b", "k1", "z", expected_version=0)
    assert any_store.list("a") == [("k1", 1, "y"), ("k2", 1, "x")]
    any_store.delete("a", "k1")
    assert any_store.get("a", "k1") is None
    assert any_store.get("b", "k1") == (1, "z")


def test_account_store_on_sql(sql_store, clock):
    accounts = AccountStore(sql_store, clock=clock)
    trial = accounts.get_subscription("admin-1")
    assert trial.status == SubscriptionStatus.TRIAL
    assert trial.version == 1

    # Two writers start from the same snapshot; the second loses
    winner = trial.evolve(auto_renew=True)
    loser = trial.evolve(plan="premium-legacy")
    saved = accounts.save_subscription("admin-1", winner, expected_version=trial.version)
    assert saved.version == 2
    with pytest.raises(StaleSnapshot):
        accounts.save_subscription("admin-1", loser, expected_version=trial.version)

    reread = accounts.get_subscription("admin-1")
    assert reread.auto_renew is True
    assert reread.plan == "premium"
    assert reread.end_date == trial.end_date


def test_trial_is_stable_across_reads(store, clock):
    accounts = AccountStore(store, clock=clock)
    first = accounts.get_subscription("admin-1")
    clock.advance(days=2)
    assert accounts.get_subscription("admin-1").start_date == first.start_date
