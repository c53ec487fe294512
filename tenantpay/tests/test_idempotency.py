"""
tenantpay/tests/test_idempotency.py
Tests for idempotency key management (in memory and sqlite-backed).
"""

import pytest

from tenantpay.core import database
from tenantpay.core.idempotency import check_and_set, check_key, clear_all_keys


@pytest.fixture(params=["memory", "sql"])
def key_store(request, monkeypatch):
    if request.param == "memory":
        yield "memory"
        return
    monkeypatch.setenv("TEST_DATABASE_URL", "sqlite://")
    database.reset_engine()
    database.init_engine("sqlite://")
    database.create_all_tables()
    yield "sql"
    monkeypatch.delenv("TEST_DATABASE_URL")
    database.reset_engine()


def test_check_and_set_first_time(key_store):
    """First time seeing key returns False (not duplicate)."""
    assert check_and_set("key-1", "test_op") is False


def test_check_and_set_duplicate(key_store):
    """Second time seeing key returns True (duplicate)."""
    check_and_set("key-2", "test_op")
    assert check_and_set("key-2", "test_op") is True


def test_different_keys_are_independent(key_store):
    check_and_set("key-3", "test_op")
    assert check_and_set("key-4", "test_op") is False


def test_check_key(key_store):
    check_and_set("key-5", "test_op")
    assert check_key("key-5") is True
    assert check_key("key-nonexistent") is False


def test_clear_all_keys(key_store):
    check_and_set("key-6", "test_op")
    check_and_set("key-7", "test_op")

    clear_all_keys()

    assert check_key("key-6") is False
    assert check_key("key-7") is False
