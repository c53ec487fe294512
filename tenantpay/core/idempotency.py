"""
Once-only markers for side effects.

The settlement path claims ``notify:<attempt_id>`` before telling the owner,
so a resumed or retried settlement never produces a second notification.
Keys go to the ``idempotency_keys`` table when a database is configured and
to a process-local set otherwise.
"""

import threading
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from tenantpay.core.database import database_enabled, get_db_session, idempotency_keys

_seen_keys: set = set()
_seen_lock = threading.Lock()


def _claim_in_database(key: str, scope: str) -> bool:
    try:
        with get_db_session() as session:
            session.execute(
                idempotency_keys.insert().values(key=key, scope=scope, created_at=datetime.now(timezone.utc))
            )
    except IntegrityError:
        return True
    return False


def check_and_set(key: str, operation: str = "generic") -> bool:
    """
    Atomically claim ``key``.

    Returns True when the key had already been claimed (the caller should
    skip its side effect) and False when this call claimed it.
    """
    if database_enabled():
        return _claim_in_database(key, operation)
    with _seen_lock:
        duplicate = key in _seen_keys
        _seen_keys.add(key)
    return duplicate


def check_key(key: str) -> bool:
    if database_enabled():
        with get_db_session() as session:
            row = session.execute(select(idempotency_keys.c.key).where(idempotency_keys.c.key == key)).first()
        return row is not None
    with _seen_lock:
        return key in _seen_keys


def clear_all_keys() -> None:
    """Forget every claimed key (tests only)."""
    if database_enabled():
        with get_db_session() as session:
            session.execute(idempotency_keys.delete())
    with _seen_lock:
        _seen_keys.clear()
