"""
SQLAlchemy plumbing for the optional database backend.

Two tables live here: ``kv_blobs`` holds every versioned snapshot
(subscriptions, in-flight upgrade attempts, pricing overrides, owner payment
config) and ``idempotency_keys`` records side effects that already ran.
When no database URL is configured nothing in this module is touched and the
stores stay in process memory.
"""
import os
from contextlib import contextmanager
from typing import Any, Dict, Optional

from sqlalchemy import Column, DateTime, Integer, MetaData, PrimaryKeyConstraint, String, Table, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool
from sqlalchemy.sql import func

from tenantpay.core.config import settings

metadata = MetaData()

kv_blobs = Table(
    "kv_blobs",
    metadata,
    Column("namespace", String(64), nullable=False),
    Column("key", String(255), nullable=False),
    Column("version", Integer, nullable=False),
    Column("payload", Text, nullable=False),
    Column("updated_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
    PrimaryKeyConstraint("namespace", "key", name="pk_kv_blobs"),
)

idempotency_keys = Table(
    "idempotency_keys",
    metadata,
    Column("key", String(255), primary_key=True),
    Column("scope", String(100), nullable=False),
    Column("created_at", DateTime(timezone=True), server_default=func.now(), nullable=False),
)

# Pool sizing for server databases (sqlite uses one shared connection)
POOL_OPTIONS: Dict[str, Any] = {
    "poolclass": QueuePool,
    "pool_size": 10,
    "max_overflow": 20,
    "pool_timeout": 30,
    "pool_recycle": 3600,
}

_engine: Optional[Engine] = None
_session_factory = None


def get_database_url() -> Optional[str]:
    """TEST_DATABASE_URL wins over DATABASE_URL so test runs never hit a real database."""
    return os.getenv("TEST_DATABASE_URL") or os.getenv("DATABASE_URL") or settings.DATABASE_URL


def database_enabled() -> bool:
    return bool(get_database_url())


def _engine_options(url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        # In-memory sqlite only survives while its single connection does
        return {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
    return dict(POOL_OPTIONS)


def init_engine(database_url: Optional[str] = None) -> Engine:
    global _engine, _session_factory

    url = database_url or get_database_url()
    if not url:
        raise ValueError("DATABASE_URL is not configured; set it in the environment or .env")

    _engine = create_engine(url, **_engine_options(url))
    _session_factory = sessionmaker(bind=_engine, autocommit=False, autoflush=False)
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        return init_engine()
    return _engine


def get_session_factory():
    if _session_factory is None:
        init_engine()
    return _session_factory


def reset_engine() -> None:
    """Drop the current engine so the next call binds to a fresh URL."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine, _session_factory = None, None


@contextmanager
def get_db_session():
    """Yield a session that commits on success and rolls back on any error."""
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables() -> None:
    metadata.create_all(get_engine())
