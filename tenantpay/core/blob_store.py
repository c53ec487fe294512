"""
Key-value blob store with optimistic concurrency.

Contract:
- get(namespace, key) -> (version, payload) or None
- put(namespace, key, payload, expected_version) -> new version
  expected_version=0 means "must not exist yet"; any mismatch raises StaleSnapshot.

The in-memory store is used unless DATABASE_URL is configured, in which case
rows live in the kv_blobs table and the version check is a conditional UPDATE.
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol, Tuple

from sqlalchemy import and_, delete, insert, select, update
from sqlalchemy.exc import IntegrityError

from tenantpay.core.database import database_enabled, get_db_session, kv_blobs
from tenantpay.core.errors import StaleSnapshot


class BlobStore(Protocol):
    def get(self, namespace: str, key: str) -> Optional[Tuple[int, str]]:
        ...

    def put(self, namespace: str, key: str, payload: str, expected_version: int) -> int:
        ...

    def delete(self, namespace: str, key: str) -> None:
        ...

    def list(self, namespace: str) -> List[Tuple[str, int, str]]:
        ...


class InMemoryBlobStore:
    def __init__(self):
        self._rows: Dict[Tuple[str, str], Tuple[int, str]] = {}
        self._lock = threading.Lock()

    def get(self, namespace: str, key: str) -> Optional[Tuple[int, str]]:
        with self._lock:
            return self._rows.get((namespace, key))

    def put(self, namespace: str, key: str, payload: str, expected_version: int) -> int:
        with self._lock:
            current = self._rows.get((namespace, key))
            actual = current[0] if current else 0
            if actual != expected_version:
                raise StaleSnapshot(f"{namespace}/{key}", expected_version, actual)
            new_version = actual + 1
            self._rows[(namespace, key)] = (new_version, payload)
            return new_version

    def delete(self, namespace: str, key: str) -> None:
        with self._lock:
            self._rows.pop((namespace, key), None)

    def list(self, namespace: str) -> List[Tuple[str, int, str]]:
        with self._lock:
            return sorted(
                (key, version, payload)
                for (ns, key), (version, payload) in self._rows.items()
                if ns == namespace
            )

    def clear(self) -> None:
        with self._lock:
            self._rows.clear()


class SqlBlobStore:
    """kv_blobs-backed store. Version check happens inside the UPDATE's WHERE clause."""

    def get(self, namespace: str, key: str) -> Optional[Tuple[int, str]]:
        with get_db_session() as session:
            row = session.execute(
                select(kv_blobs.c.version, kv_blobs.c.payload).where(
                    and_(kv_blobs.c.namespace == namespace, kv_blobs.c.key == key)
                )
            ).first()
            return (row.version, row.payload) if row else None

    def put(self, namespace: str, key: str, payload: str, expected_version: int) -> int:
        now = datetime.now(timezone.utc)
        if expected_version == 0:
            try:
                with get_db_session() as session:
                    session.execute(
                        insert(kv_blobs).values(
                            namespace=namespace,
                            key=key,
                            version=1,
                            payload=payload,
                            updated_at=now,
                        )
                    )
                return 1
            except IntegrityError:
                current = self.get(namespace, key)
                raise StaleSnapshot(f"{namespace}/{key}", expected_version, current[0] if current else None)

        with get_db_session() as session:
            result = session.execute(
                update(kv_blobs)
                .where(
                    and_(
                        kv_blobs.c.namespace == namespace,
                        kv_blobs.c.key == key,
                        kv_blobs.c.version == expected_version,
                    )
                )
                .values(version=expected_version + 1, payload=payload, updated_at=now)
            )
            updated = result.rowcount
        if updated != 1:
            current = self.get(namespace, key)
            raise StaleSnapshot(f"{namespace}/{key}", expected_version, current[0] if current else 0)
        return expected_version + 1

    def delete(self, namespace: str, key: str) -> None:
        with get_db_session() as session:
            session.execute(
                delete(kv_blobs).where(
                    and_(kv_blobs.c.namespace == namespace, kv_blobs.c.key == key)
                )
            )

    def list(self, namespace: str) -> List[Tuple[str, int, str]]:
        with get_db_session() as session:
            rows = session.execute(
                select(kv_blobs.c.key, kv_blobs.c.version, kv_blobs.c.payload)
                .where(kv_blobs.c.namespace == namespace)
                .order_by(kv_blobs.c.key.asc())
            ).fetchall()
            return [(row.key, row.version, row.payload) for row in rows]


_store: Optional[BlobStore] = None


def get_blob_store() -> BlobStore:
    """Process-wide store, chosen once by DATABASE_URL."""
    global _store
    if _store is None:
        _store = SqlBlobStore() if database_enabled() else InMemoryBlobStore()
    return _store


def reset_blob_store() -> None:
    """Drop the cached store (testing only)."""
    global _store
    _store = None
