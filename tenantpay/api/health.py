"""
Liveness and readiness endpoints.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from tenantpay.core.database import database_enabled, get_db_session

logger = logging.getLogger("tenantpay")

router = APIRouter(tags=["health"])


@router.get("/healthz")
def healthz():
    """Process is up; touches no storage."""
    return {"status": "ok"}


@router.get("/readyz")
def readyz():
    """Readiness check: database connectivity when one is configured."""
    if not database_enabled():
        return {"status": "ok", "storage": "memory"}
    try:
        with get_db_session() as session:
            session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("readyz.db_unavailable", extra={"error_code": type(exc).__name__})
        return JSONResponse(status_code=503, content={"status": "unavailable", "storage": "database"})
    return {"status": "ok", "storage": "database"}
