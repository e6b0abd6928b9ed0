"""Liveness and readiness probes."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import inspect, text

from plansync.core.database import get_engine, metadata

logger = logging.getLogger("plansync.health")

root_router = APIRouter(tags=["health"])

REQUIRED_TABLES = sorted(metadata.tables)


def _unready(detail: str) -> JSONResponse:
    return JSONResponse(status_code=503, content={"status": "error", "detail": detail})


@root_router.get("/healthz")
def healthz():
    return {"status": "ok"}


@root_router.get("/readyz")
def readyz():
    """Ready once the database answers and every plan table exists."""
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        existing = set(inspect(engine).get_table_names())
    except Exception:
        logger.error("readyz.failed", exc_info=True, extra={"error_code": "database_unreachable"})
        return _unready("database unreachable")

    missing = [name for name in REQUIRED_TABLES if name not in existing]
    if missing:
        logger.warning("readyz.missing_tables", extra={"error_code": "missing_tables"})
        return _unready("missing tables: " + ", ".join(missing))
    return {"status": "ok"}
