"""
Health and dependency endpoints.
"""

from __future__ import annotations

import time

from fastapi import APIRouter, HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

import semantic_memory.config as config
from semantic_memory.db import DB, get_schema_revisions
from semantic_memory.mcp import registered_tools
from semantic_memory.services import memory_shared


router = APIRouter()


def _vector_required() -> bool:
    return config.DB_BACKEND_EFFECTIVE == "postgres" and config.VECTOR_BACKEND_EFFECTIVE == "pgvector"


def _check_db_health() -> dict:
    if DB.engine is None:
        return {"ok": False, "error": "db_not_initialized"}

    try:
        with DB.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            ext_version = None
            pgvector_installed = True
            if _vector_required():
                ext_version = conn.execute(
                    text("SELECT extversion FROM pg_extension WHERE extname = 'vector'")
                ).scalar()
                pgvector_installed = bool(ext_version)
    except SQLAlchemyError as exc:
        return {"ok": False, "error": type(exc).__name__}

    current_rev, head_rev = get_schema_revisions(DB.engine)
    schema_ok = head_rev is None or current_rev == head_rev
    return {
        "ok": schema_ok,
        "pgvector_installed": pgvector_installed,
        "pgvector_version": ext_version,
        "schema_revision": current_rev,
        "schema_expected": head_rev,
        "schema_up_to_date": schema_ok,
    }


def _check_embedding_health(check_external: bool) -> dict:
    status = memory_shared.embedding_health(probe=False)
    status["checked"] = False

    if status["status"] in {"disabled", "unavailable"} or not check_external:
        if status["status"] == "unknown":
            status["status"] = "ready"
        return status

    if not config.EMBEDDING_HEALTHCHECK_ENABLED:
        status["status"] = "skipped"
        return status

    start = time.time()
    status = memory_shared.embedding_health(probe=True)
    status["checked"] = True
    status["latency_ms"] = int((time.time() - start) * 1000)
    return status


def _overall_status(db_health: dict, embedding_status: dict) -> str:
    if not db_health.get("ok") or (_vector_required() and not db_health.get("pgvector_installed")):
        raise HTTPException(
            status_code=503,
            detail={"status": "unhealthy", "database": db_health, "embedding_provider": embedding_status},
        )
    # Stored memories stay readable without embeddings; new writes and searches do not.
    if embedding_status["status"] in {"disabled", "unavailable"}:
        return "degraded"
    return "healthy"


@router.get("/health")
async def health():
    """Health check endpoint."""
    db_health = _check_db_health()
    embedding_status = _check_embedding_health(check_external=False)
    return {
        "status": _overall_status(db_health, embedding_status),
        "service": config.SERVICE_NAME,
        "version": config.SERVICE_VERSION,
        "database": db_health,
        "embedding_provider": embedding_status,
    }


@router.get("/health/deps")
async def health_deps():
    """Dependency health checks including an embedding provider probe."""
    db_health = _check_db_health()
    embedding_status = _check_embedding_health(check_external=True)
    return {
        "status": _overall_status(db_health, embedding_status),
        "service": config.SERVICE_NAME,
        "database": db_health,
        "embedding_provider": embedding_status,
        "tools": registered_tools(),
    }
