"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks. Salesforce
availability is reported but never makes the service unready: when it is
down, records still save and sync falls back to simulation.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.referral_hub.config import get_settings
from src.referral_hub.core.database import get_engine

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check. No external dependencies are checked."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(request: Request) -> dict:
    """Check database connectivity and report Salesforce session state."""
    checks: dict = {"database": "ok", "salesforce": "disconnected"}

    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    manager = getattr(request.app.state, "session_manager", None)
    if manager is None:
        checks["salesforce"] = "not_initialized"
    else:
        session_status = manager.status()
        checks["salesforce"] = session_status["state"]
        checks["salesforce_credential_source"] = session_status["credential_source"]

    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: 200 if the database is reachable, 503 otherwise."""
    checks = await _check_dependencies(request)
    healthy = checks.get("database") == "ok"

    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if healthy else "degraded",
            "checks": checks,
        },
    )
