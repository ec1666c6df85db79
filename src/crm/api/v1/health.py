"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready). Readiness checks
the SQL store and Redis; the spreadsheet fallback is not probed because a
degraded primary is still servable through it.
"""

from __future__ import annotations

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.crm.config import get_settings
from src.crm.core.database import get_engine
from src.crm.core.redis import get_redis_pool

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check. No external dependencies are checked."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies() -> dict:
    """Check database and Redis connectivity. Returns check results dict."""
    checks: dict = {"database": "ok", "redis": "ok"}

    settings = get_settings()
    if not settings.SQL_READS_ENABLED:
        checks["database"] = "disabled"
    else:
        try:
            engine = get_engine()
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as e:
            checks["database"] = "error"
            checks["database_error"] = str(e)

    try:
        redis = get_redis_pool()
        pong = await redis.ping()
        if not pong:
            checks["redis"] = "error"
            checks["redis_error"] = "PING did not return PONG"
    except Exception as e:
        checks["redis"] = "error"
        checks["redis_error"] = str(e)

    return checks


@router.get("/health/ready")
async def readiness_check():
    """Readiness check. A SQL outage is reported as degraded, since reads fall back."""
    checks = await _check_dependencies()
    degraded = checks["database"] == "error" or checks["redis"] == "error"
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={"status": "degraded" if degraded else "ready", "checks": checks},
    )
