"""Liveness and readiness checks.

BBB servers are configured per tenant, so readiness only covers the
shared database and Redis. A tenant whose BBB server is down still gets
a ready service and sees 503s on its conferencing calls.
"""

from __future__ import annotations

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from src.bbb_meetings.config import get_settings
from src.bbb_meetings.core.database import check_database
from src.bbb_meetings.core.redis import check_redis

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


@router.get("/health/ready")
async def readiness_check():
    """200 when the database and Redis both answer, 503 otherwise."""
    errors = {
        "database": await check_database(),
        "redis": await check_redis(),
    }
    checks: dict[str, str] = {}
    for name, error in errors.items():
        checks[name] = "ok" if error is None else "error"
        if error is not None:
            checks[f"{name}_error"] = error

    ready = all(error is None for error in errors.values())
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if ready else "degraded", "checks": checks},
    )
