import time

import structlog
from fastapi import APIRouter, Request
from sqlalchemy import text

from calvarypay.api.envelope import error_response, success_response
from calvarypay.core.config import get_settings

logger = structlog.get_logger(__name__)

router = APIRouter()

_STARTED_AT = time.monotonic()


@router.get("/health")
async def health_check(request: Request):
    """Liveness probe. Returns 503 while draining after SIGTERM."""
    settings = get_settings()
    if getattr(request.app.state, "shutting_down", False):
        return error_response(503, "SHUTTING_DOWN", "Service is shutting down")
    return success_response(
        {
            "status": "healthy",
            "service": settings.service_name,
            "uptime": round(time.monotonic() - _STARTED_AT, 3),
        }
    )


@router.get("/health/detailed")
async def detailed_health_check(request: Request):
    """Readiness probe — checks the database and the cache."""
    dependencies: dict[str, dict] = {}

    start = time.monotonic()
    try:
        async with request.app.state.session_factory() as session:
            await session.execute(text("SELECT 1"))
        dependencies["database"] = {"status": "healthy", "responseTime": _elapsed_ms(start)}
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e))
        dependencies["database"] = {"status": "unhealthy"}

    # The cache fails open, so it degrades the report without failing readiness
    start = time.monotonic()
    try:
        await request.app.state.redis.ping()
        dependencies["cache"] = {"status": "healthy", "responseTime": _elapsed_ms(start)}
    except Exception as e:
        logger.warning("cache_health_check_failed", error=str(e))
        dependencies["cache"] = {"status": "degraded"}

    if dependencies["database"]["status"] != "healthy":
        return error_response(503, "HEALTH_CHECK_FAILED", "Service health check failed", details=dependencies)

    overall = "healthy" if dependencies["cache"]["status"] == "healthy" else "degraded"
    return success_response({"status": overall, "dependencies": dependencies})


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
