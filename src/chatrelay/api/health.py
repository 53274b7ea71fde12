import asyncio
from datetime import UTC, datetime

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from opentelemetry import trace

from chatrelay.api.dependencies import get_cache
from chatrelay.cache import ResponseCache
from chatrelay.config import settings
from chatrelay.core.timeouts import TIMEOUT_CONFIG

router = APIRouter(prefix="/health", tags=["health"])
log = structlog.get_logger()
tracer = trace.get_tracer(__name__)


@router.get("")
async def health() -> JSONResponse:
    return JSONResponse(
        content={
            "status": "healthy",
            "timestamp": datetime.now(UTC).isoformat(),
            "version": settings.app_version,
            "environment": settings.environment,
        }
    )


@router.get("/live")
async def liveness() -> JSONResponse:
    """Kubernetes liveness probe: always returns 200 if the process is running."""
    return JSONResponse(content={"status": "alive"})


@router.get("/ready")
async def readiness(cache: ResponseCache | None = Depends(get_cache)) -> JSONResponse:
    """Kubernetes readiness probe: pings the response cache backend when caching is on."""
    checks: dict[str, str] = {}
    errors: dict[str, str] = {}

    with tracer.start_as_current_span("health.readiness"):
        if cache is None:
            checks["redis"] = "disabled"
        else:
            with tracer.start_as_current_span("health.check.redis"):
                try:
                    reply = await asyncio.wait_for(cache.ping(), timeout=TIMEOUT_CONFIG.default)
                    if reply:
                        checks["redis"] = "ok"
                        log.debug("redis_ping_succeeded")
                    else:
                        errors["redis"] = "ping returned a falsy reply"
                        log.warning("redis_ping_failed", error=errors["redis"])
                except Exception as exc:
                    errors["redis"] = str(exc) or type(exc).__name__
                    log.warning("redis_ping_failed", error=errors["redis"])

    if errors:
        return JSONResponse(
            status_code=503,
            content={"status": "unavailable", "checks": checks, "errors": errors},
        )

    return JSONResponse(content={"status": "ready", "checks": checks})
