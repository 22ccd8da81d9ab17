"""
Health check endpoints.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
import redis.asyncio as redis

from config import settings

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health_check():
    """
    Liveness probe.
    Never touches the database so a slow store cannot fail it.
    """
    return {"status": "healthy", "api": "up"}


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Kubernetes-style readiness probe covering the store and Redis."""
    status = {
        "ready": True,
        "database": "unknown",
        "redis": "unknown",
        "telegram_auth": "signed" if settings.TELEGRAM_BOT_TOKEN else "unsigned",
    }

    store = getattr(request.app.state, "store", None)
    try:
        if store is None:
            raise RuntimeError("store not initialised")
        await store.ping()
        status["database"] = "up"
    except Exception as e:
        logger.warning("Readiness: database check failed: %s", e)
        status["database"] = "down"
        status["ready"] = False

    # Redis only backs rate limiting, which falls back to local counters.
    try:
        r = redis.from_url(
            settings.REDIS_URL,
            socket_connect_timeout=settings.REDIS_TIMEOUT_SECONDS,
            socket_timeout=settings.REDIS_TIMEOUT_SECONDS,
        )
        try:
            await r.ping()
        finally:
            await r.aclose()
        status["redis"] = "up"
    except Exception as e:
        logger.info("Readiness: redis check failed: %s", e)
        status["redis"] = "down"

    if not status["ready"]:
        return JSONResponse(status_code=503, content=status)
    return status
