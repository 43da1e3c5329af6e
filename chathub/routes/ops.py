from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from chathub.config import settings
from chathub.core.cache import cache
from chathub.core.logging_config import get_logger
from chathub.db.mongodb import ping_db
from chathub.dependencies import get_container

router = APIRouter()
logger = get_logger(__name__)


@router.get("/health")
async def health_check():
    """
    Health check.

    Verifies:
    - Chatroom/message storage (MongoDB, or the in-memory backend)
    - Redis connectivity (if configured)
    - Bearer token validation settings
    - Live WebSocket connections

    Returns 200 if storage is reachable, 503 otherwise.
    """
    checks = {
        "application": "healthy",
        "storage": "unknown",
        "redis": "unknown" if settings.REDIS_URL else "not_configured",
        "jwt": "unknown",
        "directory": settings.DIRECTORY_BACKEND,
    }

    if settings.STORAGE_BACKEND == "memory":
        checks["storage"] = "healthy (in-memory)"
    else:
        try:
            await ping_db()
            checks["storage"] = "healthy (mongodb)"
        except Exception as e:
            logger.error("health_check_mongodb_failed", error=str(e))
            checks["storage"] = f"unhealthy: {type(e).__name__}"

    if settings.REDIS_URL and cache.enabled:
        try:
            await cache.redis.ping()
            checks["redis"] = "healthy"
        except Exception as e:
            logger.error("health_check_redis_failed", error=str(e))
            checks["redis"] = f"unhealthy: {type(e).__name__}"
    elif settings.REDIS_URL:
        checks["redis"] = "degraded: cache disabled"

    if settings.JWT_SECRET_KEY and len(settings.JWT_SECRET_KEY) >= 32:
        checks["jwt"] = f"healthy (algorithm: {settings.JWT_ALGORITHM})"
    else:
        checks["jwt"] = "unhealthy: JWT_SECRET_KEY too short or missing"

    try:
        checks["websocket_connections"] = len(get_container().hub.connections)
    except RuntimeError:
        checks["websocket_connections"] = 0

    all_healthy = checks["storage"].startswith("healthy")

    response_data = {
        "status": "healthy" if all_healthy else "degraded",
        "service": "chathub",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "checks": checks,
    }

    return JSONResponse(content=response_data, status_code=200 if all_healthy else 503)


@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics",
        "websocket": f"{settings.API_PREFIX}/ws",
    }
