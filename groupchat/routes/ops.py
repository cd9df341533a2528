from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from datetime import datetime, timezone
from groupchat.config import settings
from groupchat.core.logging_config import get_logger
from groupchat.core.cache import cache
from groupchat.db.store import GroupStore
from groupchat.dependencies import get_feed, get_store
from groupchat.services.group_feed import GroupFeed

router = APIRouter()
logger = get_logger(__name__)


@router.get("/health")
async def health_check(
    store: GroupStore = Depends(get_store),
    group_feed: GroupFeed = Depends(get_feed)
):
    """
    Health check.

    Verifies store connectivity (critical) and Redis (optional). Returns 200
    when the store answers, 503 otherwise.
    """
    checks = {
        "application": "healthy",
        "store": "unknown",
        "redis": "unknown" if settings.REDIS_URL else "not_configured",
    }

    try:
        await store.ping()
        checks["store"] = f"healthy ({settings.STORE_BACKEND})"
    except Exception as e:
        logger.error("health_check_store_failed", error=str(e))
        checks["store"] = f"unhealthy: {type(e).__name__}"

    if settings.REDIS_URL:
        checks["redis"] = "healthy" if await cache.ping() else "degraded: cache disabled"

    all_healthy = checks["store"].startswith("healthy")

    response_data = {
        "status": "healthy" if all_healthy else "degraded",
        "service": "groupchat-api",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "live_groups": len(group_feed.subscriptions),
        "checks": checks
    }

    return JSONResponse(content=response_data, status_code=200 if all_healthy else 503)


@router.get("/")
async def root():
    """Root endpoint."""
    return {
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs" if settings.ENABLE_DOCS else None,
        "health": "/health",
        "metrics": "/metrics",
    }
