"""
Health check for the decision service and its dependencies.
"""
from fastapi import APIRouter, Request
import logging

from ..compliance.resolver import RedisCache

logger = logging.getLogger(__name__)
router = APIRouter()

@router.get("/health")
def health_check(request: Request):
    state = request.app.state
    status = {"status": "ok", "components": {}, "version": state.settings.app_version}

    # MaxMind database
    local_db = state.local_db
    if local_db.is_ready:
        status["components"]["maxmind"] = {"status": "ok", **(local_db.metadata() or {})}
    else:
        status["components"]["maxmind"] = "not loaded"
        status["status"] = "degraded"

    # Redis (optional)
    cache = state.resolver.cache
    if isinstance(cache, RedisCache):
        try:
            cache.redis.ping()
            status["components"]["redis"] = "ok"
        except Exception as e:
            logger.warning(f"Redis health check failed: {e}")
            status["components"]["redis"] = "error"
            status["status"] = "degraded"
    else:
        status["components"]["cache"] = "memory"

    return status
