"""
Main FastAPI application for the GeoFilter forward-auth service.
Wires the country resolver, decision engine and observability together.
"""
import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .api.validation import router as validation_router
from .compliance.fallback import FallbackLookupClient
from .compliance.geoip import LocalDatabaseManager
from .compliance.resolver import CountryResolver, MemoryCache, RedisCache
from .config import Settings
from .engine.evaluator import AccessPolicyEvaluator
from .observability.health import router as health_router
from .observability.logging import setup_logging
from .observability.metrics import GeoFilterMetrics, metrics_router
from .observability.tracing import setup_tracing

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings = None,
    metrics: GeoFilterMetrics = None,
    local_db: LocalDatabaseManager = None,
    fallback: FallbackLookupClient = None,
    cache=None,
    configure_logging: bool = True,
) -> FastAPI:
    settings = settings or Settings.from_env()
    metrics = metrics or GeoFilterMetrics()
    local_db = local_db or LocalDatabaseManager(
        settings.db_path, metrics, retain_on_failure=settings.db_retain_on_failure
    )
    fallback = fallback or FallbackLookupClient(
        metrics, url_template=settings.fallback_api, timeout=settings.fallback_timeout
    )
    if cache is None:
        cache = RedisCache.from_url(settings.redis_url) if settings.redis_url else MemoryCache()
    resolver = CountryResolver(local_db, fallback, metrics, cache=cache, single_flight=settings.single_flight)
    evaluator = AccessPolicyEvaluator(resolver, metrics)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup: load the database before taking traffic
        if configure_logging:
            setup_logging()
        logger.info("Starting up GeoFilter API...")
        local_db.reload()
        if settings.db_watch:
            local_db.start_watching(
                poll_interval=settings.db_poll_interval, debounce=settings.db_reload_debounce
            )
        logger.info(f"GeoFilter API started (database ready: {local_db.is_ready})")
        yield
        # Shutdown: stop the watcher and release the reader
        logger.info("Shutting down GeoFilter API...")
        local_db.close()
        fallback.close()
        logger.info("Shutdown complete.")

    app = FastAPI(
        title="GeoFilter API",
        description="Country-based access filtering for reverse proxies",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if os.getenv("ENABLE_DOCS", "false").lower() == "true" else None,
        redoc_url=None,
    )
    app.state.settings = settings
    app.state.metrics = metrics
    app.state.local_db = local_db
    app.state.resolver = resolver
    app.state.evaluator = evaluator

    app.include_router(health_router, tags=["Health"])
    app.include_router(metrics_router, tags=["Metrics"])
    app.include_router(validation_router, tags=["Validation"])
    setup_tracing(app)
    return app


# For local development: run with uvicorn directly
if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8080))
    uvicorn.run(
        "geofilter.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=port,
    )
