# app/main.py
"""
Application entry point: resource lifecycle, error mapping and routers.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from app.config import settings
from app.db.pool import db_pool
from app.features.dashboards.api.router import router as dashboards_router
from app.features.dashboards.errors import CacheBuildError, DataSourceError, ValidationError
from app.features.dashboards.services.dashboard_service import DashboardService
from app.features.dashboards.services.snapshot_cache import (
    InMemorySnapshotStore,
    RedisSnapshotStore,
    SnapshotCache,
)
from app.infrastructure.observability.logging import get_logger, log_request, setup_logging
from app.routes import health
from app.services.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)


def build_snapshot_cache() -> SnapshotCache:
    if settings.DASHBOARD_CACHE_BACKEND == "redis":
        return SnapshotCache(RedisSnapshotStore(fast_redis))
    return SnapshotCache(InMemorySnapshotStore())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open shared resources, create the process-wide cache and facade, and clean up."""

    logger.info(
        "Application starting",
        environment=settings.environment,
        debug=settings.debug,
        cache_backend=settings.DASHBOARD_CACHE_BACKEND,
    )

    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        if settings.DASHBOARD_CACHE_BACKEND == "redis":
            logger.info("Initializing Redis connection")
            await fast_redis.initialize()
            startup_tasks.append("redis")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        # Clean up in reverse order
        if "redis" in startup_tasks:
            try:
                await fast_redis.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up Redis", error=str(cleanup_error))

        if "database_pool" in startup_tasks:
            try:
                await db_pool.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up database pool", error=str(cleanup_error))

        raise

    # One cache per process, never reset implicitly
    app.state.snapshot_cache = build_snapshot_cache()
    app.state.dashboard_service = DashboardService(app.state.snapshot_cache)

    yield

    logger.info("Application shutting down")

    shutdown_errors = []

    if "redis" in startup_tasks:
        try:
            logger.info("Closing Redis connection")
            await fast_redis.close()
        except Exception as e:
            logger.error("Error closing Redis", error=str(e))
            shutdown_errors.append(f"Redis: {e}")

    try:
        logger.info("Closing database pool")
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Dashboard Aggregation Service",
    description="Cached, read-only dashboard snapshots for marketplace users",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(dashboards_router)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc), "field": exc.field},
    )


@app.exception_handler(CacheBuildError)
async def cache_build_error_handler(request: Request, exc: CacheBuildError):
    logger.error("Dashboard build failed", path=request.url.path, key=exc.key, source=exc.source)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Dashboard data temporarily unavailable", "source": exc.source},
    )


@app.exception_handler(DataSourceError)
async def data_source_error_handler(request: Request, exc: DataSourceError):
    logger.error("Data source unavailable", path=request.url.path, source=exc.source, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": "Dashboard data temporarily unavailable", "source": exc.source},
    )


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.time() - start_time) * 1000, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
