"""
FastAPI host for the attendance engine.

The lifespan builds one AttendanceEngine per process: Redis-backed when
REDIS_URL is configured, in-memory otherwise.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from attendance_engine.config import settings
from attendance_engine.db.store import InMemoryRecordStore
from attendance_engine.infrastructure.observability.logging import get_logger, setup_logging
from attendance_engine.routes import health, sessions, signals, sync
from attendance_engine.services.engine import AttendanceEngine
from attendance_engine.services.infrastructure.redis_client import FastRedisClient
from attendance_engine.services.remote.delivery_client import HttpDeliveryClient

# Logging must be configured before any module logger is used
setup_logging(log_level=settings.LOG_LEVEL)
logger = get_logger(__name__)

HEALTH_CHECK_PATHS = {"/healthz", "/readyz"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    redis_client = None
    try:
        if settings.REDIS_URL:
            logger.info("Initializing Redis connection")
            redis_client = FastRedisClient()
            await redis_client.initialize()
            store = redis_client.record_store()
        else:
            logger.warning("REDIS_URL not set; using in-memory store")
            store = InMemoryRecordStore()

        engine = AttendanceEngine(store, HttpDeliveryClient())
        await engine.start()
    except Exception as e:
        logger.error("Failed to initialize services", error=str(e))
        if redis_client is not None:
            await redis_client.close()
        raise

    app.state.engine = engine
    app.state.redis = redis_client

    yield

    logger.info("Application shutting down")
    try:
        await engine.shutdown()
    except Exception as e:
        logger.error("Error stopping engine", error=str(e))
    if redis_client is not None:
        await redis_client.close()
    logger.info("All services closed")


app = FastAPI(
    title="Attendance Engine",
    description="Attendance and participation reconciliation for online meetings",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(signals.router)
app.include_router(sessions.router)
app.include_router(sync.router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log each request with its duration; health-check traffic is logged at debug."""
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = round((time.perf_counter() - started) * 1000, 2)

    log = logger.debug if request.url.path in HEALTH_CHECK_PATHS else logger.info
    log(
        "HTTP request",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=duration_ms,
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
