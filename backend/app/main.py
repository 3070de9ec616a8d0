"""
Bus Clearance Backend application.

Wires the v1 routers, the correlation-ID middleware and the error
envelope handlers onto one FastAPI app.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

from backend.app.api.v1.router import router as api_v1_router
from backend.app.core.config import settings
from backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    generic_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from backend.app.core.observability import ObservabilityMiddleware, configure_logging
from backend.app.core.redis_client import close_redis, ping_redis
from backend.app.db.session import Base, engine

# Every table must be on Base.metadata before create_all runs
from backend.app.models import (  # noqa: F401
    assignment,
    audit_log,
    bus,
    clearance_request,
    route,
    station,
    user,
)

configure_logging(settings.log_level)
logger = logging.getLogger("bus_clearance.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Schema ready", extra={"tables": sorted(Base.metadata.tables)})

    yield

    await close_redis()
    await engine.dispose()
    logger.info("Connections closed")


app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Bus assignment and station clearance workflow",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

for exc_class, handler in (
    (AppException, app_exception_handler),
    (HTTPException, http_exception_handler),
    (RequestValidationError, validation_exception_handler),
    (Exception, generic_exception_handler),
):
    app.add_exception_handler(exc_class, handler)

app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Liveness plus a Redis ping.

    Redis being down degrades notifications and locking but does not make
    the service unhealthy.
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "ok" if await ping_redis() else "unavailable",
    }
