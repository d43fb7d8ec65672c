"""
FastAPI Application Entry Point.

This is the main application file for the Quota Ledger service.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from quota_ledger.app.core.config import settings
from quota_ledger.app.core.logging_config import configure_logging
from quota_ledger.app.core.observability import ObservabilityMiddleware
from quota_ledger.app.core.redis_client import ping_redis, close_redis
from quota_ledger.app.api.v1.router import router as api_v1_router
from quota_ledger.app.db.session import engine, AsyncSessionLocal, create_tables
from quota_ledger.app.domain.billing.package_catalog import PackageCatalog
from quota_ledger.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from quota_ledger.app.models.tenant import Tenant, QuotaBalance  # noqa: F401
from quota_ledger.app.models.package import Package  # noqa: F401
from quota_ledger.app.models.payment_order import PaymentOrder  # noqa: F401
from quota_ledger.app.models.quota_transaction import QuotaTransaction  # noqa: F401
from quota_ledger.app.models.audit_log import AuditLog  # noqa: F401

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Seeds the default package catalogue when enabled.
    3. Releases Redis and database connections on shutdown.
    """
    await create_tables()

    if settings.seed_default_packages:
        async with AsyncSessionLocal() as db:
            await PackageCatalog.seed_defaults(db)

    logger.info("%s %s started", settings.app_name, settings.api_version)
    yield
    await close_redis()
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Tenant quota ledger and payment reconciliation",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Redis only backs webhook dedupe, so an unreachable Redis degrades the
    service instead of failing it.

    Returns:
        dict: Status and application information
    """
    redis_ok = await ping_redis()
    return {
        "status": "healthy" if redis_ok else "degraded",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if redis_ok else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to the Quota Ledger API",
        "docs": "/docs",
        "health": "/health",
    }
