"""
FastAPI Application Entry Point.

This is the main application file for the fleet resource allocation and
inventory consistency service.
"""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from fleetcore.core.config import settings
from fleetcore.api.v1.router import router as api_v1_router
from fleetcore.db.session import engine, Base
from fleetcore.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)
from fleetcore.core.observability import ObservabilityMiddleware, configure_logging
from fleetcore.core.redis_client import ping_redis
from fleetcore.services.maintenance import periodic_integrity_sweep, run_integrity_sweep

# Import models to ensure they are registered with Base
from fleetcore.models.tenant import Tenant, TenantSettings
from fleetcore.models.user import User
from fleetcore.models.vehicle import Vehicle
from fleetcore.models.warehouse import Warehouse
from fleetcore.models.inventory_item import InventoryItem
from fleetcore.models.vehicle_assignment import VehicleAssignment
from fleetcore.models.stock_location_item import StockLocationItem
from fleetcore.models.stock_transfer import StockTransfer
from fleetcore.models.pending_transfer import PendingTransfer
from fleetcore.models.audit_log import AuditLog

logger = logging.getLogger("fleetcore")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Configures logging and creates database tables.
    2. Runs the Integrity Auditor once (audit_on_startup).
    3. Starts the periodic sweep (audit_interval_seconds > 0) and cancels it on shutdown.
    """
    configure_logging()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if settings.audit_on_startup:
        try:
            await run_integrity_sweep()
        except (AppException, SQLAlchemyError) as exc:
            logger.error("Startup integrity audit failed: %s", exc)

    sweep = None
    if settings.audit_interval_seconds > 0:
        sweep = asyncio.create_task(periodic_integrity_sweep(settings.audit_interval_seconds))

    yield

    if sweep is not None:
        sweep.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweep


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Vehicle assignment, stock allocation and quota enforcement core",
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

    Returns:
        dict: Status and application information
    """
    health = {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "lock_backend": settings.lock_backend,
    }
    if settings.lock_backend == "redis":
        health["redis"] = await ping_redis()
        if not health["redis"]:
            health["status"] = "degraded"
    return health


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")
