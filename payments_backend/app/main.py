"""
FastAPI Application Entry Point.

This is the main application file for the Payments Backend.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from payments_backend.app.core.config import settings
from payments_backend.app.api.v1.router import router as api_v1_router
from payments_backend.app.core.observability import ObservabilityMiddleware, configure_logging
from payments_backend.app.core.redis_client import ping_redis, close_redis
from payments_backend.app.db.session import engine, Base
from payments_backend.app.gateway.mpesa_client import MpesaClient
from payments_backend.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from payments_backend.app.models.order import Order
from payments_backend.app.models.invoice import Invoice
from payments_backend.app.models.payment_record import PaymentRecord
from payments_backend.app.models.reversal_record import ReversalRecord
from payments_backend.app.models.reconciliation_failure import ReconciliationFailure

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Configures logging and creates database tables.
    2. Builds the M-Pesa client when credentials are configured.
    3. Closes the gateway HTTP client and Redis pool on shutdown.
    """
    configure_logging()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.mpesa_client = MpesaClient.from_settings(settings)
    if app.state.mpesa_client is None:
        logger.warning("M-Pesa consumer key/secret not set; gateway operations are disabled")
    else:
        logger.info("M-Pesa client initialised (%s)", settings.mpesa_environment)

    yield

    if app.state.mpesa_client is not None:
        await app.state.mpesa_client.aclose()
    await close_redis()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Invoice ledger, M-Pesa collections and reversals",
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
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": await ping_redis(),
        "mpesa_configured": getattr(app.state, "mpesa_client", None) is not None,
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
        "message": "Welcome to Payments Backend API",
        "docs": "/docs",
        "health": "/health",
    }
