"""
Great Pearl Coffee Finance - FastAPI Application Entry Point

This is the main entry point for the FastAPI application.
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from app.config import settings
from app.database import async_session_factory, close_db, init_db
from app.routers import (
    approvals,
    cash,
    employees,
    notifications,
    payments,
    reports,
    security,
    settings as finance_settings,
    verifications,
    websocket,
    withdrawals,
)
from app.services.realtime import get_realtime_broker
from app.services.realtime_relay import RedisRealtimeRelay
from app.utils.error_handling import setup_exception_handlers

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info(f"Starting {settings.app_name}...")
    logger.info(f"Environment: {settings.app_env}")

    # Initialize database (dev only - use migrations in production)
    if settings.is_development:
        await init_db()
        logger.info("Database tables initialized")

    # Relay worker-delivered notifications to this process's sockets
    relay = RedisRealtimeRelay()
    relay_task = None
    if settings.realtime_relay_enabled:
        relay_task = asyncio.create_task(relay.listen(get_realtime_broker()))

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.app_name}...")
    if relay_task is not None:
        relay_task.cancel()
        with suppress(asyncio.CancelledError):
            await relay_task
    await relay.close()
    await close_db()
    logger.info("Database connections closed")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="Cash, approvals, payments and verification back office for Great Pearl Coffee",
    version="0.1.0",
    docs_url="/api/docs" if settings.is_development else None,
    redoc_url="/api/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ===========================================
# GLOBAL ERROR HANDLERS
# ===========================================

setup_exception_handlers(app)


# ===========================================
# API ROUTES
# ===========================================

@app.get("/api")
async def api_info():
    """API information endpoint."""
    return {
        "name": settings.app_name,
        "company": settings.company_name,
        "currency": settings.currency,
        "version": "0.1.0",
        "status": "running",
        "environment": settings.app_env,
        "api_docs": "/api/docs" if settings.is_development else "disabled",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    database = "connected"
    try:
        async with async_session_factory() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Health check database query failed: {e}")
        database = "unavailable"

    return {
        "status": "healthy" if database == "connected" else "degraded",
        "database": database,
    }


# ===========================================
# INCLUDE ROUTERS
# ===========================================

API_PREFIX = f"/api/{settings.api_version}"

app.include_router(employees.router, prefix=API_PREFIX)
app.include_router(approvals.router, prefix=API_PREFIX)
app.include_router(cash.router, prefix=API_PREFIX)
app.include_router(payments.router, prefix=API_PREFIX)
app.include_router(notifications.router, prefix=API_PREFIX)
app.include_router(reports.router, prefix=API_PREFIX)
app.include_router(verifications.router, prefix=API_PREFIX)
app.include_router(security.router, prefix=API_PREFIX)
app.include_router(withdrawals.router, prefix=API_PREFIX)
app.include_router(finance_settings.router, prefix=API_PREFIX)

# Public verification portal and the realtime feed live at the site root
app.include_router(verifications.public_router)
app.include_router(websocket.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
    )
