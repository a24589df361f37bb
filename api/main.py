"""
FastAPI application initialization
"""

from fastapi import FastAPI
from api.routes import health, properties, sync
from core.config import settings
from core.logging import setup_logging
import logging
from api.middleware import RequestContextMiddleware
from api.dependencies import sync_launcher
from ingestion.scheduler import SyncScheduler

setup_logging()

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Listing Feed Sync API",
    description="Status, control and read service for the listing feed replication engine",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

scheduler = SyncScheduler(launcher=sync_launcher)


app.include_router(health.router)
app.include_router(sync.router)
app.include_router(properties.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting Listing Feed Sync API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    if settings.START_SCHEDULER_ON_STARTUP:
        scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Listing Feed Sync API")
    scheduler.stop()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Listing Feed Sync API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "status": "/sync/status",
            "history": "/sync/history",
            "config": "/sync/config",
            "trigger": ["/sync/full", "/sync/incremental", "/sync/properties", "/sync/media"],
            "properties": "/properties",
            "property_stats": "/properties/stats"
        }
    }
