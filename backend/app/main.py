"""Site Audit Backend - FastAPI Application Entry Point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.routers import audit
from app.services.audit_pipeline import get_batch_audit_manager

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown."""
    logger.info("Starting Site Audit Backend...")

    manager = await get_batch_audit_manager()
    await manager.start()

    logger.info("Site Audit Backend started successfully")

    yield

    logger.info("Shutting down Site Audit Backend...")

    try:
        await manager.stop()
    except Exception as e:
        logger.warning(f"Error stopping batch audit manager: {e}")

    logger.info("Site Audit Backend shutdown complete")


app = FastAPI(
    title="Site Audit Backend",
    description="Site discovery and batch page auditing API",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(audit.router)


@app.get("/health")
async def health_check() -> dict:
    """
    Health check endpoint for monitoring.

    Returns overall status plus the batch queue counters and whether results
    are being persisted.
    """
    health = {"status": "healthy", "services": {}}

    try:
        manager = await get_batch_audit_manager()
        health["services"]["batch_audit"] = {
            "status": "healthy",
            "queue": manager.get_queue_stats().model_dump(),
            "persistence": "supabase" if manager.storage else "memory",
        }
    except Exception as e:
        health["services"]["batch_audit"] = {"status": "unavailable", "error": str(e)}

    for service_health in health["services"].values():
        if service_health.get("status") not in ("healthy", None):
            health["status"] = "degraded"
            break

    return health
