"""
Health and Monitoring Router.

Public, unauthenticated endpoints for uptime checks:
- `/healthcheck`: liveness, no dependencies touched.
- `/monitoring/ping`: connectivity check.
- `/monitoring/detailed`: database reachability and live-stream bus stats;
  reports `degraded` instead of failing when a component is down.
"""

from fastapi import APIRouter, Depends
from datetime import datetime, timezone
from typing import Dict, Any

from core.logging_config import get_logger
from core.database import get_database_info
from services.scrape_events import ScrapeEventBus
from .dependencies import get_scrape_events

logger = get_logger(__name__)

SERVICE_NAME = "Instagram Scrape API"
SERVICE_VERSION = "1.0.0"

health_router = APIRouter(tags=["Health & Monitoring"])

monitoring_router = APIRouter(prefix="/monitoring", tags=["Health & Monitoring"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@health_router.get("/healthcheck")
async def health_check() -> Dict[str, Any]:
    """Basic health check endpoint (no authentication required)"""
    logger.debug("Health check requested")

    return {
        "status": "healthy",
        "timestamp": _now(),
        "version": SERVICE_VERSION,
        "service": SERVICE_NAME,
    }


@monitoring_router.get("/ping")
async def ping() -> Dict[str, str]:
    """Simple ping endpoint for connectivity testing"""
    return {"message": "pong", "timestamp": _now(), "version": SERVICE_VERSION}


@monitoring_router.get("/detailed")
async def detailed_health_check(
    events: ScrapeEventBus = Depends(get_scrape_events),
) -> Dict[str, Any]:
    """Detailed health check with component status"""
    logger.info("Detailed health check requested")

    health_status = {
        "status": "healthy",
        "timestamp": _now(),
        "version": SERVICE_VERSION,
        "service": SERVICE_NAME,
        "components": {},
    }

    try:
        db_info = await get_database_info()
        db_healthy = db_info.get("connection_healthy", False)
        health_status["components"]["database"] = {
            "status": "healthy" if db_healthy else "unhealthy",
            "info": db_info,
        }
        if not db_healthy:
            health_status["status"] = "degraded"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        health_status["components"]["database"] = {
            "status": "unhealthy",
            "error": str(e),
        }
        health_status["status"] = "degraded"

    health_status["components"]["event_bus"] = {
        "status": "healthy",
        "stats": events.get_stats(),
    }

    return health_status
