"""
Instagram Scrape API - Main Application Entry Point.

Builds the FastAPI application: logging, database tables, middleware and
routers. The service lets a client trigger an Instagram profile/post scrape,
stores the results, and streams the scrape's progress live over Server-Sent
Events keyed by a client-generated session ID.

Routers:
- health and monitoring (public),
- scrape trigger (`POST /api/scrape`),
- live progress stream (`GET /api/scrape/stream/{session_id}`).
"""

import os
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from core.database import create_db_and_tables
from api.endpoints import router, stream_router
from api.health_router import health_router, monitoring_router, SERVICE_VERSION
from core.logging_config import setup_logging, get_logger
from core.middleware import (
    CorrelationMiddleware,
    ErrorHandlingMiddleware,
    RequestTimingMiddleware,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    logger = get_logger("api.startup")
    try:
        await create_db_and_tables()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Database initialization failed: {e}")

    logger.info("Service startup completed")
    yield

    logger.info("Shutting down Scrape API")


app = FastAPI(
    title="Instagram Scrape API",
    description="Scrape Instagram profiles and posts with live progress streaming",
    version=SERVICE_VERSION,
    lifespan=lifespan,
)


def get_cors_origins():
    origins = os.getenv("CORS_ORIGINS", "http://localhost:3001")
    return [origin.strip() for origin in origins.split(",") if origin.strip()]


# Last added runs first: CORS wraps everything, then the correlation ID is set
# before any other middleware logs
app.add_middleware(RequestTimingMiddleware)
app.add_middleware(ErrorHandlingMiddleware)
app.add_middleware(CorrelationMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

# Health routers first (no authentication required for monitoring)
app.include_router(health_router)
app.include_router(monitoring_router)

app.include_router(stream_router)
app.include_router(router)


@app.get("/")
async def root():
    return {"status": "OK"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3000")),
        reload=os.getenv("ENVIRONMENT", "development") == "development",
        log_level="info",
    )
