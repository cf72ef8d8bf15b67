"""
Helpdesk SLA Engine - Main Application
=======================================

SLA tracking for helpdesk tickets: deadlines, status transitions,
pause/resume accounting and breach prediction.

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, Slack, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from helpdesk_sla.config import settings
from helpdesk_sla.core import ApplicationException

# Infrastructure
from helpdesk_sla.infrastructure.database import (
    init_database, close_database, create_tables, get_session_maker
)

# SLA Module
from helpdesk_sla.sla.infrastructure.external import EngineRunner, SlackClient, SLAScheduler
from helpdesk_sla.sla.interfaces import sla_router

# Shared
from helpdesk_sla.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from helpdesk_sla.shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Build the EngineRunner
    4. Start the SLA scheduler (when auto-run is enabled)

    SHUTDOWN:
    1. Stop SLA scheduler
    2. Close Slack client
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting SLA service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_database()

    # Create tables (for development - use Alembic in production)
    logger.info("Creating database tables")
    await create_tables()

    slack_client = SlackClient()
    runner = EngineRunner(get_session_maker(), slack_client=slack_client)
    app.state.sla_engine_runner = runner

    sla_scheduler = None
    if settings.sla_engine_autorun_enabled:
        sla_scheduler = SLAScheduler(interval_seconds=settings.sla_engine_interval_seconds)
        await sla_scheduler.start(runner.run_scheduled)
    else:
        logger.info("SLA engine auto-run disabled")
    app.state.sla_scheduler = sla_scheduler

    logger.info("SLA service started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down SLA service")

    if sla_scheduler:
        await sla_scheduler.stop()

    await slack_client.close()
    await close_database()

    logger.info("SLA service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Helpdesk SLA API",
    description="""
    ## Helpdesk SLA Engine

    Tracks response and resolution deadlines for every open ticket.

    **Endpoints:**
    - `GET/POST /sla/policies`, `PATCH /sla/policies/{id}` - SLA policies
    - `GET/POST /sla/calendars` - Business-hours calendars (advisory)
    - `GET /sla/tracking` - Tracking rows with ticket and policy
    - `PATCH /sla/tracking/{ticketId}/pause|resume` - Stop and restart the SLA clock
    - `GET /sla/predictions` - Upcoming resolution breaches
    - `POST /sla/engine/run` - Run an engine pass now

    Caller identity is read from `X-User-Id` and `X-User-Role` headers.
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
# Outermost last: the correlation id is set before the request is logged
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(sla_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Reports scheduler state and whether an engine pass is in flight.
    """
    scheduler = getattr(request.app.state, "sla_scheduler", None)
    runner = getattr(request.app.state, "sla_engine_runner", None)

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": {
            "sla_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
            "sla_engine": "busy" if runner and runner.is_running else "idle",
        }
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "sla": {
                "prefix": "/sla",
                "endpoints": [
                    "GET /sla/policies - List SLA policies",
                    "POST /sla/policies - Create SLA policy",
                    "PATCH /sla/policies/{id} - Update SLA policy",
                    "GET /sla/calendars - List business-hours calendars",
                    "POST /sla/calendars - Create business-hours calendar",
                    "GET /sla/tracking - List SLA tracking",
                    "PATCH /sla/tracking/{ticketId}/pause - Pause SLA",
                    "PATCH /sla/tracking/{ticketId}/resume - Resume SLA",
                    "GET /sla/predictions - Breach predictions",
                    "POST /sla/engine/run - Run SLA engine"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "helpdesk_sla.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
