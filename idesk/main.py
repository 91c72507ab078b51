"""
iDesk SLA Engine - Main Application
====================================

SLA tracking and breach detection for iDesk tickets.

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Policy store, clock, state tracker, breach evaluator
- Infrastructure: Database, threshold config, scheduler
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from idesk.config import settings
from idesk.core import ApplicationException
from idesk.infrastructure.database import (
    close_database,
    create_tables,
    get_session_context,
    init_database,
)
from idesk.shared.api import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    MetricsMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from idesk.shared.infrastructure.logging import get_logger, setup_logging
from idesk.sla.application import SlaPolicyService
from idesk.sla.domain import SlaPolicyStore, SlaStateTracker
from idesk.sla.infrastructure import SlaConfigManager, SlaScheduler, SqlAlchemySlaPolicyRepository
from idesk.sla.interfaces import build_monitor_service, config_router, sla_router

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and tables
    3. Load SLA policies (seeding defaults on an empty table)
    4. Load breach thresholds and watch the YAML file
    5. Start the evaluation scheduler

    SHUTDOWN runs the same steps in reverse.
    """
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting iDesk SLA engine", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    init_database()

    policy_store = SlaPolicyStore()
    try:
        await create_tables()
        async with get_session_context() as session:
            await SlaPolicyService(policy_store, SqlAlchemySlaPolicyRepository(session)).initialize()
    except (SQLAlchemyError, OSError) as e:
        logger.warning(
            "Database not available - running with default SLA policies",
            extra={"error": str(e)}
        )
        policy_store.reset_to_defaults()

    config_manager = SlaConfigManager()
    config_manager.load(settings.sla_config_path)
    config_manager.start_watching()

    app.state.settings = settings
    app.state.policy_store = policy_store
    app.state.tracker = SlaStateTracker(policy_store)
    app.state.config_manager = config_manager

    scheduler = None
    if settings.sla_evaluation_interval > 0:
        async def sla_evaluation_job():
            async with get_session_context() as session:
                monitor = build_monitor_service(session, policy_store, config_manager)
                await monitor.run(datetime.now(timezone.utc))

        scheduler = SlaScheduler(interval_seconds=settings.sla_evaluation_interval)
        await scheduler.start(sla_evaluation_job)
    else:
        logger.info("SLA scheduler disabled")
    app.state.scheduler = scheduler

    logger.info("iDesk SLA engine started")

    yield

    logger.info("Shutting down iDesk SLA engine")
    if scheduler:
        await scheduler.stop()
    config_manager.stop_watching()
    await close_database()
    logger.info("iDesk SLA engine shutdown complete")


def create_app() -> FastAPI:
    app = FastAPI(
        title="iDesk SLA API",
        description="""
        ## SLA tracking and breach detection

        - `GET/PUT/DELETE /sla-config` - priority tiers and their targets
        - `GET /sla/tickets/{id}` - derived deadlines and classification
        - `POST /sla/tickets/{id}/status` - status-change hook driving the SLA clock
        - `POST /sla/tickets/{id}/first-response` - first agent reply
        - `POST /sla/evaluate` - run a breach detection pass now

        **Default targets (minutes, response / resolution):**

        | Priority | Response | Resolution |
        |----------|----------|------------|
        | CRITICAL | 60       | 120        |
        | HIGH     | 240      | 480        |
        | MEDIUM   | 480      | 1440       |
        | LOW      | 1440     | 2880       |
        """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(MetricsMiddleware)
    # Outermost, so the request log already sees the correlation ID
    app.add_middleware(CorrelationIDMiddleware)
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(config_router)
    app.include_router(sla_router)

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """Health check for load balancers and orchestrators."""
        scheduler = getattr(request.app.state, "scheduler", None)
        config_manager = getattr(request.app.state, "config_manager", None)
        policy_store = getattr(request.app.state, "policy_store", None)
        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": {
                "sla_policies": len(policy_store) if policy_store is not None else 0,
                "sla_config": "loaded" if config_manager else "not_loaded",
                "sla_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
            }
        }

    @app.get("/", tags=["Root"])
    async def root():
        """API information."""
        return {
            "service": settings.app_name,
            "version": settings.app_version,
            "architecture": "Clean Architecture / Modular Monolith",
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "idesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )
