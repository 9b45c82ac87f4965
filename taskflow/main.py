"""
Taskflow - Main Application
===========================

Task management core: workload-aware assignment and SLA tracking.

Modules:
- Assignment: workload tracking, candidate scoring, load balancing
- SLA: due dates, SLA pauses, reminders and escalations

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects and pure calculators
- Infrastructure: Database, policy file, webhook, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from taskflow.config import settings
from taskflow.core import ApplicationException, ConfigurationException
from taskflow.infrastructure.database import (
    close_database, create_tables, get_session_context, init_database
)
from taskflow.infrastructure.policy import get_policy_manager
from taskflow.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from taskflow.shared.infrastructure.logging import get_logger, log_latency, setup_logging
from taskflow.assignment.interfaces import assignment_router
from taskflow.sla.infrastructure import SLAScheduler, WebhookNotificationDispatcher
from taskflow.sla.interfaces import sla_router
from taskflow.sla.interfaces.controllers import build_deadline_service, build_reminder_service

logger = get_logger(__name__)

# Global service instances
policy_manager = None
notification_dispatcher = None
sla_scheduler = None


async def reminder_poll_job() -> None:
    """Background reminder and escalation poll."""
    with log_latency(logger, "reminder_poll"):
        async with get_session_context() as session:
            await build_reminder_service(session, notification_dispatcher, policy_manager).poll()


async def category_stats_job() -> None:
    """Background refresh of category completion stats."""
    with log_latency(logger, "category_stats_refresh"):
        async with get_session_context() as session:
            await build_deadline_service(session, policy_manager).update_all_category_stats()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load the policy file and watch it for changes
    4. Create the notification dispatcher
    5. Start the reminder and stats scheduler

    SHUTDOWN runs the same steps in reverse.
    """
    global policy_manager, notification_dispatcher, sla_scheduler

    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Taskflow", extra={
        "version": settings.app_version,
        "environment": settings.environment,
    })

    init_database()
    # Development convenience; production schemas are managed by migrations
    try:
        await create_tables()
    except (SQLAlchemyError, OSError) as e:
        logger.warning("Database not available - running in degraded mode", extra={"error": str(e)})

    try:
        policy_manager = get_policy_manager()
    except ConfigurationException as e:
        logger.error("Invalid policy file", extra={"error": e.message, **e.details})
        raise
    policy_manager.start_watching()

    notification_dispatcher = WebhookNotificationDispatcher()
    app.state.settings = settings
    app.state.notification_dispatcher = notification_dispatcher

    sla_scheduler = SLAScheduler()
    sla_scheduler.add_job(
        "reminder_poll", reminder_poll_job, settings.reminder_poll_interval, "Reminder Poll"
    )
    sla_scheduler.add_job(
        "category_stats", category_stats_job, settings.stats_refresh_interval, "Category Stats Refresh"
    )
    await sla_scheduler.start()

    logger.info("Taskflow started successfully")

    yield

    # === SHUTDOWN ===
    logger.info("Shutting down Taskflow")

    await sla_scheduler.stop()
    policy_manager.stop_watching()
    await notification_dispatcher.close()
    await close_database()

    logger.info("Taskflow shutdown complete")


app = FastAPI(
    title="Taskflow API",
    description="""
    ## Task Management Core

    Workload-aware task assignment and SLA tracking.

    ### Assignment
    - `POST /assignment/tasks/{id}/assign` - Score candidates and assign
    - `GET /assignment/teams/{id}/rebalance` - Suggest moves between members
    - `GET /assignment/users/{id}/workload` - Weighted workload of a user
    - `GET /assignment/teams/{id}/workload` - Workloads of a team

    ### SLA
    - `POST /sla/tasks/{id}/due-date` - Compute a due date from category history
    - `POST /sla/tasks/{id}/pause` / `resume` - Stop and restart the SLA clock
    - `GET /sla/tasks/{id}/effective-deadline` - Due date shifted by pauses
    - `GET /sla/tasks/{id}/status` - on_track / at_risk / breached / escalated / paused / met
    - `POST /sla/cron/reminders` - Reminder and escalation poll (cron)

    Callers are identified by the `X-Actor-Id` and `X-Actor-Role` headers.
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(assignment_router)
app.include_router(sla_router)


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Reports policy and scheduler state.
    """
    checks = {
        "policy": "loaded" if policy_manager is not None else "not_loaded",
        "scheduler": "running" if sla_scheduler and sla_scheduler.is_running else "stopped",
        "notification_webhook": "configured" if settings.notification_webhook_url else "in_app_only",
    }
    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks,
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Taskflow",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "assignment": {"prefix": "/assignment"},
            "sla": {"prefix": "/sla"},
        },
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "taskflow.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
