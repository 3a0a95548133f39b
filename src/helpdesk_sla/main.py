"""
Helpdesk SLA Engine - Main Application
=======================================

SLA tracking and escalation service for helpdesk tickets.

Modules:
- SLA Engine: Response/resolution timers, breaches and escalations

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, calendars and value objects
- Infrastructure: Database, dispatchers, scheduler, policy file watcher
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
from helpdesk_sla.sla.application import EscalationTrigger, SLAPolicyService, TimerEngine
from helpdesk_sla.sla.infrastructure import (
    HttpNotificationDispatcher,
    HttpWebhookDispatcher,
    PolicyFileWatcher,
    SLAScheduler,
    SQLAlchemySLAUnitOfWork,
    YAMLPolicyLoader,
)
from helpdesk_sla.sla.interfaces import sla_router

# Logging
from helpdesk_sla.shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)

# Global service instances
sla_scheduler = None
policy_watcher = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database
    3. Create database tables
    4. Create notification and webhook dispatchers
    5. Sync SLA policies from the policy file
    6. Start the policy file watcher
    7. Start the SLA sweep scheduler

    SHUTDOWN:
    1. Stop SLA scheduler
    2. Stop policy file watcher
    3. Drain and close dispatchers
    4. Close database connections
    """
    global sla_scheduler, policy_watcher

    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting SLA Engine", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })
    app.state.settings = settings

    # Initialize database
    logger.info("Initializing database")
    init_database()

    # Create tables (for development - use Alembic in production)
    # Note: If database is not available, the server will start but
    # database-dependent endpoints will fail
    database_ready = True
    logger.info("Creating database tables")
    try:
        await create_tables()
    except Exception as e:
        database_ready = False
        logger.warning(f"Database not available - running in degraded mode: {e}")
        logger.warning("Please start PostgreSQL to enable full functionality")
    app.state.database_ready = database_ready

    session_maker = get_session_maker()

    def uow_factory():
        return SQLAlchemySLAUnitOfWork(session_maker)

    # Dispatchers are shared by the request-scoped engines and the sweep job
    notification_dispatcher = HttpNotificationDispatcher(
        settings.notification_service_url,
        timeout_seconds=settings.dispatch_timeout_seconds,
        max_retries=settings.dispatch_max_retries
    )
    webhook_dispatcher = HttpWebhookDispatcher(
        settings.webhook_service_url,
        timeout_seconds=settings.dispatch_timeout_seconds,
        max_retries=settings.dispatch_max_retries
    )
    app.state.notification_dispatcher = notification_dispatcher
    app.state.webhook_dispatcher = webhook_dispatcher

    # Load SLA policies from the policy file
    policy_service = SLAPolicyService(uow_factory)
    loader = YAMLPolicyLoader(settings.sla_policy_file)
    if database_ready:
        logger.info("Loading SLA policies", extra={"path": str(settings.sla_policy_file)})
        try:
            await policy_service.sync_policies(loader.load())
        except ApplicationException as e:
            logger.error("SLA policy file not applied", extra={"error": e.message})

        if settings.sla_policy_watch:
            policy_watcher = PolicyFileWatcher(loader, policy_service.sync_policies)
            policy_watcher.start_watching()

    escalation_trigger = EscalationTrigger(
        notifier=notification_dispatcher,
        webhooks=webhook_dispatcher,
        min_interval_minutes=settings.sla_notification_min_interval_minutes,
        admin_user_ids=settings.sla_admin_user_ids
    )
    timer_engine = TimerEngine(
        uow_factory,
        escalation_trigger,
        sweep_concurrency=settings.sla_sweep_concurrency
    )

    # Start the sweep scheduler (optional, requires database)
    if database_ready and settings.sla_sweep_interval_seconds > 0:
        async def sla_sweep_job():
            """Background SLA sweep job."""
            await timer_engine.sweep(trigger="scheduler")

        try:
            sla_scheduler = SLAScheduler(interval_seconds=settings.sla_sweep_interval_seconds)
            await sla_scheduler.start(sla_sweep_job)
        except Exception as e:
            logger.warning(f"SLA scheduler not started: {e}")
            sla_scheduler = None

    logger.info("SLA Engine started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down SLA Engine")

    # Stop SLA scheduler
    if sla_scheduler:
        await sla_scheduler.stop()
        sla_scheduler = None

    # Stop policy watcher
    if policy_watcher:
        policy_watcher.stop_watching()
        policy_watcher = None

    # Close dispatchers
    await notification_dispatcher.close()
    await webhook_dispatcher.close()

    # Close database
    await close_database()

    logger.info("SLA Engine shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Helpdesk SLA Engine API",
    description="""
    ## SLA Tracking and Escalation for Helpdesk Tickets

    Tracks first-response and resolution deadlines against business calendars,
    records breaches and escalates tickets as their deadlines approach.

    ---

    ### Ticket Lifecycle Events

    - `POST /sla/events/ticket-created` - Start SLA timers for a new ticket
    - `POST /sla/events/first-response` - Stop the first-response timer
    - `POST /sla/events/status-changed` - Pause, resume or complete timers
    - `POST /sla/events/assigned` - Update the notification recipient
    - `POST /sla/events/ticket-deleted` - Cancel all timers

    ### Timers and Reporting

    - `GET /sla/tickets/{id}/status` - Live SLA status for a ticket
    - `POST /sla/tickets/{id}/actions` - Manual pause, resume or stop
    - `GET /sla/tickets/{id}/escalations` - Escalations recorded for a ticket
    - `GET /sla/timers` - Timers across tickets, most urgent first
    - `GET /sla/breaches` - Recorded breaches
    - `GET /sla/stats` - Compliance statistics
    - `POST /sla/sweep` - Run a sweep immediately

    ### Policies

    - `GET/POST /sla/policies` - List and create SLA policies
    - `GET/PUT/DELETE /sla/policies/{id}` - Manage one policy

    ---

    ### Escalation Levels

    | Level    | Elapsed of target |
    |----------|-------------------|
    | level1   | 80%               |
    | level2   | 95%               |
    | breached | 100%              |

    *Percentages are configurable per policy.*
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
from helpdesk_sla.shared.api.middleware import (  # noqa: E402
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler
)

app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(sla_router)

# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "database": "connected",
                        "sla_scheduler": "running",
                        "policy_watcher": "watching",
                        "notification_service": "configured",
                        "webhook_service": "not_configured"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Returns service health status including:
    - Database state ("degraded" when tables could not be created)
    - Scheduler state
    - Policy file watcher state
    - Dispatcher configuration
    """
    def configured(name: str) -> str:
        dispatcher = getattr(request.app.state, name, None)
        return "configured" if dispatcher is not None and dispatcher.is_configured else "not_configured"

    database_ready = getattr(request.app.state, "database_ready", False)
    checks = {
        "database": "connected" if database_ready else "unavailable",
        "sla_scheduler": "running" if sla_scheduler and sla_scheduler.is_running else "stopped",
        "policy_watcher": "watching" if policy_watcher and policy_watcher.is_watching else "stopped",
        "notification_service": configured("notification_dispatcher"),
        "webhook_service": configured("webhook_dispatcher")
    }

    return {
        "status": "healthy" if database_ready else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Helpdesk SLA Engine",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "sla": {
                "prefix": "/sla",
                "endpoints": [
                    "POST /sla/events/* - Ticket lifecycle hooks",
                    "GET /sla/tickets/{id}/status - Get ticket SLA status",
                    "GET /sla/timers - List timers",
                    "GET /sla/breaches - List breaches",
                    "GET /sla/stats - Compliance statistics",
                    "GET /sla/policies - Manage SLA policies"
                ]
            }
        }
    }


# === Development Entry Point ===

def run() -> None:
    import uvicorn

    uvicorn.run(
        "helpdesk_sla.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )


if __name__ == "__main__":
    run()
