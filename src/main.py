"""
ITSM Workflow Engine - Main Application
=========================================

Status workflow and SLA escalation service for incidents and change requests.

Modules:
- Workflow: Transition rules, SLA classification, escalation sweep

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, transition graphs, SLA value objects
- Infrastructure: Database, policy file, Slack, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

# Configuration
from src.config import settings

# Infrastructure
from src.infrastructure.database import (
    close_database, create_tables, get_session_maker, init_database
)

# Workflow module
from src.workflow.application import EscalationService, WorkflowService
from src.workflow.domain import EscalationPolicy
from src.workflow.infrastructure import (
    EscalationScheduler,
    InMemoryAuditSink,
    InMemoryRecordStore,
    LoggingNotificationSink,
    PolicyConfigManager,
    SlackNotificationSink,
    SQLAlchemyAuditSink,
    SQLAlchemyRecordStore,
)
from src.workflow.interfaces import workflow_router

# Shared
from src.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    global_exception_handler
)
from src.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize the record store (database or in-memory)
    3. Load the escalation policy and watch it for changes
    4. Build services and the notification sink
    5. Start the escalation scheduler (runs one sweep immediately)

    SHUTDOWN:
    1. Stop the scheduler, letting an in-flight sweep finish
    2. Stop the policy watcher
    3. Close the Slack client and database connections
    """
    # === STARTUP ===
    setup_logging(level=settings.log_level, environment=settings.environment)
    logger.info("Starting workflow engine", extra={
        "version": settings.app_version,
        "environment": settings.environment,
        "record_store_backend": settings.record_store_backend
    })

    if settings.record_store_backend == "memory":
        if settings.seed_data_path:
            record_store = InMemoryRecordStore.from_file(settings.seed_data_path)
        else:
            logger.warning("Memory record store has no seed file - starting empty")
            record_store = InMemoryRecordStore()
        audit_sink = InMemoryAuditSink()
    else:
        logger.info("Initializing database")
        engine = init_database()
        try:
            await create_tables(engine)
        except (SQLAlchemyError, OSError) as e:
            # Sweeps log store errors per tick until the database comes back
            logger.warning("Database not available - running in degraded mode", extra={"error": str(e)})
        session_maker = get_session_maker()
        record_store = SQLAlchemyRecordStore(session_maker)
        audit_sink = SQLAlchemyAuditSink(session_maker)

    logger.info("Loading escalation policy")
    policy_manager = PolicyConfigManager(EscalationPolicy.from_settings(settings))
    policy = policy_manager.load(settings.workflow_config_path)
    policy_manager.start_watching()

    if settings.slack_webhook_url:
        notification_sink = SlackNotificationSink(
            webhook_url=settings.slack_webhook_url,
            channel=settings.slack_channel,
            timeout_seconds=settings.slack_timeout_seconds
        )
    else:
        logger.info("Slack webhook not configured - notifications go to the log")
        notification_sink = LoggingNotificationSink()

    escalation_service = EscalationService(
        record_store=record_store,
        notification_sink=notification_sink,
        audit_sink=audit_sink,
        policy_provider=policy_manager,
        store_timeout=settings.store_timeout_seconds,
        notification_timeout=settings.notification_timeout_seconds
    )
    scheduler = EscalationScheduler(escalation_service, interval_seconds=policy.tick_interval_seconds)

    # Store services in app state for dependency injection
    app.state.settings = settings
    app.state.record_store = record_store
    app.state.policy_manager = policy_manager
    app.state.workflow_service = WorkflowService(record_store, policy_manager)
    app.state.scheduler = scheduler

    await scheduler.start()

    logger.info("Workflow engine started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down workflow engine")

    await scheduler.stop()
    policy_manager.stop_watching()

    if isinstance(notification_sink, SlackNotificationSink):
        await notification_sink.close()

    if settings.record_store_backend != "memory":
        await close_database()

    logger.info("Workflow engine shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="ITSM Workflow Engine API",
    description="""
    ## Status Workflow & SLA Escalation

    ### Workflow
    - `GET /workflow/{kind}/transitions?status=...` - Selectable statuses
    - `POST /workflow/transitions/validate` - Check a transition
    - `PATCH /workflow/incidents/{id}/status` - Change incident status
    - `PATCH /workflow/changes/{id}/status` - Change change-request status

    ### SLA & Escalation
    - `GET /workflow/incidents/{id}/sla` - Resolution SLA status
    - `POST /workflow/escalations/sweep` - Run a sweep now

    **Resolution SLA (hours):** high 4, medium 24, low 72.
    Warning starts in the final 25% of the window.

    Open incidents older than the escalation threshold (default 24h) are
    escalated once and announced on Slack.
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
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(workflow_router)


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
                        "record_store": "database",
                        "policy_watch": "active",
                        "scheduler": "running",
                        "last_sweep": "ok"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Reports the record store backend, policy watcher and scheduler state,
    and the outcome of the most recent sweep.
    """
    scheduler = getattr(request.app.state, "scheduler", None)
    policy_manager = getattr(request.app.state, "policy_manager", None)

    last_sweep = "pending"
    if scheduler is not None and scheduler.last_report is not None:
        last_sweep = "ok" if scheduler.last_report.succeeded else "errors"

    checks = {
        "record_store": settings.record_store_backend,
        "policy_watch": "active" if policy_manager and policy_manager.is_watching else "static",
        "scheduler": "running" if scheduler and scheduler.is_running else "stopped",
        "last_sweep": last_sweep
    }

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
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
            "workflow": {
                "prefix": "/workflow",
                "endpoints": [
                    "GET /workflow/{kind}/transitions - Selectable statuses",
                    "POST /workflow/transitions/validate - Check a transition",
                    "PATCH /workflow/incidents/{id}/status - Change incident status",
                    "PATCH /workflow/changes/{id}/status - Change change-request status",
                    "GET /workflow/incidents/{id}/sla - Incident SLA status",
                    "POST /workflow/escalations/sweep - Run a sweep now"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
