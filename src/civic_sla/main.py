"""
Civic SLA - Main Application
=============================

SLA deadline and escalation service for the municipal issue tracker.

Modules:
- SLA Monitoring: deadline assignment, live classification, escalation
  sweeps and compliance reporting

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services, monitor and DTOs
- Domain: Entities, value objects and pure SLA logic
- Infrastructure: Database, webhook dispatcher, policy file, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

# Configuration
from civic_sla.config import settings

# Infrastructure
from civic_sla.infrastructure.database import (
    init_database, close_database, create_tables, get_session_maker
)

# SLA Module
from civic_sla.sla.infrastructure import (
    SLAPolicyManager,
    SQLAlchemyIssueRepository,
    WebhookNotificationDispatcher,
    SLAScheduler,
)
from civic_sla.sla.application import SLAService, EscalationMonitor, ComplianceService

# Module Routers
from civic_sla.sla.interfaces import sla_router

# Middleware
from civic_sla.shared.api.middleware import (
    CorrelationIDMiddleware,
    MetricsMiddleware,
    LoggingMiddleware,
    RequestMetrics,
    global_exception_handler
)

# Logging
from civic_sla.shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database
    3. Load SLA policy (and optionally watch the file)
    4. Wire repository, dispatcher, services and monitor
    5. Start escalation scheduler

    SHUTDOWN:
    1. Stop scheduler (an in-flight sweep completes)
    2. Stop policy watcher
    3. Close dispatcher and database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting SLA Service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    if settings.environment in ("development", "test"):
        logger.info("Creating database tables")
        try:
            await create_tables()
        except (OSError, SQLAlchemyError) as e:
            logger.warning(f"Database not available - running in degraded mode: {e}")

    logger.info("Loading SLA policy")
    policy_manager = SLAPolicyManager()
    policy_manager.load(settings.sla_policy_path)
    if settings.sla_policy_hot_reload:
        policy_manager.start_watching()

    issue_repository = SQLAlchemyIssueRepository(get_session_maker())

    if not settings.notification_webhook_url:
        logger.warning("NOTIFICATION_WEBHOOK_URL not set - notifications will only be logged")
    dispatcher = WebhookNotificationDispatcher()

    sla_service = SLAService(issue_repository, policy_manager)
    monitor = EscalationMonitor.from_settings(
        issue_repository, dispatcher, policy_manager, settings
    )
    compliance_service = ComplianceService(
        issue_repository, policy_manager, settings.sla_store_timeout_seconds
    )

    scheduler = SLAScheduler(interval_seconds=settings.sla_sweep_interval_seconds)
    await scheduler.start(monitor.sweep)

    # Store services in app state for dependency injection
    app.state.settings = settings
    app.state.policy_manager = policy_manager
    app.state.sla_service = sla_service
    app.state.monitor = monitor
    app.state.compliance_service = compliance_service
    app.state.scheduler = scheduler

    logger.info("SLA Service started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down SLA Service")

    await scheduler.stop()
    policy_manager.stop_watching()
    await dispatcher.close()
    await close_database()

    logger.info("SLA Service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Civic SLA API",
    description="""
    ## SLA Deadlines and Escalation for Municipal Issues

    **Endpoints:**
    - `POST /sla/issues` - Register an issue and assign its SLA deadline
    - `GET /sla/issues/{id}` - Live SLA status of an issue
    - `POST /sla/issues/{id}/observe` - Evaluate one issue now
    - `POST /sla/sweep` - Trigger an escalation sweep
    - `GET /sla/compliance` - Compliance report
    - `GET /sla/policy/resolve` - Preview a deadline

    **Features:**
    - Category/priority targets with per-area overrides
    - compliant / warning / critical / breached classification
    - Exactly-once escalation on breach, hourly reminders afterwards
    - Background sweep (every 60 seconds by default)
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

# === Custom Middleware (last added runs first) ===
request_metrics = RequestMetrics()
app.state.request_metrics = request_metrics
app.add_middleware(LoggingMiddleware)
app.add_middleware(MetricsMiddleware, metrics=request_metrics)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(sla_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service health",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "issue_store": "reachable",
                        "sla_policy": "loaded",
                        "sla_scheduler": "running",
                        "last_sweep": "2024-01-15T10:00:00+00:00"
                    },
                    "requests": {
                        "/sla/sweep": {"requests": 3, "server_errors": 0, "avg_response_ms": 41.7}
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Reports ``degraded`` once the issue store has been unreachable for the
    configured number of consecutive sweeps.
    """
    state = request.app.state
    monitor = getattr(state, "monitor", None)
    scheduler = getattr(state, "scheduler", None)
    request_metrics = getattr(state, "request_metrics", None)

    store_degraded = bool(monitor and monitor.store_degraded)
    last_report = monitor.last_report if monitor else None

    checks = {
        "issue_store": "unavailable" if store_degraded else "reachable",
        "sla_policy": "loaded" if getattr(state, "policy_manager", None) else "not_loaded",
        "sla_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
        "last_sweep": last_report.started_at.isoformat() if last_report else None
    }

    return {
        "status": "degraded" if store_degraded else "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks,
        "requests": request_metrics.snapshot() if request_metrics else {}
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Civic SLA Service",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "sla": {
                "prefix": "/sla",
                "endpoints": [
                    "POST /sla/issues - Register issue",
                    "GET /sla/issues/{id} - Get issue SLA status",
                    "POST /sla/issues/{id}/observe - Evaluate one issue",
                    "POST /sla/sweep - Trigger escalation sweep",
                    "GET /sla/compliance - Compliance report",
                    "GET /sla/policy/resolve - Preview deadline"
                ]
            }
        }
    }


# === Development Entry Point ===

def run() -> None:
    import uvicorn

    uvicorn.run(
        "civic_sla.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    run()
