"""
helpdesk-triage - Main Application
==================================

Support ticket triage service.

An incoming ticket is classified, matched against the knowledge base, a
reply is drafted, and the ticket is either auto-resolved or escalated to a
human. Every step is recorded in the audit log.

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Orchestrator, providers, services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, LLM, notifications, config watcher, scheduler
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

# Configuration and Core
from helpdesk_triage.config import Settings, settings as default_settings
from helpdesk_triage.core import ApplicationException, ConfigurationException

# Infrastructure
from helpdesk_triage.infrastructure.database import (
    init_database, close_database, create_tables, get_engine
)
from helpdesk_triage.infrastructure.notifications import build_notification_hub

# Triage Module
from helpdesk_triage.triage.application import (
    AuditRecorder,
    CachedTriageConfigProvider,
    HealthResponse,
    StubTextGenerationProvider,
    SuggestionReviewService,
    WorkflowOrchestrator,
    build_text_generation_provider,
)
from helpdesk_triage.triage.domain import TriageConfig
from helpdesk_triage.triage.infrastructure import (
    NotifierAdapter,
    SQLAlchemyArticleRepository,
    SQLAlchemyAuditLogRepository,
    SQLAlchemyKnowledgeRetriever,
    SQLAlchemySuggestionRepository,
    SQLAlchemyTicketRepository,
    TriageConfigManager,
    TriageScheduler,
)
from helpdesk_triage.triage.interfaces import TriageServices, tickets_router, triage_router

# Shared
from helpdesk_triage.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler,
)
from helpdesk_triage.shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)

SHUTDOWN_DRAIN_SECONDS = 10


def build_provider(config: Settings):
    """Configured text generation provider, or the offline one if the LLM is not usable."""
    try:
        return build_text_generation_provider(config)
    except ConfigurationException as e:
        logger.warning(f"LLM provider not available, using offline heuristics: {e.message}")
        return StubTextGenerationProvider()


def create_app(
    config: Optional[Settings] = None,
    services: Optional[TriageServices] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Settings (defaults to the environment)
        services: Pre-wired triage services; when given, startup skips the
            database, config watcher and scheduler wiring
    """
    config = config or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        """
        Application lifespan manager.

        STARTUP:
        1. Setup structured logging
        2. Initialize database and create tables
        3. Load triage decision config and start watching it
        4. Build provider, notifier, repositories and orchestrator
        5. Start the untriaged-ticket sweep (if enabled)

        SHUTDOWN:
        1. Stop scheduler and config watcher
        2. Wait briefly for background triage runs
        3. Close notification hub and database connections
        """
        setup_logging(config.log_level, config.environment)
        app.state.settings = config

        if services is not None:
            app.state.triage = services
            yield
            return

        logger.info("Starting helpdesk-triage", extra={
            "version": config.app_version,
            "environment": config.environment
        })

        # Initialize database
        init_database()
        try:
            await create_tables()
        except Exception as e:
            logger.warning(f"Database not available - running in degraded mode: {e}")

        # Decision config: YAML with hot reload, behind a TTL cache
        config_manager = TriageConfigManager(defaults=TriageConfig(
            auto_close_enabled=config.auto_close_enabled,
            confidence_threshold=config.confidence_threshold
        ))
        config_manager.load(config.triage_config_path)
        config_manager.start_watching()
        config_provider = CachedTriageConfigProvider(
            config_manager, ttl_seconds=config.triage_config_cache_ttl_seconds
        )

        provider = build_provider(config)
        hub = build_notification_hub(
            config.notification_webhook_url, config.notification_timeout_seconds
        )
        notifier = NotifierAdapter(hub)

        ticket_repository = SQLAlchemyTicketRepository()
        suggestion_repository = SQLAlchemySuggestionRepository()
        audit_repository = SQLAlchemyAuditLogRepository()
        audit_recorder = AuditRecorder(audit_repository)

        orchestrator = WorkflowOrchestrator(
            ticket_repository=ticket_repository,
            suggestion_repository=suggestion_repository,
            article_repository=SQLAlchemyArticleRepository(),
            retriever=SQLAlchemyKnowledgeRetriever(),
            provider=provider,
            audit_recorder=audit_recorder,
            notifier=notifier,
            config_provider=config_provider,
            kb_top_k=config.kb_top_k,
            run_timeout_seconds=config.triage_run_timeout_seconds,
            prompt_version=config.prompt_version
        )
        app.state.triage = TriageServices(
            orchestrator=orchestrator,
            review_service=SuggestionReviewService(
                ticket_repository, suggestion_repository, audit_recorder, notifier
            ),
            ticket_repository=ticket_repository,
            suggestion_repository=suggestion_repository,
            audit_repository=audit_repository,
            provider=provider
        )

        scheduler = None
        if config.triage_sweep_interval_seconds > 0:
            async def triage_sweep_job():
                """Background sweep for open tickets that were never triaged."""
                await orchestrator.sweep_untriaged(batch_size=config.triage_batch_size)

            scheduler = TriageScheduler(interval_seconds=config.triage_sweep_interval_seconds)
            await scheduler.start(triage_sweep_job)

        logger.info("helpdesk-triage started", extra={
            "provider": provider.provider_name,
            "stub_mode": provider.is_stub_mode()
        })

        yield  # Application runs here

        # === SHUTDOWN ===
        logger.info("Shutting down helpdesk-triage")

        if scheduler:
            await scheduler.stop()
        config_manager.stop_watching()

        try:
            await asyncio.wait_for(orchestrator.drain(), timeout=SHUTDOWN_DRAIN_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Background triage runs still pending at shutdown",
                           extra={"pending": orchestrator.pending_runs})

        await hub.close()
        await close_database()
        logger.info("helpdesk-triage shutdown complete")

    app = FastAPI(
        title="helpdesk-triage API",
        description="""
        ## Support Ticket Triage

        Classifies incoming tickets, retrieves knowledge base articles,
        drafts a reply and either auto-resolves the ticket or hands it to a
        human, recording every step in the audit log.

        **Endpoints:**
        - `POST /tickets` - Create a ticket (triage starts in the background)
        - `POST /triage/{ticket_id}` - Run triage and return the workflow context
        - `GET /triage/{ticket_id}/suggestion` - Latest suggestion for a ticket
        - `GET /triage/{ticket_id}/audit` - Audit trail
        - `POST /triage/{ticket_id}/suggestion/accept|reject` - Human review
        """,
        version=config.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    app.state.settings = config
    if services is not None:
        app.state.triage = services

    # === CORS Middleware ===
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # === Custom Middleware (from shared) ===
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # === Include Module Routers ===
    app.include_router(tickets_router)
    app.include_router(triage_router)

    # === Health Check Endpoint ===

    @app.get("/health", tags=["Health"], response_model=HealthResponse)
    async def health_check(request: Request):
        """
        Health check endpoint for load balancers and orchestrators.

        Reports the active text generation provider and database connectivity.
        """
        triage = getattr(request.app.state, "triage", None)
        provider = triage.provider if triage else None

        database = "connected"
        try:
            async with get_engine().connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as e:
            database = f"unavailable: {type(e).__name__}"

        return HealthResponse(
            status="healthy" if triage and database == "connected" else "degraded",
            version=config.app_version,
            environment=config.environment,
            provider=provider.provider_name if provider else "none",
            stub_mode=provider.is_stub_mode() if provider else False,
            database=database
        )

    return app


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "helpdesk_triage.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.environment == "development",
        log_level="info"
    )
