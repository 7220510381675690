"""
Knowledge Pipeline - Main Application
=====================================

Document ingestion and knowledge retrieval for compliance assessment.

Modules:
- Ingestion: extract, chunk, embed and store uploaded documents
- Retrieval: knowledge-tier classification and grounded context assembly
- Assistant: grounded answers, gap tracking and conversation state

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, storage, LLM, vector store
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration
from knowledge_pipeline.config import settings

# Infrastructure
from knowledge_pipeline.infrastructure.database import close_database, create_tables, get_session_context, init_database
from knowledge_pipeline.infrastructure.storage import close_document_storage

# Assistant follow-ups
from knowledge_pipeline.assistant.application import FollowUpDispatchService
from knowledge_pipeline.assistant.infrastructure import (
    FollowUpScheduler,
    SQLAlchemyGapTicketRepository,
    close_followup_notifier,
    get_followup_notifier,
)

# Tier keywords
from knowledge_pipeline.retrieval.infrastructure import get_tier_config_manager

# Module Routers
from knowledge_pipeline.assistant.interfaces import assistant_router
from knowledge_pipeline.ingestion.interfaces import ingestion_router
from knowledge_pipeline.retrieval.interfaces import retrieval_router

# Shared
from knowledge_pipeline.shared.api.middleware import register_middleware
from knowledge_pipeline.shared.infrastructure.grafana import init_grafana_exporter
from knowledge_pipeline.shared.infrastructure.logging import get_logger, setup_logging
from knowledge_pipeline.shared.infrastructure.rate_limit import prune_usage_counters

logger = get_logger(__name__)

# Global service instances
followup_scheduler = None
database_ready = False


async def run_background_sweep() -> None:
    """Background sweep: re-dispatch undispatched gap tickets, then prune old usage windows."""
    async with get_session_context() as session:
        service = FollowUpDispatchService(SQLAlchemyGapTicketRepository(session), get_followup_notifier())
        await service.dispatch_pending()

    async with get_session_context() as session:
        await prune_usage_counters(session)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load tier keywords and watch the file
    4. Initialize Grafana exporter
    5. Start follow-up scheduler

    SHUTDOWN:
    1. Stop follow-up scheduler
    2. Stop tier keyword watcher
    3. Close notifier, document storage and database connections
    """
    global followup_scheduler, database_ready

    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Knowledge Pipeline", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    # Development convenience; production schemas come from migrations
    try:
        await create_tables()
        database_ready = True
    except Exception as e:
        logger.warning(f"Database not available - running in degraded mode: {e}")

    logger.info("Loading tier keywords")
    tier_config = get_tier_config_manager()
    tier_config.start_watching()

    try:
        if settings.grafana_host and settings.grafana_api_key and settings.grafana_instance_id:
            init_grafana_exporter(
                host=settings.grafana_host,
                api_key=settings.grafana_api_key,
                instance_id=settings.grafana_instance_id
            )
        else:
            logger.info("Grafana OTLP exporter not configured - metrics will not be exported")
    except Exception as e:
        logger.warning(f"Grafana exporter initialization failed: {e}")

    if settings.followup_dispatch_interval > 0:
        try:
            followup_scheduler = FollowUpScheduler(interval_seconds=settings.followup_dispatch_interval)
            await followup_scheduler.start(run_background_sweep)
        except Exception as e:
            logger.warning(f"Follow-up scheduler not started: {e}")
            followup_scheduler = None

    logger.info("Knowledge Pipeline started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Knowledge Pipeline")

    if followup_scheduler:
        await followup_scheduler.stop()

    tier_config.stop_watching()
    await close_followup_notifier()
    await close_document_storage()
    await close_database()

    logger.info("Knowledge Pipeline shutdown complete")


app = FastAPI(
    title="Knowledge Pipeline API",
    description="""
    ## Document Ingestion & Knowledge Retrieval

    Turns uploaded organizational documents into searchable knowledge and
    assembles it into grounded answer context.

    ---

    ### 📄 Ingestion

    - `POST /ingestion/process` - Extract, chunk, embed and store a document
    - `GET /ingestion/documents/{id}` - Processing status

    ### 🔎 Retrieval

    - `POST /retrieval/context` - Assemble sectioned context for a query
    - `POST /retrieval/tier` - Classify a request into a knowledge tier

    ### 🤖 Assistant

    - `POST /assistant/ask` - Grounded answer with follow-up commitment
    - `POST /assistant/gaps` - Review an answer for missing specifics
    - `POST /assistant/conversations/turns` - Store a turn
    - `GET /assistant/conversations/window` - Recent conversation window

    ---

    ### Knowledge Tiers

    | Tier | Validation | Use |
    |------|-----------|-----|
    | INTERNAL_SECURE | strict | Audit, scoring, MPS generation |
    | ORGANIZATIONAL_CONTEXT | standard | Organization tailoring |
    | EXTERNAL_AWARENESS | advisory | Threat awareness, never scored |
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

# === Custom Middleware and exception handlers (from shared) ===
register_middleware(app)

# === Include Module Routers ===
app.include_router(ingestion_router)
app.include_router(retrieval_router)
app.include_router(assistant_router)


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
                        "tier_config": "loaded",
                        "followup_scheduler": "running",
                        "vector_backend": "database",
                        "embedding_provider": "openai"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Reports database availability, tier keyword state, scheduler state and
    the configured vector/embedding backends.
    """
    checks = {
        "database": "connected" if database_ready else "unavailable",
        "tier_config": "loaded",
        "followup_scheduler": "running" if followup_scheduler and followup_scheduler.is_running else "stopped",
        "vector_backend": settings.vector_backend,
        "embedding_provider": "mock" if settings.mock_llm else settings.embedding_provider,
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
        "service": "Knowledge Pipeline",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "ingestion": {
                "prefix": "/ingestion",
                "endpoints": [
                    "POST /ingestion/process - Process a document",
                    "GET /ingestion/documents/{id} - Get processing status"
                ]
            },
            "retrieval": {
                "prefix": "/retrieval",
                "endpoints": [
                    "POST /retrieval/context - Assemble context",
                    "POST /retrieval/tier - Classify knowledge tier"
                ]
            },
            "assistant": {
                "prefix": "/assistant",
                "endpoints": [
                    "POST /assistant/ask - Grounded answer",
                    "POST /assistant/gaps - Gap review",
                    "POST /assistant/conversations/turns - Store turn",
                    "GET /assistant/conversations/window - Conversation window"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "knowledge_pipeline.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
