"""SheShield escalation service FastAPI entry point.

Creates the FastAPI app, configures middleware, includes routers, and
manages the lifecycle of the escalation services (telephony gateway,
call log, SOS repository, checkpoints, orchestrator).
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI
from fastapi.responses import ORJSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from config.settings import settings
from src.api.router import api_router
from src.middleware.cors import PreflightCORSMiddleware
from src.models.escalation import RetrySettings

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------


def _configure_logging() -> None:
    """Set up structlog with JSON or console rendering based on settings."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            structlog.get_level_from_name(settings.log_level),
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup and shutdown of the escalation services.

    On startup:
      1. Create the background job registry and checkpoint store
      2. Connect the call log and SOS repository (Supabase or in-memory)
      3. Build the telephony gateway from settings
      4. Create the orchestrator and the SOS trigger collector
      5. Resume chains left pending by a previous process

    On shutdown:
      - Cancel running chains (their checkpoints survive in Redis).
      - Close HTTP clients and the checkpoint store.
    """
    _configure_logging()
    logger.info(
        "app.startup",
        env=settings.env,
        telephony_provider=settings.telephony_provider,
        store="supabase" if settings.uses_supabase else "memory",
    )

    app.state.start_time = time.time()
    app.state.startup_error = None
    app.state.default_retry = RetrySettings(
        max_retry_attempts=settings.default_max_retry_attempts,
        retry_interval_minutes=settings.default_retry_interval_minutes,
    )

    # -- 1. Background jobs and checkpoints --------------------------------
    from src.services.background import BackgroundJobs
    from src.services.checkpoints import CheckpointStore

    jobs = BackgroundJobs()
    checkpoints = CheckpointStore(redis_url=settings.redis_url if settings.redis_url else None)
    app.state.jobs = jobs
    app.state.checkpoints = checkpoints
    logger.info("app.checkpoints_initialised", redis=bool(settings.redis_url))

    # -- 2. Call log and SOS repository ------------------------------------
    from src.services.call_log import InMemoryCallLogStore, SupabaseCallLogStore
    from src.services.errors import ConfigurationError
    from src.services.postgrest import PostgRESTClient
    from src.services.sos_repository import InMemorySOSRepository, SupabaseSOSRepository

    store_client: PostgRESTClient | None = None
    if settings.uses_supabase:
        try:
            store_client = PostgRESTClient(
                settings.supabase_url,
                settings.supabase_service_role_key,
                timeout=settings.store_timeout_seconds,
            )
        except ConfigurationError as exc:
            logger.error("app.store_init_failed", error=str(exc))
            app.state.startup_error = str(exc)

    if store_client is not None:
        app.state.call_log = SupabaseCallLogStore(store_client)
        app.state.sos_repository = SupabaseSOSRepository(store_client)
        logger.info("app.store_initialised", backend="supabase")
    else:
        app.state.call_log = InMemoryCallLogStore()
        app.state.sos_repository = InMemorySOSRepository()
        logger.warning("app.store_in_memory", note="call log is not durable")

    # -- 3. Telephony gateway -----------------------------------------------
    from src.services.telephony import create_gateway

    gateway = None
    try:
        gateway = create_gateway(settings)
        logger.info("app.telephony_initialised", provider=settings.telephony_provider)
    except ConfigurationError as exc:
        logger.error("app.telephony_init_failed", error=str(exc))
        app.state.startup_error = str(exc)

    # -- 4. Orchestrator and trigger collector ------------------------------
    from src.services.escalation import EscalationOrchestrator
    from src.services.sos_trigger import SOSTriggerCollector

    orchestrator: EscalationOrchestrator | None = None
    collector: SOSTriggerCollector | None = None
    if gateway is not None and app.state.startup_error is None:
        orchestrator = EscalationOrchestrator(
            gateway,
            app.state.call_log,
            checkpoints=checkpoints,
            jobs=jobs,
            settling_window=settings.settling_window_seconds,
        )
        collector = SOSTriggerCollector(
            orchestrator,
            app.state.sos_repository,
            default_retry=app.state.default_retry,
        )
        logger.info("app.orchestrator_initialised", settling_window=settings.settling_window_seconds)
    app.state.orchestrator = orchestrator
    app.state.sos_collector = collector

    # -- 5. Resume pending chains -------------------------------------------
    if orchestrator is not None and settings.resume_pending_on_startup:
        try:
            resumed = await orchestrator.resume_pending()
            logger.info("app.chains_resumed", count=resumed)
        except Exception:
            logger.warning("app.chain_resume_failed", exc_info=True)

    logger.info("app.startup_complete")

    yield

    # -- Shutdown -----------------------------------------------------------
    logger.info("app.shutdown_start", active_chains=jobs.active_count)

    await jobs.shutdown()
    if store_client is not None:
        await store_client.close()
    await checkpoints.close()

    logger.info("app.shutdown_complete")


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="SheShield Escalation API",
    description=(
        "Emergency call escalation for the SheShield safety app. "
        "Calls a user's emergency contacts when an SOS is triggered and "
        "retries unanswered calls in the background."
    ),
    version="0.1.0",
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# -- CORS middleware --------------------------------------------------------
# Any origin is accepted.  Credentials are never allowed with "*".
app.add_middleware(PreflightCORSMiddleware, allow_credentials=False)

# -- Prometheus metrics -----------------------------------------------------
Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    excluded_handlers=["/metrics", "/api/v1/health"],
).instrument(app).expose(
    app,
    endpoint="/metrics",
    include_in_schema=not settings.is_production,
)

# -- Include routers -------------------------------------------------------
app.include_router(api_router)


@app.get("/api", response_class=ORJSONResponse)
async def api_info() -> dict:
    """API information endpoint."""
    return {
        "name": "SheShield Escalation API",
        "description": "Emergency contact calling with automatic retries",
        "version": app.version,
        "docs": "/docs",
        "health": "/api/v1/health",
        "endpoints": {
            "voice_call": "/api/v1/voice-call",
            "sos_alerts": "/api/v1/sos/alerts",
            "alert_calls": "/api/v1/sos/alerts/{alert_id}/calls",
            "health": "/api/v1/health",
            "readiness": "/api/v1/health/ready",
        },
        "telephony_provider": settings.telephony_provider,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("src.main:app", host=settings.api_host, port=settings.api_port)
