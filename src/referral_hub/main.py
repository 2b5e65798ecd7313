"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan events for database and Salesforce sync initialization, the health
routes, and the v1 API router.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.referral_hub.config import Settings, get_settings
from src.referral_hub.core.database import close_db, get_session, init_db
from src.referral_hub.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.referral_hub.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.referral_hub.api.v1 import health
from src.referral_hub.api.v1.router import router as v1_router


def init_sync_services(app: FastAPI, settings: Settings, repository) -> None:
    """Wire the Salesforce sync stack onto app.state.

    Order: settings store -> client -> session manager -> resolver ->
    simulation -> executor -> coordinator.
    """
    from src.referral_hub.sync import (
        SalesforceClient,
        SessionManager,
        SimulationFallback,
        SyncCoordinator,
        SyncExecutor,
        UpsertResolver,
    )
    from src.referral_hub.sync.settings_store import SalesforceSettingsStore

    settings_store = SalesforceSettingsStore(settings.SALESFORCE_SETTINGS_PATH)
    client = SalesforceClient(
        api_version=settings.SALESFORCE_API_VERSION,
        timeout=settings.SALESFORCE_TIMEOUT_SECONDS,
        retry_attempts=settings.SALESFORCE_QUERY_RETRY_ATTEMPTS,
    )
    session_manager = SessionManager(
        client=client,
        settings=settings,
        user_settings=settings_store.load(),
    )
    executor = SyncExecutor(
        session_manager=session_manager,
        resolver=UpsertResolver(client, strict=settings.SYNC_STRICT_RECONCILIATION),
        simulation=SimulationFallback(delay_seconds=settings.SYNC_SIMULATION_DELAY_SECONDS),
    )

    app.state.settings_store = settings_store
    app.state.session_manager = session_manager
    app.state.sync_coordinator = SyncCoordinator(
        executor=executor,
        repository=repository,
        background=settings.SYNC_IN_BACKGROUND,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and sync on startup, drain on shutdown."""
    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # Each module is initialized in its own try/except so a single failure
    # leaves the rest of the API usable; affected routes answer 503.

    try:
        from src.referral_hub.records.repository import RecordRepository

        await init_db()
        app.state.record_repository = RecordRepository(session_factory=get_session)
        log.info("records.repository_initialized")
    except Exception:
        log.warning("records.repository_init_failed", exc_info=True)
        app.state.record_repository = None

    try:
        init_sync_services(app, settings, app.state.record_repository)
        log.info(
            "sync.services_initialized",
            credential_source=app.state.session_manager.current_credentials().source.value,
            background=settings.SYNC_IN_BACKGROUND,
        )
    except Exception:
        log.warning("sync.services_init_failed", exc_info=True)
        app.state.settings_store = None
        app.state.session_manager = None
        app.state.sync_coordinator = None

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    coordinator = getattr(app.state, "sync_coordinator", None)
    if coordinator is not None:
        try:
            await coordinator.drain()
        except Exception:
            log.warning("sync.drain_failed", exc_info=True)

    session_manager = getattr(app.state, "session_manager", None)
    if session_manager is not None:
        await session_manager.disconnect()

    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Referral Hub API",
        version="0.1.0",
        description="Patient and referral administration with Salesforce record sync",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins() or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(health.router)
    app.include_router(v1_router, prefix="/v1")

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
