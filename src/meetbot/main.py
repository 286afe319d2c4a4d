"""FastAPI application factory.

Creates the app with logging middleware, metrics middleware, CORS, Sentry,
lifespan wiring for the database and meeting services, and the v1 API router.
The broadcast relay is a separate app (src.meetbot.relay.app).
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import Response

from src.meetbot.config import get_settings
from src.meetbot.core.database import close_db, init_db
from src.meetbot.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.meetbot.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.meetbot.api.v1.router import router as v1_router


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, Sentry and meeting services; tear down on stop."""
    import structlog

    log = structlog.get_logger(__name__)
    settings = get_settings()
    configure_structlog()
    app.state.settings = settings

    try:
        await init_db()
    except Exception:
        log.warning("startup.init_db_failed", exc_info=True)

    # Initialize Sentry if DSN is configured
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    # ── Meeting services ────────────────────────────────────────────────
    # Each piece is failure-tolerant: a missing Recall.ai key leaves the
    # webhook and read endpoints working without join or resolution.
    try:
        from src.meetbot.core.database import get_session
        from src.meetbot.meetings.bot.artifacts import ArtifactResolver
        from src.meetbot.meetings.bot.manager import BotManager
        from src.meetbot.meetings.bot.recall_client import RecallClient
        from src.meetbot.meetings.ingestion import EventIngestor
        from src.meetbot.meetings.repository import MeetingRepository
        from src.meetbot.relay.client import RelayClient

        meeting_repo = MeetingRepository(session_factory=get_session)
        app.state.meeting_repository = meeting_repo

        recall_client = None
        resolver = None
        bot_manager = None
        if settings.RECALL_AI_API_KEY:
            recall_client = RecallClient(
                api_key=settings.RECALL_AI_API_KEY,
                region=settings.RECALL_AI_REGION,
            )
            resolver = ArtifactResolver.from_settings(recall_client, settings)
            bot_manager = BotManager(
                recall_client=recall_client,
                repository=meeting_repo,
                settings=settings,
            )
        else:
            log.warning("startup.recall_not_configured", hint="RECALL_AI_API_KEY not set")

        relay_client = RelayClient(settings.RELAY_URL) if settings.RELAY_URL else None

        app.state.recall_client = recall_client
        app.state.bot_manager = bot_manager
        app.state.event_ingestor = EventIngestor(
            repository=meeting_repo,
            resolver=resolver,
            relay_client=relay_client,
            ack_timeout=settings.WEBHOOK_ACK_TIMEOUT_SECONDS,
        )
        log.info(
            "startup.meeting_services_initialized",
            recall_configured=recall_client is not None,
            relay_url=settings.RELAY_URL,
        )
    except Exception:
        log.warning("startup.meeting_services_init_failed", exc_info=True)
        app.state.meeting_repository = None
        app.state.bot_manager = None
        app.state.event_ingestor = None

    yield

    ingestor = getattr(app.state, "event_ingestor", None)
    if ingestor is not None:
        try:
            await ingestor.shutdown()
        except Exception:
            log.warning("shutdown.ingestor_error", exc_info=True)

    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="meetbot API",
        version="0.1.0",
        description="Recall.ai meeting bot with live captions and post-call artifacts",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    # CORS middleware
    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=origins != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(v1_router, prefix="/api/v1")

    # Prometheus metrics endpoint (infrastructure route, outside v1 router)
    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_app()
