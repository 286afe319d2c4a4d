"""Broadcast relay application.

A separate FastAPI process that viewers subscribe to over WebSocket and
the main API pushes live transcript payloads into:

    WS   /ws         viewer subscription (server -> client only)
    POST /broadcast  one-way send to every connected viewer
    GET  /health     liveness plus current viewer count

Run with ``uvicorn src.meetbot.relay.app:app --port 8001`` or
``python -m src.meetbot.relay``.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import Body, Depends, FastAPI, Request, WebSocket, WebSocketDisconnect

from src.meetbot.api.middleware.logging import configure_structlog
from src.meetbot.config import get_settings
from src.meetbot.core.monitoring import get_metrics_response, init_sentry, relay_broadcasts_total
from src.meetbot.relay.registry import ConnectionRegistry

logger = structlog.get_logger(__name__)


def get_registry(request: Request) -> ConnectionRegistry:
    """Retrieve the ConnectionRegistry owned by this relay process."""
    return request.app.state.registry


def get_ws_registry(websocket: WebSocket) -> ConnectionRegistry:
    return websocket.app.state.registry


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create the registry for the lifetime of the process."""
    settings = get_settings()
    configure_structlog()
    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)
    if getattr(app.state, "registry", None) is None:
        app.state.registry = ConnectionRegistry()
    logger.info("relay.started")
    yield
    logger.info("relay.stopped", viewers=len(app.state.registry))


def create_relay_app(registry: ConnectionRegistry | None = None) -> FastAPI:
    """Create the relay app, optionally with a pre-built registry."""
    app = FastAPI(
        title="meetbot relay",
        version="0.1.0",
        description="Live caption fan-out to connected viewers",
        lifespan=lifespan,
    )
    app.state.registry = registry if registry is not None else ConnectionRegistry()

    @app.websocket("/ws")
    async def viewer_socket(
        websocket: WebSocket,
        registry: ConnectionRegistry = Depends(get_ws_registry),
    ) -> None:
        await websocket.accept()
        registry.add(websocket)
        await websocket.send_json({"type": "connected", "viewers": len(registry)})
        try:
            # Viewers don't send anything meaningful; keep reading to detect disconnects
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            registry.remove(websocket)

    @app.post("/broadcast")
    async def broadcast(
        payload: dict = Body(...),
        registry: ConnectionRegistry = Depends(get_registry),
    ) -> dict:
        delivered = await registry.broadcast(payload)
        relay_broadcasts_total.inc()
        return {"status": "ok", "delivered": delivered}

    @app.get("/health")
    async def health(registry: ConnectionRegistry = Depends(get_registry)) -> dict:
        return {"status": "ok", "viewers": len(registry)}

    @app.get("/metrics", include_in_schema=False)
    async def metrics() -> object:
        return get_metrics_response()

    return app


# Module-level app for uvicorn
app = create_relay_app()
