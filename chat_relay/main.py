"""
Chat relay main application.

Serves the chat WebSocket and a few HTTP health endpoints. All room state
lives in the RelayManager created by the lifespan handler and stored on
``app.state``.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Query, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from shared.config.settings import settings
from shared.config.logging import relay_logger as logger, setup_logging
from chat_relay import __version__
from chat_relay.components.auth.identity import IdentityResolver
from chat_relay.components.core.constants import RelayConstants
from chat_relay.components.core.models import isoformat, utc_now
from chat_relay.components.endpoints.base import ChatEndpoint
from chat_relay.relay_manager import RelayManager

SERVICE_NAME = "Local Messenger API"

_started_at = time.monotonic()


# =============================================================================
# Lifespan and background tasks
# =============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Builds the relay manager and identity resolver, starts the lock
    cleanup task, and shuts the relay down on exit.
    """
    setup_logging()

    for problem in settings.validate_production_secrets():
        logger.warning("Insecure configuration", problem=problem)

    manager = RelayManager.from_settings(settings)
    app.state.manager = manager
    app.state.resolver = IdentityResolver(
        secret=settings.jwt_secret,
        issuer=settings.jwt_issuer,
        audience=settings.jwt_audience,
        algorithm=settings.jwt_algorithm,
        allow_anonymous=settings.allow_anonymous,
    )

    logger.info(
        "Starting chat relay",
        port=settings.relay_port,
        env=settings.environment,
        grace_period=settings.room_grace_period_seconds,
    )

    cleanup_task = asyncio.create_task(start_lock_cleanup(manager), name="lock_cleanup")

    yield

    logger.info("Shutting down chat relay")
    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass

    await manager.shutdown()


async def start_lock_cleanup(manager: RelayManager) -> None:
    """Periodically drop cached locks of deleted rooms."""
    while True:
        try:
            await asyncio.sleep(RelayConstants.LOCK_CLEANUP_INTERVAL)
            await manager.cleanup_locks()
        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error("Error in lock cleanup", error=str(e))


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="Chat Relay",
    description="Real-time chat rooms over WebSocket",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.origins,
    allow_credentials=settings.origins != ["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)


# =============================================================================
# HTTP endpoints
# =============================================================================


@app.get("/")
def root():
    """Service banner."""
    return {
        "message": "Local Messenger Server is running!",
        "version": app.version,
        "timestamp": isoformat(utc_now()),
        "endpoints": {
            "health": "/health",
            "status": "/status",
            "websocket": ChatEndpoint.endpoint_name,
        },
    }


@app.get("/health")
def health_check():
    """Basic health check endpoint."""
    return {
        "status": "OK",
        "service": SERVICE_NAME,
        "version": app.version,
        "environment": settings.environment,
        "timestamp": isoformat(utc_now()),
        "uptime": round(time.monotonic() - _started_at, 3),
    }


@app.get("/status")
def status(request: Request):
    """Live relay counters."""
    manager: RelayManager = request.app.state.manager
    stats = manager.get_stats()
    return {
        "server": "shutting_down" if manager.is_shutting_down else "running",
        "connections": stats["connections"],
        "rooms": stats["rooms"],
        "pendingDeletions": stats["pendingDeletions"],
        "metrics": stats["metrics"],
        "timestamp": isoformat(utc_now()),
    }


# =============================================================================
# WebSocket endpoint
# =============================================================================


@app.websocket("/ws/chat")
async def chat_websocket(websocket: WebSocket, token: str | None = Query(default=None)):
    """
    Chat WebSocket.

    Anonymous connections are allowed unless disabled in settings;
    otherwise pass an identity JWT as ``?token=``.
    """
    endpoint = ChatEndpoint(
        websocket,
        websocket.app.state.manager,
        websocket.app.state.resolver,
        token=token,
        receive_timeout=settings.ws_receive_timeout,
        max_message_size=settings.ws_max_message_size,
        raise_invariant_violations=not settings.is_production,
    )
    await endpoint.run()


def main() -> None:
    """Run the relay with uvicorn."""
    uvicorn.run(
        "chat_relay.main:app",
        host=settings.relay_host,
        port=settings.relay_port,
        reload=settings.debug and not settings.is_production,
    )


if __name__ == "__main__":
    main()
