from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, Request, Response, WebSocket
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from backend import RoomDirectory
from constants import (
    CORS_ALLOW_ORIGINS,
    HEARTBEAT_INTERVAL_MS,
    LOG_FILE,
    LOG_LEVEL,
    RATE_LIMIT_MAX_MSGS,
    RATE_LIMIT_WINDOW_MS,
    SEND_QUEUE_SIZE,
    SHUTDOWN_TIMEOUT_S,
)
from lifecycle import LifecycleController
from logging_config import get_logger, setup_logging
from rate_limiter import RateLimiter
from registry import ConnectionRegistry
from routers.health import health_router

# Setup logging
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)
logger = get_logger(__name__)


def create_app(
    rate_limit_window_ms: int = RATE_LIMIT_WINDOW_MS,
    rate_limit_max_msgs: int = RATE_LIMIT_MAX_MSGS,
    heartbeat_interval_ms: int = HEARTBEAT_INTERVAL_MS,
    send_queue_size: int = SEND_QUEUE_SIZE,
    shutdown_timeout: float = SHUTDOWN_TIMEOUT_S,
    cors_allow_origins: Optional[List[str]] = None,
) -> FastAPI:
    """Build a relay application with its own rooms, registry and heartbeat."""
    directory = RoomDirectory()
    registry = ConnectionRegistry(heartbeat_interval_ms=heartbeat_interval_ms)
    controller = LifecycleController(
        directory,
        registry,
        RateLimiter(window_ms=rate_limit_window_ms, max_messages=rate_limit_max_msgs),
        send_queue_size=send_queue_size,
        shutdown_timeout=shutdown_timeout,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        registry.start_heartbeat()
        logger.info("Signaling relay started")
        try:
            yield
        finally:
            await controller.shutdown()

    app = FastAPI(title="signaling-relay", lifespan=lifespan)

    # Configure CORS for the health route; the WebSocket route is not subject to CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_allow_origins if cors_allow_origins is not None else CORS_ALLOW_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)

    @app.exception_handler(StarletteHTTPException)
    async def plain_not_found(request: Request, exc: StarletteHTTPException):
        # Only GET / is served over plain HTTP; every other path or method is a 404
        if exc.status_code in (404, 405):
            return Response(status_code=404)
        return await http_exception_handler(request, exc)

    @app.websocket("/")
    async def signaling_endpoint(websocket: WebSocket):
        """One signaling session per client; all traffic is JSON text frames."""
        await controller.serve(websocket)

    app.state.directory = directory
    app.state.registry = registry
    app.state.controller = controller

    logger.info("FastAPI application initialized")
    return app


app = create_app()
