from __future__ import annotations
# WorkerBridge - Supervised Worker Process Bridge
# Copyright (C) 2026 WorkerBridge Authors
# SPDX-License-Identifier: Apache-2.0
#
# This file is part of WorkerBridge server, licensed under Apache-2.0.
# See LICENSE for the full license text.


import logging
import time
import uuid
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse as StarletteJSONResponse

from workerbridge.config import WorkerBridgeConfig, load_config
from workerbridge.exceptions import WorkerBridgeError
from workerbridge.supervisor import (
    EnvironmentResolver,
    EventRouter,
    ProcessSupervisor,
    detect_packaged,
)
from server.routes import create_router
from server.websocket import WebSocketManager

logger = logging.getLogger("workerbridge.server")

# Paths to exclude from request logging (noisy health checks, etc.)
_NOISY_PATHS = frozenset({
    "/api/system/health",
    "/api/status",
    "/ws",
})


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with method, path, status, and duration.

    Automatically binds a ``request_id`` into structlog contextvars so that
    all log records emitted during request processing carry the ID.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        structlog.contextvars.clear_contextvars()
        request_id = request.headers.get(
            "X-Request-ID", uuid.uuid4().hex[:12],
        )
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - start) * 1000, 1)

        response.headers["X-Request-ID"] = request_id

        if request.url.path not in _NOISY_PATHS:
            req_logger = logging.getLogger("workerbridge.request")
            req_logger.info(
                "request %s %s -> %d (%.1fms)",
                request.method,
                request.url.path,
                response.status_code,
                duration_ms,
            )

        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    supervisor: ProcessSupervisor = app.state.supervisor
    environment = app.state.startup_environment
    if environment:
        try:
            await supervisor.start(environment)
        except WorkerBridgeError:
            # The server stays up; the next command retries the start
            logger.exception("Worker failed to start for environment '%s'", environment)
    logger.info("Server started")
    yield
    await supervisor.shutdown()
    await app.state.event_router.aclose()
    logger.info("Server stopped")


def create_app(
    config: WorkerBridgeConfig | None = None,
    *,
    supervisor: ProcessSupervisor | None = None,
    router: EventRouter | None = None,
    startup_environment: str | None = None,
) -> FastAPI:
    """Build the FastAPI app around one worker supervisor.

    Args:
        config: Configuration; loaded from the data dir when omitted.
        supervisor: Pre-built supervisor (tests); built from *config* otherwise.
        router: Event router shared with the supervisor.
        startup_environment: Environment to start during lifespan startup.
            ``None`` defers the start to the first command.
    """
    from workerbridge import __version__

    config = config or load_config()
    app = FastAPI(title="WorkerBridge", version=__version__, lifespan=lifespan)

    if router is None:
        router = supervisor.router if supervisor is not None else EventRouter(
            queue_size=config.server.subscriber_queue_size,
        )
    if supervisor is None:
        resolver = EnvironmentResolver(config.resolver)
        supervisor = ProcessSupervisor(
            config.supervisor,
            resolver,
            router,
            packaged=detect_packaged(config.resolver),
        )

    app.state.config = config
    app.state.supervisor = supervisor
    app.state.event_router = router
    app.state.ws_manager = WebSocketManager(router)
    app.state.startup_environment = startup_environment

    # ── Global exception handler ────────────────────────────
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception: %s", exc)
        return StarletteJSONResponse(
            {"error": "Internal server error"}, status_code=500,
        )

    # ── Request logging middleware ─────────────────────────
    app.add_middleware(RequestLoggingMiddleware)

    # ── Route registration ─────────────────────────────────
    app.include_router(create_router())

    return app
