"""
FastAPI app factory.

Responsibilities:
- Create and configure FastAPI app
- Set up middleware
- Initialize shared resources (transport, registry, gateway)
- Restore and shut down sessions with the process
- Register routes
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import AppConfig

from observability import logger
from observability.logger import log_event
from session.gateway import SessionGateway, build_registry
from transport.base import MessagingTransport
from transport.loader import load_transport

from server.routes import register_routes


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def create_app(
    config: AppConfig | None = None,
    transport: MessagingTransport | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    This is the app factory pattern that allows:
    - Testing with different configurations (and a fake transport)
    - Environment-specific setup
    - ASGI server compatibility
    """
    config = config or AppConfig.load_from_env()
    logger.configure(json_lines=config.enable_json_logs)

    # Build the transport ONCE per process
    if transport is None:
        if not config.transport:
            raise RuntimeError("TRANSPORT environment variable not set")
        transport = load_transport(config.transport)

    registry = build_registry(config=config, transport=transport)
    gateway = SessionGateway(registry=registry, config=config)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        log_event({
            "ts_ms": _now_ms(),
            "event_type": "SERVER_STARTING",
            "env": config.env,
            "transport": type(transport).__name__,
        })
        if config.restore_sessions_on_startup:
            await registry.restore_existing()
        try:
            yield
        finally:
            await registry.shutdown_all()
            log_event({"ts_ms": _now_ms(), "event_type": "SERVER_STOPPED"})

    app = FastAPI(title="Messaging Session API", lifespan=lifespan)

    app.state.config = config
    app.state.gateway = gateway

    # Middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.cors_allow_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routes
    register_routes(app)

    return app
