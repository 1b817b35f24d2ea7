"""FastAPI application wiring for the brokerhub messaging service.

- Configures logging, CORS for the web client, Prometheus metrics and rate
  limiting.
- Builds the long-lived collaborators once in the lifespan: the database
  session factory, the realtime fan-out channel, the domain event bus and the
  interest notification bridge. They live on ``app.state`` and are handed to
  routes and services from there.
- Exposes the messaging REST routes, the interest submission hook and the
  ``/ws`` realtime socket.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import partial

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.orm import Session, sessionmaker

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .core.db import conversation_service_scope
from .core.ratelimit import limiter
from .events import EventBus, InterestNotificationBridge
from .messaging.realtime import RealtimeChannel
from .models.session import create_tables, get_sessionmaker
from .routers import interests, messages, realtime

load_dotenv()

logger = logging.getLogger(__name__)


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def create_app(session_factory: sessionmaker[Session] | None = None) -> FastAPI:
    """Build the application.

    ``session_factory`` defaults to one bound to ``DATABASE_URL``, created at
    startup rather than import time.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        factory = session_factory or get_sessionmaker()
        if _env_flag("AUTO_CREATE_TABLES"):
            create_tables(factory)
        channel = RealtimeChannel()
        bus = EventBus()
        InterestNotificationBridge(
            partial(conversation_service_scope, factory, channel), channel
        ).register(bus)

        app.state.session_factory = factory
        app.state.realtime = channel
        app.state.event_bus = bus
        logger.info("Messaging services started")
        try:
            yield
        finally:
            await bus.drain()
            logger.info("Messaging services stopped")

    app = FastAPI(title="brokerhub", version=__version__, lifespan=lifespan)
    init_logging(app)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    client_origins = os.getenv("CLIENT_URL", "http://localhost:3000")
    origins = [o.strip() for o in client_origins.split(",") if o.strip()]
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )

    app.include_router(messages.router)
    app.include_router(interests.router)
    app.include_router(realtime.router)

    @app.get("/api/health")
    async def health():
        """Liveness/readiness check with a minimal JSON body."""
        return {"status": "ok"}

    @app.get("/api/version")
    async def version():
        """Return version information for the application."""
        return {
            "version": __version__,
            "build_date": __build_date__,
            "commit_sha": __commit_sha__,
        }

    if _env_flag("METRICS_ENABLED", "true"):
        Instrumentator().instrument(app).expose(
            app, include_in_schema=False, endpoint="/api/metrics"
        )

    return app


app = create_app()
