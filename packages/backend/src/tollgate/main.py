"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown: it opens the database
engine and Redis, builds the service container and puts it on
``app.state.services``. Tests set ``app.state.services`` themselves
before the app starts, and the lifespan leaves a preset container alone.

Every ``AuthError`` raised anywhere (resolver, guard, services) is
rendered by one exception handler as
``{"error", "code", "message", ...}`` with the error's status and headers.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tollgate import __version__
from tollgate.api import api_router
from tollgate.auth.errors import AuthError
from tollgate.config import Settings, settings as default_settings
from tollgate.db.engine import create_engine, create_session_factory
from tollgate.middleware.csrf import CsrfMiddleware
from tollgate.middleware.request_id import RequestIdMiddleware
from tollgate.middleware.security import SecurityHeadersMiddleware
from tollgate.realtime.pubsub import close_redis, create_redis
from tollgate.realtime.websocket import router as ws_router
from tollgate.services.container import build_services

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. Resources are only closed here if this lifespan opened them.
    """
    settings: Settings = app.state.settings
    logger.info(
        "tollgate.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    owned = getattr(app.state, "services", None) is None
    engine = None
    redis = None
    if owned:
        engine = create_engine(settings)
        try:
            redis = await create_redis(settings)
        except Exception as e:
            if settings.environment != "development":
                raise
            # Development only: run without cache, limiter and lockout
            logger.warning("tollgate.redis_unavailable", error=str(e))
            redis = None
        app.state.services = build_services(
            settings, create_session_factory(engine), redis
        )

    yield

    logger.info("tollgate.shutdown")
    await app.state.services.drain()
    if owned:
        await close_redis(redis)
        await engine.dispose()


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("auth.unavailable", code=exc.code)
    else:
        logger.info("auth.denied", code=exc.code, status=exc.status_code)
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_body(),
        headers=exc.headers or None,
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build and return the FastAPI application."""
    settings = settings or default_settings
    app = FastAPI(
        title="Tollgate",
        description="Credential and access-control core: API keys, sessions, guards, rate limits",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_exception_handler(AuthError, auth_error_handler)

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → Security → CORS → CSRF → handler
    app.add_middleware(
        CsrfMiddleware,
        allowed_origins=settings.cors_origins,
        cookie_name=settings.session_cookie_name,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
    )
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # Mount API routes
    app.include_router(api_router)

    # Mount WebSocket route
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: tollgate.main:app)
app = create_app()
