"""FastAPI application factory.

Creates the app with tenant middleware, logging middleware, metrics
middleware, CORS, Sentry, the ``{code, msg}`` error handlers and the
``/api`` router. The host platform hands its collaborator services to
``create_app``; the meeting services built on top of them are stored on
``app.state``.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import Any

import redis.asyncio as aioredis
import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.requests import Request
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.bbb_meetings.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.bbb_meetings.api.v1 import health
from src.bbb_meetings.api.v1.router import router as api_router
from src.bbb_meetings.bbb.client import BBBClient
from src.bbb_meetings.config import ConfigProvider, Settings, SettingsConfigProvider, get_settings
from src.bbb_meetings.core.database import close_db, get_tenant_session
from src.bbb_meetings.core.errors import MeetingsError
from src.bbb_meetings.core.monitoring import MetricsMiddleware, get_metrics_response, init_sentry
from src.bbb_meetings.core.redis import close_redis, get_redis_pool
from src.bbb_meetings.core.tenant import TenantMiddleware
from src.bbb_meetings.events.bus import MeetingEventBus
from src.bbb_meetings.meetings.collaborators import Collaborators
from src.bbb_meetings.meetings.conferencing import ConferencingService
from src.bbb_meetings.meetings.library import MeetingLibraryIndex
from src.bbb_meetings.meetings.meetups import MeetupsService
from src.bbb_meetings.meetings.repository import MeetingRepository
from src.bbb_meetings.meetings.service import MeetingsService

logger = structlog.get_logger(__name__)


def wire_services(
    app: FastAPI,
    collaborators: Collaborators,
    redis_client: aioredis.Redis,
    session_factory: Callable[..., Any] = get_tenant_session,
    config_provider: ConfigProvider | None = None,
    settings: Settings | None = None,
) -> None:
    """Build the meeting services and store them on ``app.state``."""
    settings = settings or get_settings()
    config_provider = config_provider or SettingsConfigProvider(settings)

    events = MeetingEventBus(redis_client)
    repository = MeetingRepository(session_factory)
    library = MeetingLibraryIndex(redis_client)
    client = BBBClient(config_provider)

    meetings_service = MeetingsService(
        repository=repository,
        authz=collaborators.authz,
        principals=collaborators.principals,
        library=library,
        library_authz=collaborators.library_authz,
        message_box=collaborators.message_box,
        signatures=collaborators.signatures,
        events=events,
        config=config_provider,
        update_threshold_seconds=settings.MEETING_UPDATE_THRESHOLD_SECONDS,
    )

    app.state.collaborators = collaborators
    app.state.tenants = collaborators.tenants
    app.state.principals = collaborators.principals
    app.state.event_bus = events
    app.state.meeting_repository = repository
    app.state.meeting_library = library
    app.state.bbb_client = client
    app.state.meetings_service = meetings_service
    app.state.conferencing_service = ConferencingService(
        meetings_service,
        client,
        events,
        poll_retries=settings.MEETING_START_POLL_RETRIES,
        poll_interval=settings.MEETING_START_POLL_INTERVAL,
    )
    app.state.meetups_service = MeetupsService(client, collaborators.principals, collaborators.content, events)
    logger.info("meetings.services_initialized")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: logging and Sentry on startup, drain and close on shutdown."""
    settings = get_settings()
    configure_structlog()

    if settings.SENTRY_DSN:
        init_sentry(dsn=settings.SENTRY_DSN, environment=settings.ENVIRONMENT.value)

    yield

    for name in ("meetings_service", "conferencing_service"):
        service = getattr(app.state, name, None)
        if service is not None:
            await service.join_background_tasks()

    await close_db()
    await close_redis()


# ── Error Rendering ──────────────────────────────────────────────────────────


async def meetings_error_handler(request: Request, exc: MeetingsError) -> JSONResponse:
    return JSONResponse(status_code=exc.code, content=exc.to_dict())


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": exc.status_code, "msg": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    msg = f"{location}: {first.get('msg', 'Invalid request')}" if location else "Invalid request"
    return JSONResponse(status_code=400, content={"code": 400, "msg": msg})


def create_app(
    collaborators: Collaborators | None = None,
    redis_client: aioredis.Redis | None = None,
    session_factory: Callable[..., Any] = get_tenant_session,
    config_provider: ConfigProvider | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        collaborators: Host platform services. Without them the meeting
            endpoints answer 503 until ``wire_services`` is called.
        redis_client: Redis for libraries, events and tenant caching.
        session_factory: Async generator of tenant-scoped DB sessions.
        config_provider: Per-tenant configuration (default: settings).
    """
    settings = get_settings()
    redis_client = redis_client if redis_client is not None else get_redis_pool()

    app = FastAPI(
        title="BBB Meetings API",
        version="0.1.0",
        description="Meeting rooms backed by BigBlueButton",
        lifespan=lifespan,
    )

    app.add_exception_handler(MeetingsError, meetings_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # Middleware is added in reverse order (last added = outermost)

    # Tenant middleware (inner -- resolves tenant context from X-Tenant-ID)
    app.add_middleware(TenantMiddleware, redis_client=redis_client)

    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(LoggingMiddleware)

    # Metrics middleware (outermost -- records Prometheus metrics for all requests)
    app.add_middleware(MetricsMiddleware)

    app.include_router(health.router)
    app.include_router(api_router)

    @app.get("/metrics", include_in_schema=False)
    async def metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        return get_metrics_response()

    if collaborators is not None:
        wire_services(app, collaborators, redis_client, session_factory, config_provider, settings)

    return app
