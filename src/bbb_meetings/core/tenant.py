"""Tenant context propagation via Python contextvars.

The TenantContext is set by TenantMiddleware at the start of each
request and is accessible anywhere in the call stack via
get_current_tenant(). Database sessions, tenant BBB configuration and
event streams are all scoped by it.
"""

from __future__ import annotations

import contextvars
import json
from dataclasses import asdict, dataclass
from typing import Any

import redis.asyncio as aioredis
import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

logger = structlog.get_logger(__name__)

# ── Tenant Context ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TenantContext:
    """Immutable tenant context for the current request."""

    alias: str
    display_name: str
    host: str
    schema_name: str  # e.g., "tenant_oae"


_tenant_context: contextvars.ContextVar[TenantContext] = contextvars.ContextVar("tenant_context")


def get_current_tenant() -> TenantContext:
    """Get the tenant context for the current request.

    Raises RuntimeError if no tenant context has been set (i.e., the call
    is not within a tenant-scoped request).
    """
    try:
        return _tenant_context.get()
    except LookupError:
        raise RuntimeError("No tenant context set -- request is not tenant-scoped")


def set_tenant_context(ctx: TenantContext) -> contextvars.Token[TenantContext]:
    """Set the tenant context for the current request. Returns a token for reset."""
    return _tenant_context.set(ctx)


# ── Paths that skip tenant resolution ───────────────────────────────────────

SKIP_TENANT_PATHS = (
    "/health",
    "/metrics",
    "/docs",
    "/openapi.json",
    "/redoc",
)

TENANT_CACHE_TTL_SECONDS = 300


# ── Tenant Middleware ───────────────────────────────────────────────────────


class TenantMiddleware(BaseHTTPMiddleware):
    """Middleware that resolves tenant from X-Tenant-ID header and sets context.

    The header carries the tenant alias. Lookups go through the host
    platform's TenantsAPI on ``app.state.tenants`` and are cached in Redis
    for TENANT_CACHE_TTL_SECONDS when a client is supplied.
    """

    def __init__(self, app: Any, redis_client: aioredis.Redis | None = None):
        super().__init__(app)
        self._redis = redis_client

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if any(path.startswith(skip) for skip in SKIP_TENANT_PATHS):
            return await call_next(request)

        alias = request.headers.get("X-Tenant-ID")
        if not alias:
            return JSONResponse(status_code=400, content={"code": 400, "msg": "Missing X-Tenant-ID header"})

        tenant_ctx = await self._resolve_tenant(request, alias)
        if not tenant_ctx:
            return JSONResponse(status_code=404, content={"code": 404, "msg": f"Tenant not found: {alias}"})

        token = set_tenant_context(tenant_ctx)
        structlog.contextvars.bind_contextvars(tenant=tenant_ctx.alias)
        try:
            return await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("tenant")
            _tenant_context.reset(token)

    async def _resolve_tenant(self, request: Request, alias: str) -> TenantContext | None:
        """Resolve tenant by alias, using Redis cache when available."""
        cache_key = f"tenant:lookup:{alias}"
        if self._redis:
            try:
                cached = await self._redis.get(cache_key)
                if cached:
                    return TenantContext(**json.loads(cached))
            except aioredis.RedisError:
                logger.warning("tenant.cache_lookup_failed", tenant=alias)

        tenants = getattr(request.app.state, "tenants", None)
        if tenants is None:
            return None
        ctx = await tenants.get_tenant(alias)
        if ctx is None:
            return None

        if self._redis:
            try:
                await self._redis.set(cache_key, json.dumps(asdict(ctx)), ex=TENANT_CACHE_TTL_SECONDS)
            except aioredis.RedisError:
                logger.warning("tenant.cache_set_failed", tenant=alias)
        return ctx
