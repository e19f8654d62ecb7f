"""FastAPI dependency injection for the request context and services.

These dependencies are used in endpoint function signatures to inject
the caller's RequestContext and the services wired onto ``app.state``
at startup.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status
from jose import JWTError, jwt

from src.bbb_meetings.config import get_settings
from src.bbb_meetings.core.context import RequestContext
from src.bbb_meetings.core.errors import AuthzError, NotFoundError
from src.bbb_meetings.core.tenant import get_current_tenant


def _request_protocol(request: Request) -> str:
    return request.headers.get("X-Forwarded-Proto") or request.url.scheme


async def get_request_context(request: Request) -> RequestContext:
    """Build the RequestContext for the current request.

    A Bearer JWT whose ``sub`` is a principal id identifies the user;
    requests without one are anonymous.

    Raises:
        AuthzError: If the token is invalid, belongs to another tenant or
            names a principal that does not exist.
    """
    tenant = get_current_tenant()
    anonymous = RequestContext(tenant=tenant, protocol=_request_protocol(request))

    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return anonymous

    settings = get_settings()
    try:
        payload = jwt.decode(auth_header[7:], settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise AuthzError("Invalid authentication token") from exc

    principal_id = payload.get("sub")
    token_tenant = payload.get("tenant")
    if not principal_id or (token_tenant and token_tenant != tenant.alias):
        raise AuthzError("Token tenant does not match request tenant context")

    principals = get_service(request, "principals")
    try:
        user = await principals.get_principal(anonymous, principal_id)
    except NotFoundError as exc:
        raise AuthzError("User not found") from exc
    return RequestContext(tenant=tenant, user=user, protocol=anonymous.protocol)


def get_service(request: Request, name: str) -> Any:
    """Retrieve a service from app.state, 503 if not initialized."""
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{name.replace('_', ' ').capitalize()} not initialized",
        )
    return service


def get_meetings_service(request: Request) -> Any:
    return get_service(request, "meetings_service")


def get_conferencing_service(request: Request) -> Any:
    return get_service(request, "conferencing_service")


def get_meetups_service(request: Request) -> Any:
    return get_service(request, "meetups_service")
