"""Request context handed to every domain operation.

Bundles the tenant, the (optional) authenticated principal and the
request's public protocol so the conferencing client can build
callback URLs without reaching into the HTTP layer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel

from src.bbb_meetings.core.tenant import TenantContext


class Principal(BaseModel):
    """A user or group as exposed by the host platform's principal directory."""

    id: str
    tenant_alias: str
    display_name: str
    visibility: str = "public"
    profile_path: str | None = None
    is_admin: bool = False
    deleted: bool = False

    @property
    def resource_type(self) -> Literal["user", "group"]:
        return "group" if self.id.startswith("g:") else "user"

    @property
    def is_group(self) -> bool:
        return self.resource_type == "group"


class GroupProfile(Principal):
    """Full group profile with the caller's access flags."""

    is_member: bool = False
    is_manager: bool = False
    can_join: bool = False


@dataclass(frozen=True)
class RequestContext:
    """Who is calling, on which tenant, over which protocol."""

    tenant: TenantContext
    user: Principal | None = None
    protocol: str = "https"

    @property
    def is_anonymous(self) -> bool:
        return self.user is None

    @property
    def host(self) -> str:
        return self.tenant.host

    @property
    def base_url(self) -> str:
        return f"{self.protocol}://{self.host}"
