"""Interfaces of the host platform services the meetings module calls.

The host supplies concrete implementations (authorization engine,
principal directory, library authz, message box, signatures, content,
tenants). Nothing here is implemented by this package.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from src.bbb_meetings.core.context import GroupProfile, Principal, RequestContext
from src.bbb_meetings.core.tenant import TenantContext
from src.bbb_meetings.meetings.schemas import Message

# A role change maps a principal id to a role name, or False to remove it
RoleChanges = Mapping[str, "str | bool"]


class AuthzAPI(Protocol):
    """Role storage and implicit-access resolution."""

    async def resolve_implicit_role(
        self,
        ctx: RequestContext,
        resource_id: str,
        tenant_alias: str,
        visibility: str,
        roles: Sequence[str],
    ) -> tuple[str | None, bool]:
        """Return ``(implicit role or None, can interact)`` for the caller."""
        ...

    async def resolve_effective_role(
        self,
        ctx: RequestContext,
        resource_id: str,
        tenant_alias: str,
        visibility: str,
        roles: Sequence[str],
    ) -> tuple[str | None, bool]:
        """Like resolve_implicit_role but also considers explicit roles."""
        ...

    async def has_role(self, principal_id: str, resource_id: str, role: str) -> bool: ...

    async def has_any_role(self, principal_id: str, resource_id: str) -> bool: ...

    async def get_roles(self, principal_ids: Sequence[str], resource_id: str) -> dict[str, str]:
        """Roles of the given principals; principals without one are absent."""
        ...

    async def can_interact(
        self,
        ctx: RequestContext,
        tenant_alias: str,
        principals: Sequence[Principal],
    ) -> tuple[bool, list[str]]:
        """Return ``(allowed, ids violating a tenant boundary)``."""
        ...

    async def update_roles(self, resource_id: str, changes: RoleChanges) -> None: ...

    async def compute_member_roles_after_changes(
        self, resource_id: str, changes: RoleChanges
    ) -> dict[str, str]: ...

    async def get_authz_members(
        self, resource_id: str, start: str | None, limit: int
    ) -> tuple[list[dict[str, str]], str | None]:
        """Page of ``{"id", "role"}`` dicts plus the next token."""
        ...

    async def get_roles_for_principal_and_resource_type(
        self, principal_id: str, resource_type: str, start: str | None, limit: int
    ) -> tuple[list[dict[str, str]], str | None]:
        """Page of ``{"id", "role"}`` resource dicts plus the next token."""
        ...


class PrincipalsAPI(Protocol):
    async def get_principals(self, principal_ids: Sequence[str]) -> dict[str, Principal]: ...

    async def get_principal(self, ctx: RequestContext, principal_id: str) -> Principal:
        """Raises NotFoundError when the principal does not exist."""
        ...

    async def get_full_group_profile(self, ctx: RequestContext, group_id: str) -> GroupProfile: ...


class LibraryAuthz(Protocol):
    async def resolve_target_library_access(
        self, ctx: RequestContext, library_owner: Principal
    ) -> tuple[bool, str | None]:
        """Return ``(has access, visibility bucket the caller may read)``."""
        ...

    async def can_remove_from_library(self, ctx: RequestContext, library_owner: Principal) -> bool: ...


class MessageBoxAPI(Protocol):
    async def create_message(
        self,
        message_box_id: str,
        created_by: str,
        body: str,
        reply_to_created: str | None = None,
    ) -> Message: ...

    async def get_message(self, message_box_id: str, created: str) -> Message | None: ...

    async def get_messages(
        self, message_box_id: str, start: str | None, limit: int
    ) -> tuple[list[Message], str | None]: ...

    async def has_replies(self, message_box_id: str, created: str) -> bool: ...

    async def delete_message(self, message_box_id: str, created: str, soft: bool) -> Message | None:
        """Soft delete returns the tombstone; hard delete returns None."""
        ...


class SignatureAPI(Protocol):
    def create_expiring_resource_signature(self, ctx: RequestContext, resource_id: str) -> dict[str, Any]: ...


class ContentAPI(Protocol):
    async def create_link(
        self,
        ctx: RequestContext,
        display_name: str,
        description: str,
        visibility: str,
        link: str,
        members: Mapping[str, str],
    ) -> dict[str, Any]: ...


class TenantsAPI(Protocol):
    async def get_tenant(self, alias: str) -> TenantContext | None: ...


@dataclass
class Collaborators:
    """Host platform services wired into the app at startup."""

    authz: AuthzAPI
    principals: PrincipalsAPI
    library_authz: LibraryAuthz
    message_box: MessageBoxAPI
    signatures: SignatureAPI
    content: ContentAPI
    tenants: TenantsAPI
