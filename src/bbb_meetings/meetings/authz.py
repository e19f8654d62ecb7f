"""Permission checks for meetings.

Each check combines the caller's implicit role (admin, visibility,
tenant), explicit roles and the tenant "can interact" rule as resolved
by the host AuthzAPI. None of them mutate anything.

| check          | anonymous | implicit manager | explicit role            | can interact | private            |
|----------------|-----------|------------------|--------------------------|--------------|--------------------|
| view           | implicit  | yes              | any role                 |              | explicit role only |
| manage         | no        | yes              | manager                  |              |                    |
| share          | no        | yes              | any role                 | yes          | managers only      |
| join / post    | no        | yes              | any role                 | yes          |                    |
| delete message | no        |                  | manager, or own message  | own message  |                    |
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from src.bbb_meetings.core.context import RequestContext
from src.bbb_meetings.core.errors import AuthzError, ValidationError
from src.bbb_meetings.meetings.collaborators import AuthzAPI, PrincipalsAPI
from src.bbb_meetings.meetings.constants import ROLES_ALL_PRIORITY, Role, Visibility
from src.bbb_meetings.meetings.schemas import Meeting, Message


@dataclass(frozen=True)
class MeetingAccess:
    can_view: bool
    can_manage: bool
    can_share: bool
    can_join: bool


async def _implicit_role(authz: AuthzAPI, ctx: RequestContext, meeting: Meeting) -> tuple[str | None, bool]:
    return await authz.resolve_implicit_role(
        ctx, meeting.id, meeting.tenant_alias, meeting.visibility.value, ROLES_ALL_PRIORITY
    )


async def _check_target_principals(
    authz: AuthzAPI,
    principals: PrincipalsAPI,
    ctx: RequestContext,
    meeting: Meeting,
    principal_ids: Sequence[str],
) -> tuple[bool, list[str]]:
    """Ensure every target exists, then apply the tenant interaction rule."""
    found = await principals.get_principals(principal_ids)
    if len(found) != len(set(principal_ids)):
        raise ValidationError("One or more target members being granted access do not exist")
    return await authz.can_interact(ctx, meeting.tenant_alias, list(found.values()))


async def can_view_meeting(authz: AuthzAPI, ctx: RequestContext, meeting: Meeting) -> bool:
    implicit_role, _ = await _implicit_role(authz, ctx, meeting)
    if implicit_role:
        return True
    if ctx.user is None:
        return False
    return await authz.has_any_role(ctx.user.id, meeting.id)


async def can_manage_meeting(authz: AuthzAPI, ctx: RequestContext, meeting: Meeting) -> bool:
    if ctx.user is None:
        return False
    implicit_role, _ = await _implicit_role(authz, ctx, meeting)
    if implicit_role == Role.MANAGER.value:
        return True
    return await authz.has_role(ctx.user.id, meeting.id, Role.MANAGER.value)


async def can_share_meeting(
    authz: AuthzAPI,
    principals: PrincipalsAPI,
    ctx: RequestContext,
    meeting: Meeting,
    principal_ids: Sequence[str],
) -> tuple[bool, list[str]]:
    """Whether the caller may share with ``principal_ids``.

    Returns:
        ``(allowed, illegal principal ids)``; the second item is only
        non-empty when a tenant boundary blocks the share.

    Raises:
        ValidationError: If a target principal does not exist.
    """
    if ctx.user is None:
        return False, []

    interact_ok, illegal_ids = await _check_target_principals(authz, principals, ctx, meeting, principal_ids)
    if not interact_ok:
        return False, illegal_ids

    implicit_role, can_interact = await _implicit_role(authz, ctx, meeting)
    if implicit_role == Role.MANAGER.value or can_interact:
        return True, []

    if meeting.visibility == Visibility.PRIVATE:
        return await authz.has_role(ctx.user.id, meeting.id, Role.MANAGER.value), []
    return await authz.has_any_role(ctx.user.id, meeting.id), []


async def can_set_meeting_permissions(
    authz: AuthzAPI,
    principals: PrincipalsAPI,
    ctx: RequestContext,
    meeting: Meeting,
    add_member_ids: Sequence[str],
) -> tuple[bool, list[str]]:
    """Whether the caller may change the membership of ``meeting``.

    Only principals being newly added go through the tenant boundary
    check; existing members can always be updated or removed.

    Raises:
        AuthzError: If the caller is anonymous.
        ValidationError: If a principal being added does not exist.
    """
    if ctx.user is None:
        raise AuthzError("You must be authenticated to update permissions of a meeting")

    interact_ok, illegal_ids = await _check_target_principals(authz, principals, ctx, meeting, add_member_ids)
    if not interact_ok:
        return False, illegal_ids
    return await can_manage_meeting(authz, ctx, meeting), []


async def can_join_meeting(authz: AuthzAPI, ctx: RequestContext, meeting: Meeting) -> bool:
    """Join the conference or post a message."""
    if ctx.user is None:
        return False
    implicit_role, can_interact = await _implicit_role(authz, ctx, meeting)
    if implicit_role == Role.MANAGER.value or can_interact:
        return True
    return await authz.has_any_role(ctx.user.id, meeting.id)


async def can_delete_message(authz: AuthzAPI, ctx: RequestContext, meeting: Meeting, message: Message) -> bool:
    if ctx.user is None:
        return False
    effective_role, can_interact = await authz.resolve_effective_role(
        ctx, meeting.id, meeting.tenant_alias, meeting.visibility.value, ROLES_ALL_PRIORITY
    )
    if effective_role == Role.MANAGER.value:
        return True
    return can_interact and message.created_by == ctx.user.id


async def resolve_effective_meeting_access(authz: AuthzAPI, ctx: RequestContext, meeting: Meeting) -> MeetingAccess:
    """All four access flags from a single effective-role lookup."""
    effective_role, can_interact = await authz.resolve_effective_role(
        ctx, meeting.id, meeting.tenant_alias, meeting.visibility.value, ROLES_ALL_PRIORITY
    )
    can_manage = effective_role == Role.MANAGER.value
    can_share = can_interact
    if meeting.visibility not in (Visibility.PUBLIC, Visibility.LOGGEDIN):
        can_share = can_manage
    return MeetingAccess(
        can_view=isinstance(effective_role, str),
        can_manage=can_manage,
        can_share=can_share,
        can_join=can_interact,
    )
