"""REST endpoints for meetings: lifecycle, libraries, members and messages.

Conferencing actions on a meeting (join, start, info, end) live here
too since they share the ``/meeting/{meeting_id}`` path space; recording
endpoints are in recordings.py.

Errors raised by the services are rendered by the app-level
MeetingsError handler as ``{"code": ..., "msg": ...}``.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.bbb_meetings.api.deps import (
    get_conferencing_service,
    get_meetings_service,
    get_request_context,
)
from src.bbb_meetings.core.context import RequestContext
from src.bbb_meetings.meetings.conferencing import ConferencingService
from src.bbb_meetings.meetings.constants import Role
from src.bbb_meetings.meetings.schemas import Meeting, MeetingMember, MeetingProfile, Message
from src.bbb_meetings.meetings.service import MeetingsService

router = APIRouter(prefix="/meeting", tags=["meetings"])


# ── Request / Response Schemas ───────────────────────────────────────────────


class _CamelRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateMeetingRequest(_CamelRequest):
    display_name: str = ""
    description: str = ""
    visibility: str | None = None
    record: bool | None = None
    all_moderators: bool | None = None
    wait_moderator: bool | None = None
    managers: list[str] = Field(default_factory=list)
    members: list[str] = Field(default_factory=list)

    def roles(self) -> dict[str, str]:
        """Map each extra member to its role; managers win over members."""
        roles = {member: Role.MEMBER.value for member in self.members}
        roles.update({manager: Role.MANAGER.value for manager in self.managers})
        return roles


class ShareMeetingRequest(_CamelRequest):
    members: list[str] = Field(default_factory=list)


class CreateMessageRequest(_CamelRequest):
    body: str = ""
    reply_to: str | None = None


class MeetingPage(_CamelRequest):
    results: list[Meeting]
    next_token: str | None = None


class MemberPage(_CamelRequest):
    results: list[MeetingMember]
    next_token: str | None = None


class MessagePage(_CamelRequest):
    results: list[Message]
    next_token: str | None = None


def _cast_role(value: Any) -> str | bool:
    """Form-style role values: ``"false"`` (or false) removes the member."""
    if value is False or (isinstance(value, str) and value.lower() == "false"):
        return False
    return value


# ── Lifecycle ────────────────────────────────────────────────────────────────


@router.post("/create", response_model=Meeting, response_model_by_alias=True)
async def create_meeting(
    payload: CreateMeetingRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingsService = Depends(get_meetings_service),
) -> Meeting:
    """Create a meeting; the caller becomes its manager."""
    return await service.create_meeting(
        ctx,
        payload.display_name,
        payload.description,
        visibility=payload.visibility,
        members=payload.roles(),
        record=payload.record,
        all_moderators=payload.all_moderators,
        wait_moderator=payload.wait_moderator,
    )


@router.get("/library/{principal_id}", response_model=MeetingPage, response_model_by_alias=True)
async def get_meetings_library(
    principal_id: str,
    start: str | None = Query(default=None),
    limit: int = Query(default=12, ge=1, le=25),
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingsService = Depends(get_meetings_service),
) -> MeetingPage:
    meetings, next_token = await service.get_meetings_library(ctx, principal_id, start=start, limit=limit)
    return MeetingPage(results=meetings, next_token=next_token)


@router.delete("/library/{principal_id}/{meeting_id}", status_code=status.HTTP_200_OK)
async def remove_meeting_from_library(
    principal_id: str,
    meeting_id: str,
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingsService = Depends(get_meetings_service),
) -> None:
    await service.remove_meeting_from_library(ctx, principal_id, meeting_id)


@router.get("/{meeting_id}", response_model=MeetingProfile, response_model_by_alias=True)
async def get_meeting(
    meeting_id: str,
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingsService = Depends(get_meetings_service),
) -> MeetingProfile:
    return await service.get_full_meeting_profile(ctx, meeting_id)


@router.post("/{meeting_id}", response_model=MeetingProfile, response_model_by_alias=True)
async def update_meeting(
    meeting_id: str,
    profile_fields: dict[str, Any] = Body(default_factory=dict),
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingsService = Depends(get_meetings_service),
) -> MeetingProfile:
    """Update displayName, description and/or visibility."""
    return await service.update_meeting(ctx, meeting_id, profile_fields)


@router.delete("/{meeting_id}", status_code=status.HTTP_200_OK)
async def delete_meeting(
    meeting_id: str,
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingsService = Depends(get_meetings_service),
) -> None:
    await service.delete_meeting(ctx, meeting_id)


# ── Membership ───────────────────────────────────────────────────────────────


@router.post("/{meeting_id}/share", status_code=status.HTTP_200_OK)
async def share_meeting(
    meeting_id: str,
    payload: ShareMeetingRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingsService = Depends(get_meetings_service),
) -> None:
    await service.share_meeting(ctx, meeting_id, payload.members)


@router.get("/{meeting_id}/members", response_model=MemberPage, response_model_by_alias=True)
async def get_meeting_members(
    meeting_id: str,
    start: str | None = Query(default=None),
    limit: int = Query(default=10, ge=1, le=25),
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingsService = Depends(get_meetings_service),
) -> MemberPage:
    members, next_token = await service.get_meeting_members(ctx, meeting_id, start=start, limit=limit)
    return MemberPage(results=members, next_token=next_token)


@router.post("/{meeting_id}/members", status_code=status.HTTP_200_OK)
async def set_meeting_permissions(
    meeting_id: str,
    changes: dict[str, Any] = Body(default_factory=dict),
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingsService = Depends(get_meetings_service),
) -> None:
    """Body maps principal ids to a role, or ``false`` to remove them."""
    await service.set_meeting_permissions(
        ctx, meeting_id, {principal_id: _cast_role(role) for principal_id, role in changes.items()}
    )


# ── Messages ─────────────────────────────────────────────────────────────────


@router.get("/{meeting_id}/messages", response_model=MessagePage, response_model_by_alias=True)
async def get_messages(
    meeting_id: str,
    start: str | None = Query(default=None),
    limit: int = Query(default=10, ge=1, le=25),
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingsService = Depends(get_meetings_service),
) -> MessagePage:
    messages, next_token = await service.get_messages(ctx, meeting_id, start=start, limit=limit)
    return MessagePage(results=messages, next_token=next_token)


@router.post("/{meeting_id}/messages", response_model=Message, response_model_by_alias=True)
async def create_message(
    meeting_id: str,
    payload: CreateMessageRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingsService = Depends(get_meetings_service),
) -> Message:
    return await service.create_message(ctx, meeting_id, payload.body, reply_to_created=payload.reply_to)


@router.delete("/{meeting_id}/messages/{created}", response_model=Message | None, response_model_by_alias=True)
async def delete_message(
    meeting_id: str,
    created: str,
    ctx: RequestContext = Depends(get_request_context),
    service: MeetingsService = Depends(get_meetings_service),
) -> Message | None:
    """Returns the tombstone for a soft delete, null for a hard delete."""
    return await service.delete_message(ctx, meeting_id, created)


# ── Conferencing ─────────────────────────────────────────────────────────────


@router.get("/{meeting_id}/join")
async def join_meeting(
    meeting_id: str,
    ctx: RequestContext = Depends(get_request_context),
    conferencing: ConferencingService = Depends(get_conferencing_service),
) -> RedirectResponse:
    """Redirect the browser to the signed BBB join URL."""
    join_info = await conferencing.join_meeting(ctx, meeting_id)
    return RedirectResponse(join_info.url, status_code=status.HTTP_301_MOVED_PERMANENTLY)


@router.post("/{meeting_id}/start", status_code=status.HTTP_200_OK)
async def start_meeting(
    meeting_id: str,
    ctx: RequestContext = Depends(get_request_context),
    conferencing: ConferencingService = Depends(get_conferencing_service),
) -> None:
    await conferencing.start_meeting(ctx, meeting_id)


@router.get("/{meeting_id}/info")
async def get_meeting_info(
    meeting_id: str,
    ctx: RequestContext = Depends(get_request_context),
    conferencing: ConferencingService = Depends(get_conferencing_service),
) -> dict[str, Any]:
    return await conferencing.get_meeting_info(ctx, meeting_id)


@router.get("/{meeting_id}/end")
async def end_meeting(
    meeting_id: str,
    ctx: RequestContext = Depends(get_request_context),
    conferencing: ConferencingService = Depends(get_conferencing_service),
) -> dict[str, Any]:
    return await conferencing.end_meeting(ctx, meeting_id)
