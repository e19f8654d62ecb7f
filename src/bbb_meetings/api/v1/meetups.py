"""REST endpoints for group meetups and their recording-ready webhook."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Form, status
from fastapi.responses import RedirectResponse

from src.bbb_meetings.api.deps import get_meetups_service, get_request_context
from src.bbb_meetings.core.context import RequestContext
from src.bbb_meetings.meetings.meetups import MeetupsService

router = APIRouter(prefix="/meetup", tags=["meetups"])


@router.get("/{group_id}/join")
async def join_meetup(
    group_id: str,
    ctx: RequestContext = Depends(get_request_context),
    meetups: MeetupsService = Depends(get_meetups_service),
) -> RedirectResponse:
    """Redirect to the group's BBB room with the video-chat configuration."""
    join_info = await meetups.join_meetup(ctx, group_id)
    return RedirectResponse(join_info.url, status_code=status.HTTP_301_MOVED_PERMANENTLY)


@router.get("/{group_id}/close")
async def close_meetup(
    group_id: str,
    ctx: RequestContext = Depends(get_request_context),
    meetups: MeetupsService = Depends(get_meetups_service),
) -> RedirectResponse:
    target = await meetups.close_meetup(ctx, group_id)
    return RedirectResponse(target, status_code=status.HTTP_301_MOVED_PERMANENTLY)


@router.post("/{group_id}/recording", status_code=status.HTTP_200_OK)
async def recording_ready(
    group_id: str,
    signed_parameters: Annotated[str, Form(description="HS256 JWT signed with the tenant BBB secret")],
    ctx: RequestContext = Depends(get_request_context),
    meetups: MeetupsService = Depends(get_meetups_service),
) -> None:
    """Called by BBB once a meetup recording has been processed."""
    await meetups.create_recording_link(ctx, group_id, signed_parameters)
