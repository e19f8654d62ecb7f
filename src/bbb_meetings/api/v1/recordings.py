"""REST endpoints for BBB recordings of a meeting."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, status

from src.bbb_meetings.api.deps import get_conferencing_service, get_request_context
from src.bbb_meetings.core.context import RequestContext
from src.bbb_meetings.meetings.conferencing import ConferencingService

router = APIRouter(tags=["recordings"])


@router.get("/recording/{meeting_id}")
async def get_recordings(
    meeting_id: str,
    ctx: RequestContext = Depends(get_request_context),
    conferencing: ConferencingService = Depends(get_conferencing_service),
) -> dict[str, Any]:
    return await conferencing.get_recordings(ctx, meeting_id)


@router.delete("/recording/{recording_id}", status_code=status.HTTP_200_OK)
async def delete_recording(
    recording_id: str,
    ctx: RequestContext = Depends(get_request_context),
    conferencing: ConferencingService = Depends(get_conferencing_service),
) -> None:
    await conferencing.delete_recording(ctx, recording_id)


@router.patch("/meeting/{meeting_id}/recording/{recording_id}", status_code=status.HTTP_200_OK)
async def update_recording(
    meeting_id: str,
    recording_id: str,
    changes: dict[str, Any] = Body(default_factory=dict),
    ctx: RequestContext = Depends(get_request_context),
    conferencing: ConferencingService = Depends(get_conferencing_service),
) -> None:
    """Publish (``{"publish": true}``) or unpublish a recording."""
    await conferencing.update_recording(ctx, meeting_id, recording_id, changes)
