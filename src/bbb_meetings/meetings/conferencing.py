"""Conferencing operations on meetings: join, start, info, end, recordings.

These wrap BBBClient with the meeting permission model. Every call first
loads the caller's full meeting profile, which already rejects callers
that cannot view the meeting.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import structlog
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.bbb_meetings.bbb.client import BBBClient, JoinInfo, is_not_found, is_success
from src.bbb_meetings.core.context import RequestContext
from src.bbb_meetings.core.errors import (
    AuthzError,
    ForbiddenError,
    MeetingsError,
    NotFoundError,
    ProxyError,
    ValidationError,
)
from src.bbb_meetings.events.bus import MeetingEventBus
from src.bbb_meetings.events.schemas import MeetingEventName
from src.bbb_meetings.meetings.schemas import MeetingProfile
from src.bbb_meetings.meetings.service import MeetingsService

logger = structlog.get_logger(__name__)

# Never handed back to callers
SENSITIVE_INFO_KEYS = ("attendeePW", "moderatorPW", "attendees")


class MeetingNotRunning(Exception):
    """getMeetingInfo still answers notFound while a start is being confirmed."""


def strip_sensitive_info(info: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in info.items() if key not in SENSITIVE_INFO_KEYS}


def _rejected(info: Mapping[str, Any]) -> MeetingsError:
    if info.get("messageKey") == "notFound":
        return NotFoundError(info.get("message") or "Could not find the specified recording")
    return MeetingsError(info.get("message") or "The conferencing server rejected the request", code=400)


class ConferencingService:
    """BBB side of meetings.

    Args:
        meetings: Domain service, used for profiles and permission checks.
        client: BBB conferencing client.
        events: Event bus.
        poll_retries: Retries after the first start-confirmation poll.
        poll_interval: Delay before the first poll; retries double it.
        sleep: Awaitable sleep used by the poll (injectable for tests).
    """

    def __init__(
        self,
        meetings: MeetingsService,
        client: BBBClient,
        events: MeetingEventBus,
        poll_retries: int = 6,
        poll_interval: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._meetings = meetings
        self._client = client
        self._events = events
        self._poll_retries = poll_retries
        self._poll_interval = poll_interval
        self._sleep = sleep
        self._background: set[asyncio.Task] = set()

    async def join_meeting(self, ctx: RequestContext, meeting_id: str) -> JoinInfo:
        """Signed BBB join URL; creates the BBB meeting if it is not running."""
        profile = await self._meetings.get_meeting_access(ctx, meeting_id)
        if ctx.user is None:
            raise AuthzError("Only authenticated users can join a meeting")
        if not profile.can_join:
            raise AuthzError("You are not authorized to join this meeting")
        return await self._client.join_url(ctx, profile, is_manager=profile.is_manager)

    # ── Start ───────────────────────────────────────────────────────────

    async def start_meeting(self, ctx: RequestContext, meeting_id: str) -> None:
        """Create the meeting on BBB and confirm it in the background.

        Returns as soon as the create call succeeded; ``startedMeeting``
        is emitted later, once getMeetingInfo reports the meeting.
        """
        profile = await self._meetings.get_meeting_access(ctx, meeting_id)
        if not profile.is_manager:
            raise AuthzError("You are not authorized to start this meeting")

        await self._client.create_meeting(ctx, profile)
        task = asyncio.create_task(self._confirm_started(ctx, profile))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def poll_until_started(self, ctx: RequestContext, profile: MeetingProfile) -> dict[str, Any] | None:
        """Poll getMeetingInfo until BBB knows the meeting.

        The first poll happens after ``poll_interval``; each retry waits
        twice as long as the previous one.

        Returns:
            The meeting info without credentials, or None when the
            retries ran out.
        """
        await self._sleep(self._poll_interval)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._poll_retries + 1),
            wait=wait_exponential(multiplier=self._poll_interval * 2),
            retry=retry_if_exception_type((MeetingNotRunning, ProxyError)),
            sleep=self._sleep,
        )
        info: dict[str, Any] = {}
        try:
            async for attempt in retrying:
                with attempt:
                    info = await self._client.get_meeting_info(ctx, profile)
                    if is_not_found(info):
                        raise MeetingNotRunning(profile.id)
        except RetryError:
            logger.info("bbb.start_not_confirmed", meeting_id=profile.id, retries=self._poll_retries)
            return None
        return strip_sensitive_info(info)

    async def _confirm_started(self, ctx: RequestContext, profile: MeetingProfile) -> None:
        try:
            info = await self.poll_until_started(ctx, profile)
        except Exception:
            logger.exception("bbb.start_poll_failed", meeting_id=profile.id)
            return
        if info is None:
            return
        await self._events.emit(MeetingEventName.STARTED_MEETING, ctx, profile.id, info=info)

    async def join_background_tasks(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ── Info / end ──────────────────────────────────────────────────────

    async def get_meeting_info(self, ctx: RequestContext, meeting_id: str) -> dict[str, Any]:
        """BBB's view of the meeting without passwords or attendee list."""
        profile = await self._meetings.get_meeting_access(ctx, meeting_id)
        info = await self._client.get_meeting_info(ctx, profile)
        return strip_sensitive_info(info)

    async def end_meeting(self, ctx: RequestContext, meeting_id: str) -> dict[str, Any]:
        """End a running meeting.

        A meeting that is not running is not an error: the ``failed``
        getMeetingInfo response is returned as is.
        """
        profile = await self._meetings.get_meeting_access(ctx, meeting_id)
        if not profile.is_manager:
            raise AuthzError("You are not authorized to end this meeting")

        end = await self._client.get_end_meeting_url(ctx, profile)
        if end.returncode != "success" or end.url is None:
            return strip_sensitive_info(end.response or {})

        info = await self._client.execute(ctx, end.url)
        await self._events.emit(MeetingEventName.ENDED_MEETING, ctx, profile.id)
        return info

    # ── Recordings ──────────────────────────────────────────────────────

    async def get_recordings(self, ctx: RequestContext, meeting_id: str) -> dict[str, Any]:
        """Recordings of a meeting; ``recordings`` is always a list."""
        profile = await self._meetings.get_meeting_access(ctx, meeting_id)
        info = await self._client.execute(ctx, self._client.get_recordings_url(ctx, profile))
        return normalize_recordings(info)

    async def delete_recording(self, ctx: RequestContext, recording_id: str) -> dict[str, Any]:
        config = self._client.get_config(ctx)
        if not config.recording:
            raise ForbiddenError()
        if ctx.user is None:
            raise AuthzError("You must be authenticated to delete a recording")

        info = await self._client.execute(ctx, self._client.delete_recordings_url(ctx, recording_id))
        if not is_success(info):
            raise MeetingsError(info.get("message") or "The recording could not be deleted", code=400)
        logger.info("bbb.recording_deleted", recording_id=recording_id, tenant=ctx.tenant.alias)
        return info

    async def update_recording(
        self,
        ctx: RequestContext,
        meeting_id: str,
        recording_id: str,
        changes: Mapping[str, Any],
    ) -> dict[str, Any]:
        """Publish or unpublish a recording (``{"publish": bool}``)."""
        config = self._client.get_config(ctx)
        if not config.recording:
            raise ForbiddenError()
        if "publish" not in changes or not isinstance(changes["publish"], bool):
            raise ValidationError("A publish flag (true or false) must be provided")

        profile = await self._meetings.get_meeting_access(ctx, meeting_id)
        if not profile.is_manager:
            raise AuthzError("You are not authorized to update this recording")

        url = self._client.update_recordings_url(ctx, recording_id, {"publish": changes["publish"]})
        info = await self._client.execute(ctx, url)
        if not is_success(info):
            raise _rejected(info)
        return info


def normalize_recordings(info: Mapping[str, Any]) -> dict[str, Any]:
    """Flatten ``recordings.recording`` into a list under ``recordings``.

    Raises:
        NotFoundError: BBB reports ``noRecordings``.
        MeetingsError: (400) the response carries no recordings element.
    """
    if info.get("messageKey") == "noRecordings":
        raise NotFoundError("This meeting has no recordings")
    recordings = info.get("recordings")
    if not isinstance(recordings, Mapping):
        raise MeetingsError("Could not retrieve the recordings of this meeting", code=400)

    items = recordings.get("recording", [])
    if isinstance(items, Mapping):
        items = [items]
    result = dict(info)
    result["recordings"] = list(items)
    return result
