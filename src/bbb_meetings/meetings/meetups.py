"""Meetups: video chats backed directly by a group instead of a meeting.

A meetup joins the group's BBB room with a client configuration tuned
for video chat (no screen sharing, no layout editing, camera and audio
start straight away). When BBB finishes processing a meetup recording
it calls back with a signed token, and the newest recording is published
to the group as a private link.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import structlog
import xmltodict
from jose import JWTError, jwt

from src.bbb_meetings.bbb.client import BBBClient, JoinInfo, is_success
from src.bbb_meetings.core.context import GroupProfile, RequestContext
from src.bbb_meetings.core.errors import AuthzError, UpstreamError
from src.bbb_meetings.core.validation import Validator, is_group_id
from src.bbb_meetings.events.bus import MeetingEventBus
from src.bbb_meetings.events.schemas import MeetingEventName
from src.bbb_meetings.meetings.collaborators import ContentAPI, PrincipalsAPI

logger = structlog.get_logger(__name__)

CLOSE_REDIRECT_URL = "about:blank"
RECORDING_LINK_ROLE = "viewer"

_LAYOUT_ATTRIBUTES = {
    "defaultLayout": "bbb.layout.name.videochat",
    "showLayoutTools": "false",
    "confirmLogout": "false",
    "showRecordingNotification": "false",
}

_MODULE_ATTRIBUTES = {
    "DeskShareModule": {"showButton": "false"},
    "ScreenshareModule": {"showButton": "false"},
    "PhoneModule": {"showButton": "true", "skipCheck": "true", "listenOnlyMode": "false"},
    "VideoconfModule": {"showButton": "true", "autoStart": "true", "skipCamSettingsCheck": "true"},
    "LayoutModule": {"enableEdit": "false"},
}


def customize_meetup_config(config_xml: str) -> str:
    """Apply the video-chat layout and module settings to a BBB config.xml.

    Elements that are missing from the document are left alone.
    """
    doc = xmltodict.parse(config_xml, force_list=("module",))
    config = doc.get("config")
    if not isinstance(config, dict):
        return config_xml

    layout = config.get("layout")
    if not isinstance(layout, dict):
        layout = {}
        config["layout"] = layout
    layout.update({f"@{name}": value for name, value in _LAYOUT_ATTRIBUTES.items()})

    modules = config.get("modules")
    if isinstance(modules, dict):
        for module in modules.get("module") or []:
            overrides = _MODULE_ATTRIBUTES.get(module.get("@name", ""))
            if overrides:
                module.update({f"@{name}": value for name, value in overrides.items()})

    return xmltodict.unparse(doc, full_document=False)


def latest_recording(recordings: list[dict[str, Any]]) -> dict[str, Any]:
    return max(recordings, key=lambda rec: int(rec.get("startTime") or 0))


def _first_playback_url(recording: dict[str, Any]) -> str | None:
    playback = recording.get("playback")
    if not isinstance(playback, dict):
        return None
    formats = playback.get("format")
    if isinstance(formats, dict):
        formats = [formats]
    if not formats:
        return None
    return formats[0].get("url") or None


class MeetupsService:
    """Join, close and recording callbacks for group meetups.

    Args:
        client: BBB conferencing client.
        principals: Group directory.
        content: Creates the recording link in the group's library.
        events: Event bus.
    """

    def __init__(
        self,
        client: BBBClient,
        principals: PrincipalsAPI,
        content: ContentAPI,
        events: MeetingEventBus,
    ) -> None:
        self._client = client
        self._principals = principals
        self._content = content
        self._events = events

    async def join_meetup(self, ctx: RequestContext, group_id: str) -> JoinInfo:
        validator = Validator()
        validator.logged_in(ctx, "Only authenticated users can join meetups")
        validator.check(is_group_id(group_id), "Invalid groupId id provided")
        validator.raise_first()

        group = await self._principals.get_full_group_profile(ctx, group_id)
        try:
            default_xml = await self._client.get_default_config_xml(ctx)
        except UpstreamError:
            logger.error("bbb.default_config_unavailable", group_id=group_id, tenant=ctx.tenant.alias)
            raise

        config_xml = customize_meetup_config(default_xml)
        join_info = await self._client.join_url(ctx, group, is_manager=group.is_manager, config_xml=config_xml)

        await self._events.emit(MeetingEventName.JOIN_MEETUP, ctx, group.id)
        return join_info

    async def close_meetup(self, ctx: RequestContext, group_id: str) -> str:
        """Record that the user left the meetup; returns the redirect target."""
        Validator().check(is_group_id(group_id), "Invalid groupId id provided").raise_first()
        group = await self._principals.get_full_group_profile(ctx, group_id)
        await self._events.emit(MeetingEventName.CLOSE_MEETUP, ctx, group.id)
        return CLOSE_REDIRECT_URL

    async def create_recording_link(self, ctx: RequestContext, group_id: str, signed_parameters: str) -> None:
        """Handle BBB's recording-ready callback for a meetup.

        The callback token is an HS256 JWT signed with the tenant's BBB
        secret. Fetching the recordings and creating the link is
        best-effort: failures are logged and the callback still succeeds.

        Raises:
            AuthzError: If the token does not verify.
        """
        Validator().check(is_group_id(group_id), "Invalid groupId id provided").raise_first()

        config = self._client.get_config(ctx)
        try:
            claims = jwt.decode(signed_parameters, config.secret, algorithms=["HS256"])
        except JWTError as exc:
            logger.warning("meetups.recording_signature_invalid", group_id=group_id, error=str(exc))
            raise AuthzError("Invalid recording signature") from exc

        group = await self._principals.get_full_group_profile(ctx, group_id)
        try:
            await self._link_latest_recording(ctx, group)
        except Exception:
            logger.exception("meetups.recording_link_failed", group_id=group_id, record_id=claims.get("record_id"))

    async def _link_latest_recording(self, ctx: RequestContext, group: GroupProfile) -> None:
        info = await self._client.execute(ctx, self._client.get_recordings_url(ctx, group))
        recordings = info.get("recordings")
        if not is_success(info) or not isinstance(recordings, dict):
            logger.info("meetups.no_recordings", group_id=group.id, message_key=info.get("messageKey"))
            return

        items = recordings.get("recording") or []
        if isinstance(items, dict):
            items = [items]
        if not items:
            return

        recording = latest_recording(items)
        link = _first_playback_url(recording)
        if link is None:
            logger.warning("meetups.recording_without_playback", group_id=group.id, record_id=recording.get("recordID"))
            return

        ended = datetime.fromtimestamp(int(recording.get("endTime") or 0) / 1000, tz=timezone.utc)
        await self._content.create_link(
            ctx,
            display_name=ended.strftime("%a %b %d %Y %H:%M:%S UTC"),
            description=f"Recording of {group.display_name}",
            visibility="private",
            link=link,
            members={group.id: RECORDING_LINK_ROLE},
        )
        logger.info("meetups.recording_linked", group_id=group.id, record_id=recording.get("recordID"))
