"""BigBlueButton conferencing client.

Maps meeting intents (info, create, join, end, recordings, XML config) to
signed BBB URLs and interprets the proxy's responses. The one business
rule encoded here is that a meeting is created on the BBB server lazily,
the first time somebody joins it.

The meetingID sent to BBB is always ``sha1(resource id + secret)``.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import structlog

from src.bbb_meetings.bbb.proxy import BBBProxy, ResponseMode
from src.bbb_meetings.bbb.signer import (
    encode_component,
    form_encode,
    hash_meeting_id,
    sign_action_url,
    sign_form_body,
)
from src.bbb_meetings.config import ConfigProvider, TenantBBBConfig
from src.bbb_meetings.core.context import RequestContext
from src.bbb_meetings.core.errors import AuthzError, MeetingsError, UpstreamError

logger = structlog.get_logger(__name__)

MEETUP_LOGOUT_URL = "javascript:window.close();"


class Conferenceable(Protocol):
    """Anything that can back a BBB meeting: a Meeting or a group profile."""

    id: str
    display_name: str

    @property
    def resource_type(self) -> str: ...


@dataclass(frozen=True)
class JoinInfo:
    url: str
    returncode: str = "success"


@dataclass(frozen=True)
class EndMeetingURL:
    """Result of preparing an ``end`` call.

    ``returncode`` is ``failed`` (with the raw getMeetingInfo response)
    when the meeting is not running; that is a normal outcome.
    """

    returncode: str
    url: str | None = None
    response: dict[str, Any] | None = None


# ── Helpers ─────────────────────────────────────────────────────────────────


def resolve_record_flag(config: TenantBBBConfig, requested: bool | None) -> bool:
    """Recording is only ever on when the tenant allows it.

    Tenant disabled -> False. Otherwise the meeting's own flag, falling
    back to the tenant default when the meeting does not say.
    """
    if not config.recording:
        return False
    if requested is None:
        return config.recording_default
    return bool(requested)


def is_success(info: Mapping[str, Any]) -> bool:
    return str(info.get("returncode", "")).upper() == "SUCCESS"


def is_not_found(info: Mapping[str, Any]) -> bool:
    return str(info.get("returncode", "")).upper() == "FAILED" and info.get("messageKey") == "notFound"


def _is_meetup(target: Conferenceable) -> bool:
    return target.resource_type == "group"


# ── Client ──────────────────────────────────────────────────────────────────


class BBBClient:
    """Signed-URL builder and caller for one platform, many tenants.

    Tenant configuration is resolved on every call; nothing is cached.

    Args:
        config_provider: Resolves per-tenant BBB settings.
        proxy: Executes the signed URLs (default: a new BBBProxy).
    """

    def __init__(self, config_provider: ConfigProvider, proxy: BBBProxy | None = None) -> None:
        self._config_provider = config_provider
        self._proxy = proxy or BBBProxy()

    def get_config(self, ctx: RequestContext) -> TenantBBBConfig:
        config = self._config_provider.get_bbb_config(ctx.tenant.alias)
        if not config.enabled or not config.url:
            raise UpstreamError("Conferencing is not enabled for this tenant")
        return config

    def meeting_id(self, ctx: RequestContext, target: Conferenceable) -> str:
        return hash_meeting_id(target.id, self.get_config(ctx).secret)

    async def execute(self, ctx: RequestContext, url: str) -> dict[str, Any]:
        """Run a signed URL through the proxy with the tenant's timeout."""
        config = self.get_config(ctx)
        return await self._proxy.call(url, timeout=config.timeout)

    # ── Meeting info ────────────────────────────────────────────────────

    def get_meeting_info_url(self, ctx: RequestContext, target: Conferenceable) -> str:
        config = self.get_config(ctx)
        params = {"meetingID": hash_meeting_id(target.id, config.secret)}
        return sign_action_url(config.endpoint, "getMeetingInfo", config.secret, params)

    async def get_meeting_info(self, ctx: RequestContext, target: Conferenceable) -> dict[str, Any]:
        return await self.execute(ctx, self.get_meeting_info_url(ctx, target))

    # ── Create / join ───────────────────────────────────────────────────

    def get_create_meeting_url(self, ctx: RequestContext, target: Conferenceable) -> str:
        """Signed ``create`` URL with name, logout URL and recording flag.

        Meetups close the browser window on logout and register a
        recording-ready webhook pointing back at this platform.
        """
        config = self.get_config(ctx)
        if _is_meetup(target):
            logout_url = MEETUP_LOGOUT_URL
        else:
            logout_url = f"{ctx.base_url}{getattr(target, 'profile_path', '')}/close"

        params: dict[str, Any] = {
            "meetingID": hash_meeting_id(target.id, config.secret),
            "name": encode_component(target.display_name),
            "logoutURL": encode_component(logout_url),
            "record": resolve_record_flag(config, getattr(target, "record", None)),
        }
        if _is_meetup(target):
            webhook = f"{ctx.base_url}/api/meetup/{target.id}/recording"
            params["meta_bn-recording-ready-url"] = encode_component(webhook)
        return sign_action_url(config.endpoint, "create", config.secret, params)

    async def create_meeting(self, ctx: RequestContext, target: Conferenceable) -> dict[str, Any]:
        """Create the meeting on the BBB server; BBB treats repeats as no-ops."""
        info = await self.execute(ctx, self.get_create_meeting_url(ctx, target))
        if not is_success(info):
            logger.error(
                "bbb.create_failed",
                resource_id=target.id,
                message_key=info.get("messageKey"),
            )
            raise UpstreamError()
        logger.info("bbb.meeting_created", resource_id=target.id, tenant=ctx.tenant.alias)
        return info

    async def join_url(
        self,
        ctx: RequestContext,
        target: Conferenceable,
        is_manager: bool,
        config_xml: str | None = None,
    ) -> JoinInfo:
        """Signed ``join`` URL for the user in context.

        Creates the meeting on the server first if it is not running. A
        configuration XML, when given, is pushed with ``setConfigXML``; if
        that fails the user still gets a plain join URL.

        Args:
            ctx: Request context; ``ctx.user`` is the joining user.
            target: Meeting or group profile being joined.
            is_manager: Whether the user manages the target.
            config_xml: Optional client configuration override.

        Returns:
            JoinInfo with the signed join URL.
        """
        if ctx.user is None:
            raise AuthzError("Only authenticated users can join a meeting")

        config = self.get_config(ctx)
        info = await self.get_meeting_info(ctx, target)
        if is_not_found(info):
            info = await self.create_meeting(ctx, target)
        elif not is_success(info):
            logger.error("bbb.meeting_info_failed", resource_id=target.id, message_key=info.get("messageKey"))
            raise UpstreamError()

        if is_manager or getattr(target, "all_moderators", False):
            password = info.get("moderatorPW", "")
        else:
            password = info.get("attendeePW", "")

        params: dict[str, Any] = {
            "meetingID": hash_meeting_id(target.id, config.secret),
            "fullName": encode_component(ctx.user.display_name),
            "password": password,
        }
        if config_xml:
            token = await self.set_config_xml(ctx, target, config_xml)
            if token:
                params["configToken"] = token

        return JoinInfo(url=sign_action_url(config.endpoint, "join", config.secret, params))

    # ── XML configuration ───────────────────────────────────────────────

    def get_default_config_xml_url(self, ctx: RequestContext) -> str:
        config = self.get_config(ctx)
        return sign_action_url(config.endpoint, "getDefaultConfigXML", config.secret, {})

    async def get_default_config_xml(self, ctx: RequestContext) -> str:
        """Fetch the tenant's default client configuration XML unparsed."""
        config = self.get_config(ctx)
        return await self._proxy.call_extended(
            self.get_default_config_xml_url(ctx),
            response_mode=ResponseMode.RAW,
            timeout=config.timeout,
        )

    async def set_config_xml(self, ctx: RequestContext, target: Conferenceable, config_xml: str) -> str | None:
        """Push a configuration XML for the meeting and return its configToken.

        Returns None on any failure; joining must never depend on it.
        """
        config = self.get_config(ctx)
        params = {
            "configXML": form_encode(config_xml),
            "meetingID": hash_meeting_id(target.id, config.secret),
        }
        body = sign_form_body("setConfigXML", config.secret, params)
        try:
            result = await self._proxy.call_extended(
                f"{config.endpoint}api/setConfigXML",
                method="POST",
                body=body,
                content_type="application/x-www-form-urlencoded",
                timeout=config.timeout,
            )
        except MeetingsError:
            logger.warning("bbb.set_config_xml_failed", resource_id=target.id, exc_info=True)
            return None

        if not is_success(result) or not result.get("configToken"):
            logger.warning(
                "bbb.set_config_xml_rejected",
                resource_id=target.id,
                message_key=result.get("messageKey"),
            )
            return None
        return result["configToken"]

    # ── End ─────────────────────────────────────────────────────────────

    async def get_end_meeting_url(self, ctx: RequestContext, target: Conferenceable) -> EndMeetingURL:
        """Signed ``end`` URL, or a ``failed`` result if the meeting is not running."""
        config = self.get_config(ctx)
        info = await self.get_meeting_info(ctx, target)
        if is_not_found(info):
            return EndMeetingURL(returncode="failed", response=info)

        params = {
            "meetingID": hash_meeting_id(target.id, config.secret),
            "password": info.get("moderatorPW", ""),
        }
        return EndMeetingURL(
            returncode="success",
            url=sign_action_url(config.endpoint, "end", config.secret, params),
        )

    # ── Recordings ──────────────────────────────────────────────────────

    def get_recordings_url(self, ctx: RequestContext, target: Conferenceable) -> str:
        config = self.get_config(ctx)
        params = {"meetingID": hash_meeting_id(target.id, config.secret)}
        return sign_action_url(config.endpoint, "getRecordings", config.secret, params)

    def delete_recordings_url(self, ctx: RequestContext, recording_id: str) -> str:
        config = self.get_config(ctx)
        return sign_action_url(config.endpoint, "deleteRecordings", config.secret, {"recordID": recording_id})

    def update_recordings_url(self, ctx: RequestContext, recording_id: str, body: Mapping[str, Any]) -> str:
        """Signed ``publishRecordings`` URL; ``body`` params come first, then recordID."""
        config = self.get_config(ctx)
        params = dict(body)
        params["recordID"] = recording_id
        return sign_action_url(config.endpoint, "publishRecordings", config.secret, params)
