"""Tests for BBBClient: signed URLs, lazy create on join, config XML."""

from __future__ import annotations

import pytest

from src.bbb_meetings.bbb.client import BBBClient, resolve_record_flag
from src.bbb_meetings.bbb.signer import checksum, hash_meeting_id, serialize_params
from src.bbb_meetings.config import SettingsConfigProvider, TenantBBBConfig
from src.bbb_meetings.core.errors import AuthzError, ProxyError, UpstreamError
from src.bbb_meetings.meetings.schemas import Meeting
from tests.doubles import (
    BBB_SECRET,
    BRANDEN,
    CREATED,
    GROUP,
    MEETING_NOT_FOUND,
    MEETING_RUNNING,
    bbb_settings,
    make_ctx,
    query_params,
)

ENDPOINT = "https://bbb.example.com/bigbluebutton/"


def _meeting(**kwargs) -> Meeting:
    values = {
        "id": "m:oae:goats",
        "tenant_alias": "oae",
        "created_by": BRANDEN.id,
        "display_name": "Goats & Sheep",
        "description": "Farm talk",
        "visibility": "public",
        "created": 1,
        "last_modified": 1,
    }
    values.update(kwargs)
    return Meeting(**values)


# ── Configuration ────────────────────────────────────────────────────────────


def test_get_config_rejects_disabled_tenant(bbb_proxy):
    client = BBBClient(SettingsConfigProvider(bbb_settings(BBB_ENABLED=False)), proxy=bbb_proxy)
    with pytest.raises(UpstreamError):
        client.get_config(make_ctx(BRANDEN))


def test_tenant_override_is_applied_per_call(bbb_proxy):
    settings = bbb_settings(BBB_TENANT_OVERRIDES='{"oae": {"url": "https://other.example.com", "secret": "s2"}}')
    client = BBBClient(SettingsConfigProvider(settings), proxy=bbb_proxy)

    config = client.get_config(make_ctx(BRANDEN))
    assert config.endpoint == "https://other.example.com/"
    assert config.secret == "s2"


def test_meeting_id_is_hashed_with_tenant_secret(bbb_client):
    meeting = _meeting()
    assert bbb_client.meeting_id(make_ctx(BRANDEN), meeting) == hash_meeting_id(meeting.id, BBB_SECRET)
    assert bbb_client.meeting_id(make_ctx(BRANDEN), meeting) != meeting.id


def test_meeting_info_url_is_signed(bbb_client):
    url = bbb_client.get_meeting_info_url(make_ctx(BRANDEN), _meeting())
    meeting_id = hash_meeting_id("m:oae:goats", BBB_SECRET)
    query = serialize_params({"meetingID": meeting_id})
    assert url == f"{ENDPOINT}api/getMeetingInfo?{query}&checksum={checksum('getMeetingInfo', query, BBB_SECRET)}"


# ── Record Flag ──────────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    ("recording", "default", "requested", "expected"),
    [
        (False, True, True, False),
        (False, True, None, False),
        (True, True, None, True),
        (True, False, None, False),
        (True, False, True, True),
        (True, True, False, False),
    ],
)
def test_resolve_record_flag(recording, default, requested, expected):
    config = TenantBBBConfig(enabled=True, url="https://bbb", recording=recording, recording_default=default)
    assert resolve_record_flag(config, requested) is expected


# ── Create ───────────────────────────────────────────────────────────────────


def test_create_url_for_meeting_points_logout_at_close_page(bbb_client):
    url = bbb_client.get_create_meeting_url(make_ctx(BRANDEN), _meeting(record=True))
    params = query_params(url)

    assert params["name"] == "Goats & Sheep"
    assert params["logoutURL"] == "https://oae.example.com/meeting/oae/goats/close"
    assert params["record"] == "true"
    assert "meta_bn-recording-ready-url" not in params
    # Values are percent-encoded before signing
    assert "name=Goats%20%26%20Sheep&" in url


def test_create_url_for_meetup_closes_window_and_registers_webhook(bbb_client):
    url = bbb_client.get_create_meeting_url(make_ctx(BRANDEN, protocol="http"), GROUP)
    params = query_params(url)

    assert params["logoutURL"] == "javascript:window.close();"
    assert params["meta_bn-recording-ready-url"] == "http://oae.example.com/api/meetup/g:oae:oae-team/recording"
    assert params["record"] == "false"


@pytest.mark.asyncio
async def test_create_meeting_failure_is_upstream_error(bbb_client, bbb_proxy):
    bbb_proxy.respond("create", {"returncode": "FAILED", "messageKey": "idNotUnique"})
    with pytest.raises(UpstreamError):
        await bbb_client.create_meeting(make_ctx(BRANDEN), _meeting())


# ── Join ─────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_join_creates_meeting_when_not_running(bbb_client, bbb_proxy):
    bbb_proxy.respond("getMeetingInfo", MEETING_NOT_FOUND)
    bbb_proxy.respond("create", CREATED)

    join_info = await bbb_client.join_url(make_ctx(BRANDEN), _meeting(), is_manager=True)

    assert [call[0] for call in bbb_proxy.calls] == ["getMeetingInfo", "create"]
    params = query_params(join_info.url)
    assert join_info.url.startswith(f"{ENDPOINT}api/join?")
    assert params["meetingID"] == hash_meeting_id("m:oae:goats", BBB_SECRET)
    assert params["fullName"] == "Branden Visser"
    assert params["password"] == "moderator-pw"
    assert "configToken" not in params


@pytest.mark.asyncio
async def test_join_running_meeting_as_attendee(bbb_client, bbb_proxy):
    bbb_proxy.respond("getMeetingInfo", MEETING_RUNNING)

    join_info = await bbb_client.join_url(make_ctx(BRANDEN), _meeting(), is_manager=False)

    assert bbb_proxy.urls("create") == []
    assert query_params(join_info.url)["password"] == "attendee-pw"


@pytest.mark.asyncio
async def test_all_moderators_joins_everyone_as_moderator(bbb_client, bbb_proxy):
    bbb_proxy.respond("getMeetingInfo", MEETING_RUNNING)

    join_info = await bbb_client.join_url(make_ctx(BRANDEN), _meeting(all_moderators=True), is_manager=False)

    assert query_params(join_info.url)["password"] == "moderator-pw"


@pytest.mark.asyncio
async def test_join_requires_user(bbb_client):
    with pytest.raises(AuthzError):
        await bbb_client.join_url(make_ctx(), _meeting(), is_manager=False)


@pytest.mark.asyncio
async def test_join_fails_on_unexpected_info_error(bbb_client, bbb_proxy):
    bbb_proxy.respond("getMeetingInfo", {"returncode": "FAILED", "messageKey": "checksumError"})
    with pytest.raises(UpstreamError):
        await bbb_client.join_url(make_ctx(BRANDEN), _meeting(), is_manager=True)


@pytest.mark.asyncio
async def test_join_with_config_xml_adds_config_token(bbb_client, bbb_proxy):
    bbb_proxy.respond("getMeetingInfo", MEETING_RUNNING)
    bbb_proxy.respond("setConfigXML", {"returncode": "SUCCESS", "configToken": "token-1"})

    join_info = await bbb_client.join_url(make_ctx(BRANDEN), GROUP, is_manager=True, config_xml="<config/>")

    assert query_params(join_info.url)["configToken"] == "token-1"
    _, url, body = bbb_proxy.calls[-1]
    assert url == f"{ENDPOINT}api/setConfigXML"
    assert body.startswith("configXML=%3Cconfig%2F%3E&meetingID=")
    assert "&checksum=" in body


@pytest.mark.asyncio
async def test_join_without_token_when_config_xml_rejected(bbb_client, bbb_proxy):
    bbb_proxy.respond("getMeetingInfo", MEETING_RUNNING)
    bbb_proxy.respond("setConfigXML", {"returncode": "FAILED", "messageKey": "configXMLError"})

    join_info = await bbb_client.join_url(make_ctx(BRANDEN), GROUP, is_manager=True, config_xml="<config/>")

    assert "configToken" not in query_params(join_info.url)


@pytest.mark.asyncio
async def test_join_without_token_when_config_xml_call_fails(bbb_client, bbb_proxy):
    bbb_proxy.respond("getMeetingInfo", MEETING_RUNNING)
    bbb_proxy.respond("setConfigXML", ProxyError())

    join_info = await bbb_client.join_url(make_ctx(BRANDEN), GROUP, is_manager=True, config_xml="<config/>")

    assert "configToken" not in query_params(join_info.url)


# ── End / Recordings ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_end_url_for_stopped_meeting_is_failed_result(bbb_client, bbb_proxy):
    bbb_proxy.respond("getMeetingInfo", MEETING_NOT_FOUND)

    end = await bbb_client.get_end_meeting_url(make_ctx(BRANDEN), _meeting())

    assert end.returncode == "failed"
    assert end.url is None
    assert end.response["messageKey"] == "notFound"


@pytest.mark.asyncio
async def test_end_url_uses_moderator_password(bbb_client, bbb_proxy):
    bbb_proxy.respond("getMeetingInfo", MEETING_RUNNING)

    end = await bbb_client.get_end_meeting_url(make_ctx(BRANDEN), _meeting())

    assert end.returncode == "success"
    assert query_params(end.url)["password"] == "moderator-pw"


def test_recording_urls(bbb_client):
    ctx = make_ctx(BRANDEN)
    assert query_params(bbb_client.delete_recordings_url(ctx, "r1"))["recordID"] == "r1"

    url = bbb_client.update_recordings_url(ctx, "r1", {"publish": False})
    assert "api/publishRecordings?publish=false&recordID=r1&checksum=" in url

    url = bbb_client.get_recordings_url(ctx, _meeting())
    assert query_params(url)["meetingID"] == hash_meeting_id("m:oae:goats", BBB_SECRET)


@pytest.mark.asyncio
async def test_default_config_xml_is_fetched_raw(bbb_client, bbb_proxy):
    bbb_proxy.respond("getDefaultConfigXML", "<config/>")
    assert await bbb_client.get_default_config_xml(make_ctx(BRANDEN)) == "<config/>"
    assert "getDefaultConfigXML?checksum=" in bbb_proxy.calls[0][1]
