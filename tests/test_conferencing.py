"""Tests for ConferencingService: join, start confirmation, end, recordings."""

from __future__ import annotations

import pytest
import pytest_asyncio

from src.bbb_meetings.bbb.client import BBBClient
from src.bbb_meetings.config import SettingsConfigProvider
from src.bbb_meetings.core.errors import (
    AuthzError,
    ForbiddenError,
    MeetingsError,
    NotFoundError,
    ProxyError,
    ValidationError,
)
from src.bbb_meetings.events.schemas import MeetingEventName
from src.bbb_meetings.meetings.conferencing import ConferencingService, normalize_recordings, strip_sensitive_info
from tests.doubles import (
    BRANDEN,
    CREATED,
    MEETING_NOT_FOUND,
    MEETING_RUNNING,
    NICO,
    SIMON,
    STUART,
    bbb_settings,
    make_ctx,
    query_params,
)

RECORDINGS = {
    "returncode": "SUCCESS",
    "recordings": {"recording": {"recordID": "r1", "published": "true"}},
}


@pytest.fixture
def started(event_bus):
    captured = []

    async def handler(event):
        captured.append(event)

    event_bus.subscribe(MeetingEventName.STARTED_MEETING, handler)
    event_bus.subscribe(MeetingEventName.ENDED_MEETING, handler)
    return captured


@pytest_asyncio.fixture
async def meeting(meetings_service):
    return await meetings_service.create_meeting(
        make_ctx(BRANDEN), "Goats", "A meeting about goats", visibility="public", members={SIMON.id: "member"}
    )


@pytest.fixture
def recording_disabled(meetings_service, bbb_proxy, event_bus) -> ConferencingService:
    client = BBBClient(SettingsConfigProvider(bbb_settings(BBB_RECORDING=False)), proxy=bbb_proxy)
    return ConferencingService(meetings_service, client, event_bus)


# ── Join ─────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_member_joins_as_attendee(conferencing_service, bbb_proxy, meeting):
    bbb_proxy.respond("getMeetingInfo", MEETING_RUNNING)

    join_info = await conferencing_service.join_meeting(make_ctx(SIMON), meeting.id)

    params = query_params(join_info.url)
    assert params["fullName"] == SIMON.display_name
    assert params["password"] == "attendee-pw"


@pytest.mark.asyncio
async def test_conferencing_calls_do_not_emit_profile_views(conferencing_service, bbb_proxy, meeting, event_bus):
    """Permission checks for join and info are not recorded as profile views."""
    viewed = []

    async def handler(event):
        viewed.append(event)

    event_bus.subscribe(MeetingEventName.GET_MEETING_PROFILE, handler)
    bbb_proxy.respond("getMeetingInfo", MEETING_RUNNING)

    await conferencing_service.join_meeting(make_ctx(SIMON), meeting.id)
    await conferencing_service.get_meeting_info(make_ctx(SIMON), meeting.id)

    assert viewed == []


@pytest.mark.asyncio
async def test_manager_join_creates_meeting(conferencing_service, bbb_proxy, meeting):
    bbb_proxy.respond("getMeetingInfo", MEETING_NOT_FOUND)
    bbb_proxy.respond("create", CREATED)

    join_info = await conferencing_service.join_meeting(make_ctx(BRANDEN), meeting.id)

    assert len(bbb_proxy.urls("create")) == 1
    assert query_params(join_info.url)["password"] == "moderator-pw"


@pytest.mark.asyncio
@pytest.mark.parametrize("user", [None, STUART])
async def test_join_requires_interaction(conferencing_service, bbb_proxy, meeting, user):
    with pytest.raises(AuthzError):
        await conferencing_service.join_meeting(make_ctx(user), meeting.id)
    assert bbb_proxy.calls == []


@pytest.mark.asyncio
async def test_join_private_meeting_as_stranger(conferencing_service, meetings_service):
    meeting = await meetings_service.create_meeting(make_ctx(BRANDEN), "Secret", "desc", visibility="private")
    with pytest.raises(AuthzError):
        await conferencing_service.join_meeting(make_ctx(NICO), meeting.id)


# ── Start ────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_start_emits_started_once_bbb_reports_meeting(conferencing_service, bbb_proxy, meeting, started):
    bbb_proxy.respond("create", CREATED)
    bbb_proxy.respond("getMeetingInfo", MEETING_NOT_FOUND, MEETING_RUNNING)

    await conferencing_service.start_meeting(make_ctx(BRANDEN), meeting.id)
    await conferencing_service.join_background_tasks()

    assert len(bbb_proxy.urls("getMeetingInfo")) == 2
    assert [e.name for e in started] == [MeetingEventName.STARTED_MEETING]
    info = started[0].data["info"]
    assert info["running"] == "true"
    assert "moderatorPW" not in info
    assert "attendees" not in info


@pytest.mark.asyncio
async def test_start_requires_manager(conferencing_service, bbb_proxy, meeting):
    with pytest.raises(AuthzError):
        await conferencing_service.start_meeting(make_ctx(SIMON), meeting.id)
    assert bbb_proxy.calls == []


@pytest.mark.asyncio
async def test_start_without_confirmation_emits_nothing(conferencing_service, bbb_proxy, meeting, started):
    bbb_proxy.respond("create", CREATED)
    bbb_proxy.respond("getMeetingInfo", MEETING_NOT_FOUND)

    await conferencing_service.start_meeting(make_ctx(BRANDEN), meeting.id)
    await conferencing_service.join_background_tasks()

    # One initial poll plus three retries
    assert len(bbb_proxy.urls("getMeetingInfo")) == 4
    assert started == []


@pytest.mark.asyncio
async def test_poll_backs_off_and_retries_transport_errors(meetings_service, bbb_client, bbb_proxy, event_bus, meeting):
    delays = []

    async def record_sleep(seconds):
        delays.append(seconds)

    service = ConferencingService(
        meetings_service, bbb_client, event_bus, poll_retries=4, poll_interval=1.0, sleep=record_sleep
    )
    bbb_proxy.respond("getMeetingInfo", ProxyError(), MEETING_NOT_FOUND, MEETING_RUNNING)
    profile = await meetings_service.get_full_meeting_profile(make_ctx(BRANDEN), meeting.id)

    info = await service.poll_until_started(make_ctx(BRANDEN), profile)

    assert info["returncode"] == "SUCCESS"
    assert delays[0] == 1.0
    assert len(delays) == 3
    assert delays[1] < delays[2]


def test_strip_sensitive_info():
    stripped = strip_sensitive_info(MEETING_RUNNING)
    assert stripped == {"returncode": "SUCCESS", "meetingID": "hashed", "running": "true"}
    assert "moderatorPW" in MEETING_RUNNING


# ── Info / End ───────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_meeting_info_hides_credentials(conferencing_service, bbb_proxy, meeting):
    bbb_proxy.respond("getMeetingInfo", MEETING_RUNNING)

    info = await conferencing_service.get_meeting_info(make_ctx(SIMON), meeting.id)

    assert info["running"] == "true"
    assert "attendeePW" not in info


@pytest.mark.asyncio
async def test_end_meeting_that_is_not_running(conferencing_service, bbb_proxy, meeting, started):
    bbb_proxy.respond("getMeetingInfo", MEETING_NOT_FOUND)

    result = await conferencing_service.end_meeting(make_ctx(BRANDEN), meeting.id)

    assert result["returncode"] == "FAILED"
    assert result["messageKey"] == "notFound"
    assert bbb_proxy.urls("end") == []
    assert started == []


@pytest.mark.asyncio
async def test_end_running_meeting(conferencing_service, bbb_proxy, meeting, started):
    bbb_proxy.respond("getMeetingInfo", MEETING_RUNNING)
    bbb_proxy.respond("end", {"returncode": "SUCCESS", "messageKey": "sentEndMeetingRequest"})

    result = await conferencing_service.end_meeting(make_ctx(BRANDEN), meeting.id)

    assert result["messageKey"] == "sentEndMeetingRequest"
    assert query_params(bbb_proxy.urls("end")[0])["password"] == "moderator-pw"
    assert [e.name for e in started] == [MeetingEventName.ENDED_MEETING]


@pytest.mark.asyncio
async def test_end_requires_manager(conferencing_service, meeting):
    with pytest.raises(AuthzError):
        await conferencing_service.end_meeting(make_ctx(SIMON), meeting.id)


# ── Recordings ───────────────────────────────────────────────────────────────


def test_normalize_recordings_wraps_single_recording():
    result = normalize_recordings(RECORDINGS)
    assert result["recordings"] == [{"recordID": "r1", "published": "true"}]


def test_normalize_recordings_errors():
    with pytest.raises(NotFoundError):
        normalize_recordings({"returncode": "SUCCESS", "messageKey": "noRecordings"})
    with pytest.raises(MeetingsError) as exc_info:
        normalize_recordings({"returncode": "SUCCESS"})
    assert exc_info.value.code == 400


@pytest.mark.asyncio
async def test_get_recordings(conferencing_service, bbb_proxy, meeting):
    bbb_proxy.respond("getRecordings", RECORDINGS)

    result = await conferencing_service.get_recordings(make_ctx(SIMON), meeting.id)

    assert [r["recordID"] for r in result["recordings"]] == ["r1"]


@pytest.mark.asyncio
async def test_delete_recording(conferencing_service, bbb_proxy):
    bbb_proxy.respond("deleteRecordings", {"returncode": "SUCCESS", "deleted": "true"})

    result = await conferencing_service.delete_recording(make_ctx(BRANDEN), "r1")

    assert result["deleted"] == "true"
    assert query_params(bbb_proxy.urls("deleteRecordings")[0])["recordID"] == "r1"


@pytest.mark.asyncio
async def test_delete_recording_failures(conferencing_service, bbb_proxy):
    with pytest.raises(AuthzError):
        await conferencing_service.delete_recording(make_ctx(), "r1")

    bbb_proxy.respond("deleteRecordings", {"returncode": "FAILED", "messageKey": "notFound", "message": "Nope"})
    with pytest.raises(MeetingsError) as exc_info:
        await conferencing_service.delete_recording(make_ctx(BRANDEN), "r1")
    assert exc_info.value.code == 400


@pytest.mark.asyncio
async def test_update_recording(conferencing_service, bbb_proxy, meeting):
    bbb_proxy.respond("publishRecordings", {"returncode": "SUCCESS", "published": "false"})

    result = await conferencing_service.update_recording(make_ctx(BRANDEN), meeting.id, "r1", {"publish": False})

    assert result["published"] == "false"
    assert query_params(bbb_proxy.urls("publishRecordings")[0])["publish"] == "false"


@pytest.mark.asyncio
async def test_update_recording_validation_and_permissions(conferencing_service, bbb_proxy, meeting):
    with pytest.raises(ValidationError):
        await conferencing_service.update_recording(make_ctx(BRANDEN), meeting.id, "r1", {"publish": "yes"})
    with pytest.raises(AuthzError):
        await conferencing_service.update_recording(make_ctx(SIMON), meeting.id, "r1", {"publish": True})

    bbb_proxy.respond("publishRecordings", {"returncode": "FAILED", "messageKey": "notFound"})
    with pytest.raises(NotFoundError):
        await conferencing_service.update_recording(make_ctx(BRANDEN), meeting.id, "r1", {"publish": True})


@pytest.mark.asyncio
async def test_recording_changes_forbidden_when_recording_disabled(recording_disabled, bbb_proxy, meeting):
    with pytest.raises(ForbiddenError) as exc_info:
        await recording_disabled.delete_recording(make_ctx(BRANDEN), "r1")
    assert exc_info.value.code == 403

    with pytest.raises(ForbiddenError):
        await recording_disabled.update_recording(make_ctx(BRANDEN), meeting.id, "r1", {"publish": True})
    assert bbb_proxy.calls == []
