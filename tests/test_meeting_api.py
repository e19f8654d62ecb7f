"""Integration tests for the meetings REST API.

Builds the real app with create_app, then swaps the services on
app.state for ones backed by InMemoryMeetingRepository and the stub BBB
proxy. Requests carry X-Tenant-ID and, when authenticated, a Bearer JWT
whose ``sub`` is the principal id.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from fastapi.responses import RedirectResponse
from httpx import ASGITransport, AsyncClient
from jose import jwt

from src.bbb_meetings.api.v1.meetups import close_meetup as close_meetup_route
from src.bbb_meetings.config import get_settings
from src.bbb_meetings.main import create_app
from tests.doubles import (
    BBB_SECRET,
    BRANDEN,
    GROUP,
    MEETING_RUNNING,
    OAE,
    SIMON,
    FakeRedis,
    FakeTenants,
    make_ctx,
    query_params,
)

TENANT = {"X-Tenant-ID": "oae"}


def _auth(user, tenant: str | None = "oae") -> dict[str, str]:
    settings = get_settings()
    claims = {"sub": user.id}
    if tenant:
        claims["tenant"] = tenant
    token = jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return {**TENANT, "Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def client(collaborators, config_provider, meetings_service, conferencing_service, meetups_service):
    app = create_app(collaborators, redis_client=FakeRedis(), config_provider=config_provider)
    app.state.meetings_service = meetings_service
    app.state.conferencing_service = conferencing_service
    app.state.meetups_service = meetups_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


async def _create(client, **payload) -> dict:
    body = {"displayName": "Goats", "description": "A meeting about goats", **payload}
    response = await client.post("/api/meeting/create", json=body, headers=_auth(BRANDEN))
    assert response.status_code == 200
    return response.json()


# ── Tenant / Auth ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health_needs_no_tenant(client):
    """GET /health -> 200 without X-Tenant-ID."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_missing_tenant_header(client):
    response = await client.get("/api/meeting/m:oae:abc")
    assert response.status_code == 400
    assert response.json() == {"code": 400, "msg": "Missing X-Tenant-ID header"}


@pytest.mark.asyncio
async def test_unknown_tenant(client):
    response = await client.get("/api/meeting/m:oae:abc", headers={"X-Tenant-ID": "nowhere"})
    assert response.status_code == 404
    assert response.json()["msg"] == "Tenant not found: nowhere"


@pytest.mark.asyncio
async def test_invalid_token_is_401(client):
    headers = {**TENANT, "Authorization": "Bearer not-a-jwt"}
    response = await client.get("/api/meeting/m:oae:abc", headers=headers)
    assert response.status_code == 401
    assert response.json() == {"code": 401, "msg": "Invalid authentication token"}


@pytest.mark.asyncio
async def test_token_for_other_tenant_is_401(client):
    response = await client.get("/api/meeting/m:oae:abc", headers=_auth(BRANDEN, tenant="gt"))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_services_not_initialized_is_503():
    """No collaborators handed to create_app -> meeting endpoints answer 503."""
    app = create_app(redis_client=FakeRedis())
    app.state.tenants = FakeTenants(OAE)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/api/meeting/m:oae:abc", headers=TENANT)

    assert response.status_code == 503
    assert response.json() == {"code": 503, "msg": "Meetings service not initialized"}


# ── Meetings ─────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_create_and_get_meeting(client):
    """POST /api/meeting/create -> camelCase meeting; GET returns the caller's flags."""
    created = await _create(client, members=[SIMON.id], record=True)

    assert created["displayName"] == "Goats"
    assert created["createdBy"] == BRANDEN.id
    assert created["created"] == created["lastModified"]

    response = await client.get(f"/api/meeting/{created['id']}", headers=_auth(SIMON))
    profile = response.json()
    assert response.status_code == 200
    assert profile["isManager"] is False
    assert profile["canJoin"] is True
    assert profile["createdByProfile"]["id"] == BRANDEN.id


@pytest.mark.asyncio
async def test_create_meeting_anonymous(client):
    response = await client.post("/api/meeting/create", json={"displayName": "Goats"}, headers=TENANT)
    assert response.status_code == 401
    assert response.json() == {"code": 401, "msg": "Anonymous users cannot create a meeting"}


@pytest.mark.asyncio
async def test_create_meeting_malformed_body_is_400(client):
    response = await client.post(
        "/api/meeting/create", json={"displayName": "Goats", "record": "maybe"}, headers=_auth(BRANDEN)
    )
    assert response.status_code == 400
    assert response.json()["code"] == 400


@pytest.mark.asyncio
async def test_unknown_meeting_is_404(client):
    response = await client.get("/api/meeting/m:oae:nope", headers=TENANT)
    assert response.status_code == 404
    assert response.json() == {"code": 404, "msg": "Could not find meeting: m:oae:nope"}


@pytest.mark.asyncio
async def test_update_meeting(client):
    created = await _create(client)

    response = await client.post(
        f"/api/meeting/{created['id']}", json={"displayName": "Sheep"}, headers=_auth(BRANDEN)
    )

    assert response.status_code == 200
    assert response.json()["displayName"] == "Sheep"
    assert response.json()["isManager"] is True


@pytest.mark.asyncio
async def test_library_and_delete(client):
    created = await _create(client, members=[SIMON.id])

    response = await client.get(f"/api/meeting/library/{SIMON.id}", headers=_auth(SIMON))
    assert response.status_code == 200
    assert [m["id"] for m in response.json()["results"]] == [created["id"]]
    assert response.json()["nextToken"] is None

    response = await client.delete(f"/api/meeting/{created['id']}", headers=_auth(SIMON))
    assert response.status_code == 401

    response = await client.delete(f"/api/meeting/{created['id']}", headers=_auth(BRANDEN))
    assert response.status_code == 200

    response = await client.get(f"/api/meeting/library/{SIMON.id}", headers=_auth(SIMON))
    assert response.json()["results"] == []


@pytest.mark.asyncio
async def test_members_share_and_remove(client):
    created = await _create(client)
    meeting_id = created["id"]

    response = await client.post(
        f"/api/meeting/{meeting_id}/share", json={"members": [SIMON.id]}, headers=_auth(BRANDEN)
    )
    assert response.status_code == 200

    response = await client.get(f"/api/meeting/{meeting_id}/members", headers=TENANT)
    roles = {m["profile"]["id"]: m["role"] for m in response.json()["results"]}
    assert roles == {BRANDEN.id: "manager", SIMON.id: "member"}

    response = await client.post(
        f"/api/meeting/{meeting_id}/members", json={SIMON.id: "false"}, headers=_auth(BRANDEN)
    )
    assert response.status_code == 200

    response = await client.post(
        f"/api/meeting/{meeting_id}/members", json={BRANDEN.id: "member"}, headers=_auth(BRANDEN)
    )
    assert response.status_code == 400
    assert response.json()["msg"] == "The requested change results in a meeting with no managers"


@pytest.mark.asyncio
async def test_messages(client):
    created = await _create(client)
    meeting_id = created["id"]

    response = await client.post(
        f"/api/meeting/{meeting_id}/messages", json={"body": "Hello goats"}, headers=_auth(SIMON)
    )
    assert response.status_code == 200
    message = response.json()
    assert message["createdByProfile"]["id"] == SIMON.id

    response = await client.get(f"/api/meeting/{meeting_id}/messages", headers=TENANT)
    assert [m["body"] for m in response.json()["results"]] == ["Hello goats"]

    response = await client.delete(f"/api/meeting/{meeting_id}/messages/{message['created']}", headers=_auth(SIMON))
    assert response.status_code == 200
    assert response.json() is None


# ── Conferencing ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_join_redirects_to_bbb(client, bbb_proxy):
    """GET /api/meeting/{id}/join -> 301 to the signed join URL."""
    created = await _create(client)
    bbb_proxy.respond("getMeetingInfo", MEETING_RUNNING)

    response = await client.get(f"/api/meeting/{created['id']}/join", headers=_auth(SIMON))

    assert response.status_code == 301
    location = response.headers["location"]
    assert location.startswith("https://bbb.example.com/bigbluebutton/api/join?")
    assert query_params(location)["password"] == "attendee-pw"


@pytest.mark.asyncio
async def test_meeting_info_and_end(client, bbb_proxy):
    created = await _create(client)
    bbb_proxy.respond("getMeetingInfo", MEETING_RUNNING)
    bbb_proxy.respond("end", {"returncode": "SUCCESS", "messageKey": "sentEndMeetingRequest"})

    response = await client.get(f"/api/meeting/{created['id']}/info", headers=_auth(SIMON))
    assert response.json()["running"] == "true"
    assert "moderatorPW" not in response.json()

    response = await client.get(f"/api/meeting/{created['id']}/end", headers=_auth(BRANDEN))
    assert response.json()["messageKey"] == "sentEndMeetingRequest"


@pytest.mark.asyncio
async def test_recordings(client, bbb_proxy):
    created = await _create(client)
    bbb_proxy.respond(
        "getRecordings", {"returncode": "SUCCESS", "recordings": {"recording": {"recordID": "r1"}}}
    )
    bbb_proxy.respond("publishRecordings", {"returncode": "SUCCESS", "published": "true"})

    response = await client.get(f"/api/recording/{created['id']}", headers=TENANT)
    assert response.json()["recordings"] == [{"recordID": "r1"}]

    response = await client.patch(
        f"/api/meeting/{created['id']}/recording/r1", json={"publish": True}, headers=_auth(BRANDEN)
    )
    assert response.status_code == 200


# ── Meetups ──────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_close_meetup_redirects_to_blank(meetups_service):
    """close_meetup -> 301 to about:blank.

    Called directly: httpx refuses to build a follow-up request for an
    about: URL, so the route cannot be driven through the client.
    """
    response = await close_meetup_route(GROUP.id, ctx=make_ctx(BRANDEN), meetups=meetups_service)

    assert isinstance(response, RedirectResponse)
    assert response.status_code == 301
    assert response.headers["location"] == "about:blank"


@pytest.mark.asyncio
async def test_recording_webhook_accepts_form_token(client, bbb_proxy, collaborators):
    bbb_proxy.respond("getRecordings", {"returncode": "SUCCESS", "messageKey": "noRecordings"})
    token = jwt.encode({"record_id": "r1"}, BBB_SECRET, algorithm="HS256")

    response = await client.post(
        f"/api/meetup/{GROUP.id}/recording", data={"signed_parameters": token}, headers=TENANT
    )

    assert response.status_code == 200
    assert collaborators.content.links == []


@pytest.mark.asyncio
async def test_recording_webhook_rejects_forged_token(client):
    forged = jwt.encode({"record_id": "r1"}, "wrong", algorithm="HS256")
    response = await client.post(
        f"/api/meetup/{GROUP.id}/recording", data={"signed_parameters": forged}, headers=TENANT
    )
    assert response.status_code == 401
    assert response.json()["msg"] == "Invalid recording signature"
