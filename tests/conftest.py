"""Shared fixtures for the meetings test suite.

Provides:
- FakeRedis-backed library index and event bus
- In-memory host collaborators with a handful of users across tenants
- A settings-backed ConfigProvider with BBB enabled and a stub BBB proxy
- Fully wired MeetingsService / ConferencingService / MeetupsService
"""

from __future__ import annotations

import pytest
import pytest_asyncio

from src.bbb_meetings.bbb.client import BBBClient
from src.bbb_meetings.config import SettingsConfigProvider
from src.bbb_meetings.events.bus import MeetingEventBus
from src.bbb_meetings.meetings.collaborators import Collaborators
from src.bbb_meetings.meetings.conferencing import ConferencingService
from src.bbb_meetings.meetings.library import MeetingLibraryIndex
from src.bbb_meetings.meetings.meetups import MeetupsService
from src.bbb_meetings.meetings.service import MeetingsService
from tests.doubles import (
    ADMIN,
    BRANDEN,
    GROUP,
    GT,
    ISO_USER,
    ISOLATED,
    NICO,
    OAE,
    SIMON,
    STUART,
    FakeAuthz,
    FakeContent,
    FakeLibraryAuthz,
    FakeMessageBox,
    FakePrincipals,
    FakeRedis,
    FakeSignatures,
    FakeTenants,
    InMemoryMeetingRepository,
    StubBBBProxy,
    bbb_settings,
)


async def _no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def collaborators() -> Collaborators:
    principals = FakePrincipals()
    principals.add(BRANDEN, SIMON, NICO, ADMIN, STUART, ISO_USER, GROUP)
    return Collaborators(
        authz=FakeAuthz(),
        principals=principals,
        library_authz=FakeLibraryAuthz(),
        message_box=FakeMessageBox(),
        signatures=FakeSignatures(),
        content=FakeContent(),
        tenants=FakeTenants(OAE, GT, ISOLATED),
    )


@pytest.fixture
def config_provider() -> SettingsConfigProvider:
    return SettingsConfigProvider(bbb_settings())


@pytest.fixture
def repository() -> InMemoryMeetingRepository:
    return InMemoryMeetingRepository()


@pytest.fixture
def event_bus(fake_redis) -> MeetingEventBus:
    return MeetingEventBus(fake_redis)


@pytest.fixture
def library(fake_redis) -> MeetingLibraryIndex:
    return MeetingLibraryIndex(fake_redis)


@pytest_asyncio.fixture
async def meetings_service(collaborators, repository, library, event_bus, config_provider):
    service = MeetingsService(
        repository=repository,
        authz=collaborators.authz,
        principals=collaborators.principals,
        library=library,
        library_authz=collaborators.library_authz,
        message_box=collaborators.message_box,
        signatures=collaborators.signatures,
        events=event_bus,
        config=config_provider,
    )
    yield service
    await service.join_background_tasks()


@pytest.fixture
def bbb_proxy() -> StubBBBProxy:
    return StubBBBProxy()


@pytest.fixture
def bbb_client(config_provider, bbb_proxy) -> BBBClient:
    return BBBClient(config_provider, proxy=bbb_proxy)


@pytest_asyncio.fixture
async def conferencing_service(meetings_service, bbb_client, event_bus):
    service = ConferencingService(
        meetings_service, bbb_client, event_bus, poll_retries=3, poll_interval=1.0, sleep=_no_sleep
    )
    yield service
    await service.join_background_tasks()


@pytest.fixture
def meetups_service(collaborators, bbb_client, event_bus) -> MeetupsService:
    return MeetupsService(bbb_client, collaborators.principals, collaborators.content, event_bus)
