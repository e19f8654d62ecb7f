"""Event payloads emitted by meeting operations.

Events carry the tenant and the acting principal so subscribers (library
indexers, activity feeds) can act without re-querying the request.
Events serialize to flat string dicts for Redis Streams and deserialize
back losslessly.

Stream key pattern: t:{tenant_alias}:events:meetings
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class MeetingEventName(str, Enum):
    """Names of the events emitted by the meetings module."""

    CREATED_MEETING = "createdMeeting"
    UPDATED_MEETING = "updatedMeeting"
    DELETED_MEETING = "deletedMeeting"
    UPDATED_MEETING_MEMBERS = "updatedMeetingMembers"
    GET_MEETING_LIBRARY = "getMeetingLibrary"
    GET_MEETING_PROFILE = "getMeetingProfile"
    CREATED_MEETING_MESSAGE = "createdMeetingMessage"
    DELETED_MEETING_MESSAGE = "deletedMeetingMessage"
    STARTED_MEETING = "startedMeeting"
    ENDED_MEETING = "endedMeeting"
    JOIN_MEETUP = "joinMeetup"
    CLOSE_MEETUP = "closeMeetup"


class MeetingEvent(BaseModel):
    """One meeting event.

    Attributes:
        event_id: Unique identifier (auto-generated UUID4).
        name: Which operation produced the event.
        timestamp: UTC creation time.
        tenant_alias: Tenant the request ran in.
        actor_id: Principal that triggered the event, None when anonymous.
        resource_id: Meeting (or group, for meetups) the event is about.
        data: JSON-serializable payload specific to ``name``.
    """

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: MeetingEventName
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    tenant_alias: str
    actor_id: str | None = None
    resource_id: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)

    def to_stream_dict(self) -> dict[str, str]:
        """Serialize to a flat dict of strings for XADD.

        ``data`` is JSON-encoded; None becomes empty string.
        """
        return {
            "event_id": self.event_id,
            "name": self.name.value,
            "timestamp": self.timestamp.isoformat(),
            "tenant_alias": self.tenant_alias,
            "actor_id": self.actor_id or "",
            "resource_id": self.resource_id or "",
            "data": json.dumps(self.data, default=str),
        }

    @classmethod
    def from_stream_dict(cls, raw: dict[str, str]) -> MeetingEvent:
        return cls(
            event_id=raw["event_id"],
            name=MeetingEventName(raw["name"]),
            timestamp=datetime.fromisoformat(raw["timestamp"]),
            tenant_alias=raw["tenant_alias"],
            actor_id=raw.get("actor_id") or None,
            resource_id=raw.get("resource_id") or None,
            data=json.loads(raw["data"]) if raw.get("data") else {},
        )
