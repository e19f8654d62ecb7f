"""Pydantic schemas for the meeting domain.

Python code uses snake_case; serialized payloads use the platform's
camelCase names (``displayName``, ``lastModified``, ``profilePath``).
Timestamps are epoch milliseconds.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel

from src.bbb_meetings.core.context import Principal
from src.bbb_meetings.meetings.constants import RESOURCE_TYPE, Visibility


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Meeting ─────────────────────────────────────────────────────────────────


class Meeting(_CamelModel):
    """A virtual meeting room backed by BigBlueButton."""

    id: str
    tenant_alias: str
    created_by: str
    display_name: str
    description: str = ""
    record: bool | None = None
    all_moderators: bool | None = None
    wait_moderator: bool | None = None
    visibility: Visibility
    created: int
    last_modified: int

    @property
    def resource_id(self) -> str:
        return self.id.split(":", 2)[2]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def resource_type(self) -> str:
        return RESOURCE_TYPE

    @computed_field  # type: ignore[prop-decorator]
    @property
    def profile_path(self) -> str:
        return f"/{RESOURCE_TYPE}/{self.tenant_alias}/{self.resource_id}"


class MeetingProfile(Meeting):
    """Meeting plus the caller's access flags and the hydrated creator."""

    created_by_profile: Principal | None = None
    is_manager: bool = False
    can_share: bool = False
    can_join: bool = False
    signature: dict[str, Any] | None = None


# ── Membership ──────────────────────────────────────────────────────────────


class MeetingMember(_CamelModel):
    profile: Principal
    role: str


class MembershipChanges(_CamelModel):
    """Breakdown of a membership update, as carried by updatedMeetingMembers."""

    added: dict[str, str] = Field(default_factory=dict)
    updated: dict[str, str] = Field(default_factory=dict)
    removed: list[str] = Field(default_factory=list)


# ── Messages ────────────────────────────────────────────────────────────────


class Message(_CamelModel):
    """A message in a meeting's message box.

    ``created`` is the creation timestamp and doubles as the message key.
    A soft-deleted message keeps its place in the thread with ``body``
    and ``created_by`` cleared.
    """

    id: str
    message_box_id: str
    thread_key: str
    created: str
    created_by: str | None = None
    body: str | None = None
    level: int = 0
    reply_to: str | None = None
    deleted: str | None = None
    created_by_profile: Principal | None = None


# ── Library ─────────────────────────────────────────────────────────────────


class LibraryEntry(BaseModel):
    """One (library owner, meeting) pair to insert, update or remove."""

    library_id: str
    resource: Meeting
    rank: int
    old_rank: int | None = None
