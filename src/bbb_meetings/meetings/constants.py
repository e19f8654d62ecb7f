"""Roles, visibilities, library and limits for the meeting resource type."""

from __future__ import annotations

from enum import Enum

RESOURCE_TYPE = "meeting"
RESOURCE_ID_PREFIX = "m"


class Visibility(str, Enum):
    PUBLIC = "public"
    LOGGEDIN = "loggedin"
    PRIVATE = "private"


ALL_VISIBILITIES = [v.value for v in Visibility]


class Role(str, Enum):
    MEMBER = "member"
    MANAGER = "manager"


# Ordered by priority: a principal holding several roles is treated as the last one
ROLES_ALL_PRIORITY = [Role.MEMBER.value, Role.MANAGER.value]

MEETINGS_LIBRARY_INDEX_NAME = "meetings:meetings"

# Fields a manager may change through update_meeting, keyed by wire name
MEETING_UPDATE_FIELDS = {
    "displayName": "display_name",
    "description": "description",
    "visibility": "visibility",
}

# Minimum seconds between two activity-driven lastModified bumps
LIBRARY_UPDATE_THRESHOLD_SECONDS = 3600

ALL_MEMBERS_LIMIT = 10000
