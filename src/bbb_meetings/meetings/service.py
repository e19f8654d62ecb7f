"""Meeting domain service -- lifecycle, membership, libraries and messages.

Every operation runs in the same order: validate input (first failure
wins), load the meeting, authorize, apply the critical write, then the
best-effort side effects (library indexing, events). A failing side
effect is logged with the affected principal ids and never turns a
completed write into an error.

Activity on a meeting (shares, permission changes, messages) bumps
``last_modified`` at most once per update threshold, which bounds how
often every member's library gets re-ranked for a busy meeting.
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine, Mapping, Sequence
from typing import Any

import structlog

from src.bbb_meetings.config import ConfigProvider
from src.bbb_meetings.core.context import RequestContext
from src.bbb_meetings.core.errors import AuthzError, BusinessRuleError, NotFoundError, ValidationError
from src.bbb_meetings.core.validation import (
    LONG_STRING_MAX,
    MEDIUM_STRING_MAX,
    SHORT_STRING_MAX,
    Validator,
    is_not_empty,
    is_principal_id,
    is_resource_id,
    is_timestamp,
    max_length,
)
from src.bbb_meetings.events.bus import MeetingEventBus
from src.bbb_meetings.events.schemas import MeetingEventName
from src.bbb_meetings.meetings import authz as meeting_authz
from src.bbb_meetings.meetings.collaborators import (
    AuthzAPI,
    LibraryAuthz,
    MessageBoxAPI,
    PrincipalsAPI,
    RoleChanges,
    SignatureAPI,
)
from src.bbb_meetings.meetings.constants import (
    ALL_MEMBERS_LIMIT,
    ALL_VISIBILITIES,
    LIBRARY_UPDATE_THRESHOLD_SECONDS,
    MEETING_UPDATE_FIELDS,
    ROLES_ALL_PRIORITY,
    Role,
)
from src.bbb_meetings.meetings.library import MeetingLibraryIndex
from src.bbb_meetings.meetings.repository import MeetingRepository, now_millis
from src.bbb_meetings.meetings.schemas import (
    LibraryEntry,
    Meeting,
    MeetingMember,
    MeetingProfile,
    MembershipChanges,
    Message,
)

logger = structlog.get_logger(__name__)

_ILLEGAL_MEMBERS_MSG = (
    "One or more target members being granted access are not authorized to become members on this meeting"
)
_NO_MANAGERS_MSG = "The requested change results in a meeting with no managers"


class MeetingsService:
    """Orchestrates meeting operations over the repository and collaborators.

    Args:
        repository: Meeting row storage.
        authz: Role storage and implicit access resolution.
        principals: User and group directory.
        library: Meeting library index.
        library_authz: Decides which library bucket a caller may read.
        message_box: Threaded message storage.
        signatures: Expiring resource signatures for full profiles.
        events: Event bus for meeting events.
        config: Per-tenant configuration (default visibility).
        update_threshold_seconds: Minimum gap between activity touches.
    """

    def __init__(
        self,
        repository: MeetingRepository,
        authz: AuthzAPI,
        principals: PrincipalsAPI,
        library: MeetingLibraryIndex,
        library_authz: LibraryAuthz,
        message_box: MessageBoxAPI,
        signatures: SignatureAPI,
        events: MeetingEventBus,
        config: ConfigProvider,
        update_threshold_seconds: int = LIBRARY_UPDATE_THRESHOLD_SECONDS,
    ) -> None:
        self._repository = repository
        self._authz = authz
        self._principals = principals
        self._library = library
        self._library_authz = library_authz
        self._message_box = message_box
        self._signatures = signatures
        self._events = events
        self._config = config
        self._update_threshold_ms = update_threshold_seconds * 1000
        self._background: set[asyncio.Task] = set()

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def create_meeting(
        self,
        ctx: RequestContext,
        display_name: str,
        description: str,
        visibility: str | None = None,
        members: Mapping[str, str] | None = None,
        record: bool | None = None,
        all_moderators: bool | None = None,
        wait_moderator: bool | None = None,
    ) -> Meeting:
        """Create a meeting; the caller always becomes a manager.

        Args:
            ctx: Request context.
            display_name: Meeting name.
            description: Meeting description.
            visibility: public, loggedin or private (default: tenant setting).
            members: Extra members mapped to their role.
            record: Requested recording flag.
            all_moderators: Everyone joins BBB as moderator.
            wait_moderator: Attendees wait for a moderator.

        Returns:
            The created Meeting.
        """
        visibility = visibility or self._config.get_default_visibility(ctx.tenant.alias)
        members = dict(members or {})

        validator = Validator()
        validator.logged_in(ctx, "Anonymous users cannot create a meeting")
        validator.check(is_not_empty(display_name), "Must provide a display name for the meeting")
        validator.check(
            max_length(display_name, SHORT_STRING_MAX), "A display name can be at most 1000 characters long"
        )
        validator.check(is_not_empty(description), "Must provide a description for the meeting")
        validator.check(
            max_length(description, MEDIUM_STRING_MAX), "A description can be at most 10000 characters long"
        )
        validator.is_in(
            visibility,
            ALL_VISIBILITIES,
            "An invalid meeting visibility option has been provided. Must be one of: "
            + ", ".join(ALL_VISIBILITIES),
        )
        for member_id, role in members.items():
            validator.check(is_principal_id(member_id), f"The memberId: {member_id} is not a valid member id")
            validator.is_in(role, ROLES_ALL_PRIORITY, f"The role: {role} is not a valid member role for a meeting")
        validator.raise_first()

        # Tenant privacy boundaries
        principals = await self._principals.get_principals(list(members))
        if len(principals) != len(members):
            raise ValidationError("One or more target members being granted access do not exist")
        _, illegal_ids = await self._authz.can_interact(ctx, ctx.tenant.alias, list(principals.values()))
        if illegal_ids:
            raise BusinessRuleError(_ILLEGAL_MEMBERS_MSG)

        meeting = await self._repository.create_meeting(
            tenant_alias=ctx.tenant.alias,
            created_by=ctx.user.id,
            display_name=display_name,
            description=description,
            visibility=visibility,
            record=record,
            all_moderators=all_moderators,
            wait_moderator=wait_moderator,
        )

        members[ctx.user.id] = Role.MANAGER.value
        await self._authz.update_roles(meeting.id, members)
        await self._insert_library(list(members), meeting)

        await self._events.emit(
            MeetingEventName.CREATED_MEETING,
            ctx,
            meeting.id,
            meeting=meeting.model_dump(by_alias=True, mode="json"),
            members=members,
        )
        logger.info("meetings.created", meeting_id=meeting.id, tenant=ctx.tenant.alias, members=len(members))
        return meeting

    async def update_meeting(
        self, ctx: RequestContext, meeting_id: str, profile_fields: Mapping[str, Any]
    ) -> MeetingProfile:
        """Change displayName, description and/or visibility.

        Library ranks of all members are refreshed in the background.
        """
        validator = Validator()
        validator.check(is_resource_id(meeting_id), "A meeting id must be provided")
        validator.logged_in(ctx, "You must be authenticated to update a meeting")
        validator.check(len(profile_fields) > 0, "You should specify at least one profile field to update")
        for field, value in profile_fields.items():
            validator.is_in(
                field,
                MEETING_UPDATE_FIELDS,
                f"The field '{field}' is not a valid field. Must be one of: " + ", ".join(MEETING_UPDATE_FIELDS),
            )
            if field == "visibility":
                validator.is_in(
                    value,
                    ALL_VISIBILITIES,
                    "An invalid visibility was specified. Must be one of: " + ", ".join(ALL_VISIBILITIES),
                )
            elif field == "displayName":
                validator.check(is_not_empty(value), "A display name cannot be empty")
                validator.check(
                    max_length(value, SHORT_STRING_MAX), "A display name can be at most 1000 characters long"
                )
            elif field == "description":
                validator.check(is_not_empty(value), "A description cannot be empty")
                validator.check(
                    max_length(value, MEDIUM_STRING_MAX), "A description can only be 10000 characters long"
                )
        validator.raise_first()

        meeting = await self._get_meeting(meeting_id)
        if not await meeting_authz.can_manage_meeting(self._authz, ctx, meeting):
            raise AuthzError("You are not authorized to update this meeting")

        member_ids = await self._get_all_member_ids(meeting.id)
        changes = {MEETING_UPDATE_FIELDS[field]: value for field, value in profile_fields.items()}
        updated = await self._repository.update_meeting(meeting, changes)

        # A direct edit always re-ranks, independent of the touch threshold
        self._spawn(self._update_library(member_ids, updated, meeting.last_modified))

        await self._events.emit(
            MeetingEventName.UPDATED_MEETING,
            ctx,
            meeting.id,
            meeting=updated.model_dump(by_alias=True, mode="json"),
            old_meeting=meeting.model_dump(by_alias=True, mode="json"),
        )
        return MeetingProfile(**updated.model_dump(), is_manager=True, can_share=True, can_join=True)

    async def delete_meeting(self, ctx: RequestContext, meeting_id: str) -> None:
        """Revoke every role, clear every library entry, then drop the row.

        Role revocation and library removal are attempted for every
        member even if some fail; only the row delete is critical.
        """
        Validator().check(is_resource_id(meeting_id), "A meeting id must be provided").logged_in(
            ctx, "You must be authenticated to delete a meeting"
        ).raise_first()

        meeting = await self._get_meeting(meeting_id)
        if not await meeting_authz.can_manage_meeting(self._authz, ctx, meeting):
            raise AuthzError("You are not authorized to delete this meeting")

        # A pending re-rank would re-insert library entries after they are removed
        await self.join_background_tasks()
        meeting = await self._get_meeting(meeting.id)

        member_ids = await self._get_all_member_ids(meeting.id)
        for member_id in member_ids:
            try:
                await self._authz.update_roles(meeting.id, {member_id: False})
            except Exception:
                logger.exception("meetings.role_revoke_failed", principal_id=member_id, meeting_id=meeting.id)
        await self._remove_library(member_ids, meeting)

        await self._repository.delete_meeting(meeting.id)
        await self._events.emit(
            MeetingEventName.DELETED_MEETING,
            ctx,
            meeting.id,
            meeting=meeting.model_dump(by_alias=True, mode="json"),
            member_ids=member_ids,
        )
        logger.info("meetings.deleted", meeting_id=meeting.id, tenant=ctx.tenant.alias)

    # ── Reads ───────────────────────────────────────────────────────────

    async def get_meetings_library(
        self,
        ctx: RequestContext,
        principal_id: str,
        start: str | None = None,
        limit: int = 10,
    ) -> tuple[list[Meeting], str | None]:
        """Page through a user's or group's meeting library.

        The caller only sees the bucket their access to the owner allows:
        public, loggedin or private (everything).
        """
        Validator().check(is_principal_id(principal_id), "A user or group id must be provided").raise_first()

        principal = await self._principals.get_principal(ctx, principal_id)
        has_access, visibility = await self._library_authz.resolve_target_library_access(ctx, principal)
        if not has_access or visibility is None:
            raise AuthzError("You do not have access to this library")

        meeting_ids, next_token = await self._library.list(principal_id, visibility, start=start, limit=limit)
        found = await self._repository.get_meetings_by_id(meeting_ids)
        meetings = [meeting for meeting in found if meeting is not None]

        await self._events.emit(
            MeetingEventName.GET_MEETING_LIBRARY,
            ctx,
            principal_id,
            visibility=visibility,
            start=start,
            limit=limit,
            meeting_ids=[m.id for m in meetings],
        )
        return meetings, next_token

    async def get_meeting_access(self, ctx: RequestContext, meeting_id: str) -> MeetingProfile:
        """Meeting plus the caller's access flags, without signature, creator or event.

        Raises:
            AuthzError: If the caller cannot view the meeting.
        """
        Validator().check(is_resource_id(meeting_id), "meetingId must be a valid resource id").raise_first()

        meeting = await self._get_meeting(meeting_id)
        access = await meeting_authz.resolve_effective_meeting_access(self._authz, ctx, meeting)
        if not access.can_view:
            raise AuthzError("You are not authorized to view this meeting")

        return MeetingProfile(
            **meeting.model_dump(),
            is_manager=access.can_manage,
            can_share=access.can_share,
            can_join=access.can_join,
        )

    async def get_full_meeting_profile(self, ctx: RequestContext, meeting_id: str) -> MeetingProfile:
        """Meeting plus the caller's access flags, a signature and the creator."""
        profile = await self.get_meeting_access(ctx, meeting_id)
        if ctx.user is not None:
            profile.signature = self._signatures.create_expiring_resource_signature(ctx, profile.id)

        try:
            profile.created_by_profile = await self._principals.get_principal(ctx, profile.created_by)
        except NotFoundError:
            logger.warning(
                "meetings.creator_not_found",
                user_id=profile.created_by,
                meeting_id=profile.id,
            )

        await self._events.emit(MeetingEventName.GET_MEETING_PROFILE, ctx, profile.id)
        return profile

    async def get_meeting_members(
        self,
        ctx: RequestContext,
        meeting_id: str,
        start: str | None = None,
        limit: int = 10,
    ) -> tuple[list[MeetingMember], str | None]:
        Validator().check(is_resource_id(meeting_id), "A valid resource id must be specified").raise_first()

        meeting = await self._get_meeting(meeting_id)
        if not await meeting_authz.can_view_meeting(self._authz, ctx, meeting):
            raise AuthzError("You are not authorized to view this meeting")

        members, next_token = await self._authz.get_authz_members(meeting.id, start, limit)
        principals = await self._principals.get_principals([m["id"] for m in members])
        results = [
            MeetingMember(profile=principals[m["id"]], role=m["role"]) for m in members if m["id"] in principals
        ]
        return results, next_token

    # ── Membership ──────────────────────────────────────────────────────

    async def share_meeting(self, ctx: RequestContext, meeting_id: str, principal_ids: Sequence[str]) -> None:
        """Grant the member role to principals who have no role yet.

        Principals that already hold a role are skipped, so sharing twice
        with the same principal is a no-op.
        """
        validator = Validator()
        validator.logged_in(ctx, "You have to be logged in to be able to share a meeting")
        validator.check(is_resource_id(meeting_id), "A valid resource id must be specified")
        validator.check(len(principal_ids) > 0, "At least one principal id needs to be passed in")
        for principal_id in principal_ids:
            validator.check(is_principal_id(principal_id), f"The member id: {principal_id} is not a valid member id")
        validator.raise_first()

        meeting = await self._get_meeting(meeting_id)
        existing_roles = await self._authz.get_roles(list(principal_ids), meeting.id)
        new_ids = list(dict.fromkeys(p for p in principal_ids if p not in existing_roles))

        # Authorize before the no-op return so existing members are not disclosed
        can_share, illegal_ids = await meeting_authz.can_share_meeting(
            self._authz, self._principals, ctx, meeting, new_ids
        )
        if illegal_ids:
            raise BusinessRuleError(_ILLEGAL_MEMBERS_MSG)
        if not can_share:
            raise AuthzError("You are not authorized to share this meeting")
        if not new_ids:
            return

        added = {principal_id: Role.MEMBER.value for principal_id in new_ids}
        await self._authz.update_roles(meeting.id, added)

        member_ids = await self._get_all_member_ids(meeting.id)
        updated = await self._touch_and_propagate(meeting, [m for m in member_ids if m not in added])
        await self._insert_library(new_ids, updated)

        await self._events.emit(
            MeetingEventName.UPDATED_MEETING_MEMBERS,
            ctx,
            meeting.id,
            **MembershipChanges(added=added).model_dump(),
        )

    async def set_meeting_permissions(self, ctx: RequestContext, meeting_id: str, changes: RoleChanges) -> None:
        """Add, change or remove members (role ``False`` removes).

        Rejected when the result would have no manager left.
        """
        validator = Validator()
        validator.check(is_resource_id(meeting_id), "A valid resource id must be specified")
        validator.logged_in(ctx, "You must be authenticated to update meeting members")
        validator.check(len(changes) > 0, "You must specify at least one permission change")
        for principal_id, role in changes.items():
            validator.check(is_principal_id(principal_id), f"The member id: {principal_id} is not a valid member id")
            validator.check(
                role is False or role in ROLES_ALL_PRIORITY,
                "An invalid role value was specified. Must either be a string, or false",
            )
        validator.raise_first()

        meeting = await self._get_meeting(meeting_id)
        current_roles = await self._authz.get_roles(list(changes), meeting.id)
        diff = _diff_roles(current_roles, changes)

        can_set, illegal_ids = await meeting_authz.can_set_meeting_permissions(
            self._authz, self._principals, ctx, meeting, list(diff.added)
        )
        if illegal_ids:
            raise BusinessRuleError(_ILLEGAL_MEMBERS_MSG)
        if not can_set:
            raise AuthzError("You are not authorized to update the permissions of this meeting")

        roles_after = await self._authz.compute_member_roles_after_changes(meeting.id, changes)
        if Role.MANAGER.value not in roles_after.values():
            raise BusinessRuleError(_NO_MANAGERS_MSG)

        await self._authz.update_roles(meeting.id, changes)
        await self._remove_library(diff.removed, meeting)

        updated = await self._touch_and_propagate(meeting, [m for m in roles_after if m not in diff.added])
        await self._insert_library(list(diff.added), updated)

        await self._events.emit(
            MeetingEventName.UPDATED_MEETING_MEMBERS,
            ctx,
            meeting.id,
            **diff.model_dump(),
        )

    async def remove_meeting_from_library(self, ctx: RequestContext, principal_id: str, meeting_id: str) -> None:
        """Drop a meeting from a library by revoking the owner's role.

        The caller needs permission over the library owner, not over the
        meeting itself.
        """
        validator = Validator()
        validator.logged_in(ctx, "You must be authenticated to remove a meeting from a library")
        validator.check(is_principal_id(principal_id), "A user or group id must be provided")
        validator.check(is_resource_id(meeting_id), "A valid meeting id must be provided")
        validator.raise_first()

        principal = await self._principals.get_principal(ctx, principal_id)
        meeting = await self._get_meeting(meeting_id)

        if not await self._library_authz.can_remove_from_library(ctx, principal):
            raise AuthzError("You are not authorized to remove a meeting from this library")

        roles = await self._authz.get_roles([principal_id], meeting.id)
        if principal_id not in roles:
            raise BusinessRuleError("The specified meeting is not in this library")

        changes = {principal_id: False}
        roles_after = await self._authz.compute_member_roles_after_changes(meeting.id, changes)
        if Role.MANAGER.value not in roles_after.values():
            raise BusinessRuleError(_NO_MANAGERS_MSG)

        await self._authz.update_roles(meeting.id, changes)
        await self._remove_library([principal_id], meeting)

        await self._events.emit(
            MeetingEventName.UPDATED_MEETING_MEMBERS,
            ctx,
            meeting.id,
            **MembershipChanges(removed=[principal_id]).model_dump(),
        )

    # ── Messages ────────────────────────────────────────────────────────

    async def create_message(
        self,
        ctx: RequestContext,
        meeting_id: str,
        body: str,
        reply_to_created: str | None = None,
    ) -> Message:
        validator = Validator()
        validator.logged_in(ctx, "Only authenticated users can post on meetings")
        validator.check(is_resource_id(meeting_id), "Invalid meeting id provided")
        validator.check(is_not_empty(body), "A message body must be provided")
        validator.check(max_length(body, LONG_STRING_MAX), "A message body can only be 100000 characters long")
        if reply_to_created:
            validator.check(is_timestamp(reply_to_created), "Invalid reply-to timestamp provided")
        validator.raise_first()

        meeting = await self._get_meeting(meeting_id)
        if not await meeting_authz.can_join_meeting(self._authz, ctx, meeting):
            raise AuthzError("You are not authorized to post messages to this meeting")

        if reply_to_created:
            parent = await self._message_box.get_message(meeting.id, reply_to_created)
            if parent is None:
                raise NotFoundError("The message you are trying to reply to could not be found")

        message = await self._message_box.create_message(
            meeting.id, ctx.user.id, body, reply_to_created=reply_to_created
        )
        message.created_by_profile = ctx.user

        member_ids = await self._get_all_member_ids(meeting.id)
        await self._touch_and_propagate(meeting, member_ids)

        await self._events.emit(
            MeetingEventName.CREATED_MEETING_MESSAGE,
            ctx,
            meeting.id,
            message=message.model_dump(by_alias=True, mode="json", exclude={"created_by_profile"}),
        )
        return message

    async def delete_message(self, ctx: RequestContext, meeting_id: str, message_created: str) -> Message | None:
        """Delete a message; soft when it has replies, hard otherwise.

        Returns:
            The tombstone for a soft delete, None for a hard delete.
        """
        validator = Validator()
        validator.logged_in(ctx, "Only authenticated users can delete messages")
        validator.check(is_resource_id(meeting_id), "A meeting id must be provided")
        validator.check(is_timestamp(message_created), "A valid integer message created timestamp must be specified")
        validator.raise_first()

        meeting = await self._get_meeting(meeting_id)
        message = await self._message_box.get_message(meeting.id, message_created)
        if message is None:
            raise NotFoundError("The specified message does not exist")

        if not await meeting_authz.can_delete_message(self._authz, ctx, meeting, message):
            raise AuthzError("You do not have access to delete this message")

        soft = await self._message_box.has_replies(meeting.id, message_created)
        result = await self._message_box.delete_message(meeting.id, message_created, soft=soft)

        await self._events.emit(
            MeetingEventName.DELETED_MEETING_MESSAGE,
            ctx,
            meeting.id,
            message_id=message.id,
            delete_type="soft" if soft else "hard",
        )
        return result

    async def get_messages(
        self,
        ctx: RequestContext,
        meeting_id: str,
        start: str | None = None,
        limit: int = 10,
    ) -> tuple[list[Message], str | None]:
        validator = Validator()
        validator.check(is_resource_id(meeting_id), "Must provide a valid meeting id")
        if start:
            validator.check(is_timestamp(start), "Must provide a valid message timestamp to start from")
        validator.raise_first()

        meeting = await self._get_meeting(meeting_id)
        if not await meeting_authz.can_view_meeting(self._authz, ctx, meeting):
            raise AuthzError("You are not authorized to view this meeting")

        messages, next_token = await self._message_box.get_messages(meeting.id, start, limit)
        author_ids = list({m.created_by for m in messages if m.created_by})
        authors = await self._principals.get_principals(author_ids) if author_ids else {}
        for message in messages:
            if message.created_by in authors:
                message.created_by_profile = authors[message.created_by]
        return messages, next_token

    # ── Internals ───────────────────────────────────────────────────────

    async def get_meeting(self, meeting_id: str) -> Meeting:
        """Load a meeting without permission checks (404 if absent)."""
        return await self._get_meeting(meeting_id)

    async def _get_meeting(self, meeting_id: str) -> Meeting:
        meeting = await self._repository.get_meeting(meeting_id)
        if meeting is None:
            raise NotFoundError(f"Could not find meeting: {meeting_id}")
        return meeting

    async def _get_all_member_ids(self, meeting_id: str) -> list[str]:
        members, _ = await self._authz.get_authz_members(meeting_id, None, ALL_MEMBERS_LIMIT)
        return [member["id"] for member in members]

    def _test_update_threshold(self, meeting: Meeting) -> bool:
        """True when ``last_modified`` is unset or older than the threshold."""
        if not meeting.last_modified:
            return True
        return now_millis() - meeting.last_modified > self._update_threshold_ms

    async def _touch(self, meeting: Meeting) -> tuple[Meeting, bool]:
        if not self._test_update_threshold(meeting):
            return meeting, False
        return await self._repository.update_meeting(meeting, {}), True

    async def _touch_and_propagate(self, meeting: Meeting, member_ids: Sequence[str]) -> Meeting:
        """Touch the meeting if due and re-rank it in ``member_ids`` libraries.

        Returns:
            The meeting as stored after the (possible) touch.
        """
        try:
            updated, touched = await self._touch(meeting)
        except Exception:
            logger.exception("meetings.touch_failed", meeting_id=meeting.id)
            return meeting
        if touched:
            self._spawn(self._update_library(member_ids, updated, meeting.last_modified))
        return updated

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def join_background_tasks(self) -> None:
        """Wait for pending library propagation (used on shutdown and in tests)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ── Library side effects (best-effort) ──────────────────────────────

    async def _insert_library(self, principal_ids: Sequence[str], meeting: Meeting) -> None:
        if not principal_ids:
            return
        entries = [LibraryEntry(library_id=p, resource=meeting, rank=meeting.last_modified) for p in principal_ids]
        try:
            await self._library.insert(entries)
        except Exception:
            logger.exception(
                "meetings.library_insert_failed",
                principal_ids=list(principal_ids),
                meeting_id=meeting.id,
            )

    async def _update_library(self, principal_ids: Sequence[str], meeting: Meeting, old_last_modified: int) -> None:
        if not principal_ids:
            return
        entries = [
            LibraryEntry(library_id=p, resource=meeting, rank=meeting.last_modified, old_rank=old_last_modified)
            for p in principal_ids
        ]
        try:
            await self._library.update(entries)
        except Exception:
            logger.exception(
                "meetings.library_update_failed",
                principal_ids=list(principal_ids),
                meeting_id=meeting.id,
            )

    async def _remove_library(self, principal_ids: Sequence[str], meeting: Meeting) -> None:
        if not principal_ids:
            return
        entries = [LibraryEntry(library_id=p, resource=meeting, rank=meeting.last_modified) for p in principal_ids]
        try:
            await self._library.remove(entries)
        except Exception:
            logger.exception(
                "meetings.library_remove_failed",
                principal_ids=list(principal_ids),
                meeting_id=meeting.id,
            )


def _diff_roles(current: Mapping[str, str], changes: RoleChanges) -> MembershipChanges:
    """Split requested role changes into added, updated and removed."""
    diff = MembershipChanges()
    for principal_id, role in changes.items():
        if role is False:
            if principal_id in current:
                diff.removed.append(principal_id)
        elif principal_id not in current:
            diff.added[principal_id] = role
        elif current[principal_id] != role:
            diff.updated[principal_id] = role
    return diff
