"""Meeting repository -- async CRUD over the bbb_meetings table.

Provides MeetingRepository with the session_factory callable pattern.
Only the meeting row is stored here: roles, libraries and messages are
owned by other collaborators, and deleting a row does not cascade to
them. Callers sequence those steps themselves.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import AsyncGenerator, AsyncIterator, Callable, Sequence
from typing import Any

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.bbb_meetings.meetings.constants import RESOURCE_ID_PREFIX
from src.bbb_meetings.meetings.models import MeetingModel
from src.bbb_meetings.meetings.schemas import Meeting

logger = structlog.get_logger(__name__)

_COLUMNS = frozenset(c.key for c in MeetingModel.__table__.columns)
_UPDATABLE = _COLUMNS - {"id", "tenant_alias", "created_by", "created"}


def now_millis() -> int:
    return int(time.time() * 1000)


def new_meeting_id(tenant_alias: str) -> str:
    """Tenant-scoped resource id, e.g. ``m:oae:3f2c...``."""
    return f"{RESOURCE_ID_PREFIX}:{tenant_alias}:{uuid.uuid4().hex}"


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_meeting(model: MeetingModel) -> Meeting:
    """Convert MeetingModel to Meeting schema."""
    return Meeting(
        id=model.id,
        tenant_alias=model.tenant_alias,
        created_by=model.created_by,
        display_name=model.display_name,
        description=model.description or "",
        record=model.record,
        all_moderators=model.all_moderators,
        wait_moderator=model.wait_moderator,
        visibility=model.visibility,
        created=model.created,
        last_modified=model.last_modified or model.created,
    )


def _check_fields(fields: Sequence[str], allowed: frozenset[str]) -> None:
    unknown = [f for f in fields if f not in allowed]
    if unknown:
        raise ValueError(f"Unknown meeting fields: {', '.join(unknown)}")


# ── Repository ──────────────────────────────────────────────────────────────


class MeetingRepository:
    """Async CRUD operations for meeting rows.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def create_meeting(
        self,
        tenant_alias: str,
        created_by: str,
        display_name: str,
        description: str,
        visibility: str,
        record: bool | None = None,
        all_moderators: bool | None = None,
        wait_moderator: bool | None = None,
        created: int | None = None,
    ) -> Meeting:
        """Persist a new meeting with ``created == last_modified``.

        Args:
            tenant_alias: Owning tenant.
            created_by: Principal id of the creator.
            display_name: Meeting name.
            description: Meeting description.
            visibility: public, loggedin or private.
            record: Requested recording flag (None defers to the tenant).
            all_moderators: Everyone joins as moderator.
            wait_moderator: Attendees wait for a moderator.
            created: Creation timestamp in millis (default: now).

        Returns:
            The stored Meeting.
        """
        timestamp = created or now_millis()
        async for session in self._session_factory():
            model = MeetingModel(
                id=new_meeting_id(tenant_alias),
                tenant_alias=tenant_alias,
                created_by=created_by,
                display_name=display_name,
                description=description,
                record=record,
                all_moderators=all_moderators,
                wait_moderator=wait_moderator,
                visibility=visibility,
                created=timestamp,
                last_modified=timestamp,
            )
            session.add(model)
            await session.commit()
            logger.info("meetings.row_created", meeting_id=model.id, tenant=tenant_alias)
            return _model_to_meeting(model)

    async def update_meeting(
        self,
        meeting: Meeting,
        fields: dict[str, Any],
        last_modified: int | None = None,
    ) -> Meeting:
        """Apply ``fields`` and stamp ``last_modified``.

        An empty ``fields`` only bumps the timestamp ("touch").

        Returns:
            ``meeting`` with the changes merged in.

        Raises:
            ValueError: If a field is unknown or immutable.
        """
        _check_fields(list(fields), _UPDATABLE)
        changes = dict(fields)
        changes["last_modified"] = last_modified or now_millis()

        async for session in self._session_factory():
            model = await session.get(MeetingModel, meeting.id)
            if model is None:
                raise ValueError(f"Meeting {meeting.id} not found")
            for key, value in changes.items():
                setattr(model, key, getattr(value, "value", value))
            await session.commit()

        return Meeting.model_validate({**meeting.model_dump(), **changes})

    async def get_meeting(self, meeting_id: str) -> Meeting | None:
        async for session in self._session_factory():
            model = await session.get(MeetingModel, meeting_id)
            return _model_to_meeting(model) if model is not None else None

    async def get_meetings_by_id(self, meeting_ids: Sequence[str]) -> list[Meeting | None]:
        """Fetch several meetings, keeping input order.

        Ids that do not resolve leave a ``None`` in their slot.
        """
        if not meeting_ids:
            return []
        async for session in self._session_factory():
            stmt = select(MeetingModel).where(MeetingModel.id.in_(list(meeting_ids)))
            result = await session.execute(stmt)
            by_id = {m.id: _model_to_meeting(m) for m in result.scalars().all()}
            return [by_id.get(meeting_id) for meeting_id in meeting_ids]

    async def delete_meeting(self, meeting_id: str) -> None:
        """Remove the row only."""
        async for session in self._session_factory():
            await session.execute(delete(MeetingModel).where(MeetingModel.id == meeting_id))
            await session.commit()
            logger.info("meetings.row_deleted", meeting_id=meeting_id)

    async def iterate_all(
        self,
        fields: Sequence[str] | None = None,
        batch_size: int = 100,
    ) -> AsyncIterator[list[dict[str, Any]]]:
        """Scan every meeting row in id order, one batch at a time.

        The next batch is only read once the consumer asks for it, so the
        caller controls the pace of the scan.

        Args:
            fields: Columns to return per row (default: ``["id"]``).
            batch_size: Rows per batch.

        Yields:
            Lists of ``{field: value}`` dicts.
        """
        fields = list(fields or ["id"])
        _check_fields(fields, _COLUMNS)
        columns = [MeetingModel.id] + [getattr(MeetingModel, f) for f in fields if f != "id"]

        last_id: str | None = None
        while True:
            async for session in self._session_factory():
                stmt = select(*columns).order_by(MeetingModel.id).limit(batch_size)
                if last_id is not None:
                    stmt = stmt.where(MeetingModel.id > last_id)
                rows = (await session.execute(stmt)).mappings().all()

            if not rows:
                return
            yield [{f: row[f] for f in fields} for row in rows]
            if len(rows) < batch_size:
                return
            last_id = rows[-1]["id"]
