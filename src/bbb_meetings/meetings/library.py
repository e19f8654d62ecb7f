"""Meeting libraries kept in Redis sorted sets.

Every library owner (user or group) has three buckets, one per
visibility a reader can be granted: ``public``, ``loggedin`` and
``private``. A meeting is written to every bucket that may see it, so a
reader only ever scans one key.

Key pattern: ``library:{index}:{library_id}:{visibility}``

All members share score 0 and are stored as ``{rank:015d}#{meeting id}``
so the lexicographic order of the set is the rank order. Paging walks
the set backwards with ZREVRANGEBYLEX; the next token is the last raw
member returned and is used as an exclusive bound.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

import redis.asyncio as aioredis
import structlog

from src.bbb_meetings.meetings.collaborators import AuthzAPI
from src.bbb_meetings.meetings.constants import (
    MEETINGS_LIBRARY_INDEX_NAME,
    RESOURCE_TYPE,
    Visibility,
)
from src.bbb_meetings.meetings.repository import MeetingRepository
from src.bbb_meetings.meetings.schemas import LibraryEntry

logger = structlog.get_logger(__name__)

_RANK_WIDTH = 15

# Buckets an item of a given visibility is listed in
_BUCKETS: dict[str, tuple[str, ...]] = {
    Visibility.PUBLIC.value: (Visibility.PUBLIC.value, Visibility.LOGGEDIN.value, Visibility.PRIVATE.value),
    Visibility.LOGGEDIN.value: (Visibility.LOGGEDIN.value, Visibility.PRIVATE.value),
    Visibility.PRIVATE.value: (Visibility.PRIVATE.value,),
}
_ALL_BUCKETS = _BUCKETS[Visibility.PUBLIC.value]


def encode_member(rank: int, resource_id: str) -> str:
    return f"{rank:0{_RANK_WIDTH}d}#{resource_id}"


def decode_member(member: str) -> tuple[int, str]:
    rank, _, resource_id = member.partition("#")
    return int(rank), resource_id


class MeetingLibraryIndex:
    """Rank-ordered, visibility-bucketed meeting libraries.

    Args:
        redis: Raw async Redis client (decode_responses=True).
        index_name: Library index name, also the key namespace.
    """

    def __init__(self, redis: aioredis.Redis, index_name: str = MEETINGS_LIBRARY_INDEX_NAME) -> None:
        self._redis = redis
        self._index_name = index_name

    def _key(self, library_id: str, visibility: str) -> str:
        return f"library:{self._index_name}:{library_id}:{visibility}"

    def _keys(self, library_id: str, buckets: Iterable[str] = _ALL_BUCKETS) -> list[str]:
        return [self._key(library_id, bucket) for bucket in buckets]

    # ── Writes ──────────────────────────────────────────────────────────

    async def insert(self, entries: Sequence[LibraryEntry]) -> None:
        for entry in entries:
            member = encode_member(entry.rank, entry.resource.id)
            for key in self._keys(entry.library_id, _BUCKETS[entry.resource.visibility.value]):
                await self._redis.zadd(key, {member: 0})

    async def update(self, entries: Sequence[LibraryEntry]) -> None:
        """Move each entry from ``old_rank`` to ``rank``.

        The old member is removed from every bucket since the meeting's
        visibility may have changed along with its rank.
        """
        for entry in entries:
            if entry.old_rank is not None:
                old_member = encode_member(entry.old_rank, entry.resource.id)
                for key in self._keys(entry.library_id):
                    await self._redis.zrem(key, old_member)
        await self.insert(entries)

    async def remove(self, entries: Sequence[LibraryEntry]) -> None:
        for entry in entries:
            member = encode_member(entry.rank, entry.resource.id)
            for key in self._keys(entry.library_id):
                await self._redis.zrem(key, member)

    async def purge(self, library_id: str) -> None:
        await self._redis.delete(*self._keys(library_id))

    # ── Reads ───────────────────────────────────────────────────────────

    async def list(
        self,
        library_id: str,
        visibility: str,
        start: str | None = None,
        limit: int = 10,
    ) -> tuple[list[str], str | None]:
        """One page of meeting ids, highest rank first.

        If the page holds the same meeting more than once (two writers
        raced on a touch) the lower-ranked copies are dropped from the
        page and deleted from the index, so a later read is clean.

        Returns:
            ``(meeting ids, next token or None)``.
        """
        key = self._key(library_id, visibility)
        upper = f"({start}" if start else "+"
        members = await self._redis.zrevrangebylex(key, upper, "-", start=0, num=limit + 1)

        page = members[:limit]
        next_token = page[-1] if len(members) > limit else None

        resource_ids: list[str] = []
        duplicates: list[str] = []
        for member in page:
            _, resource_id = decode_member(member)
            if resource_id in resource_ids:
                duplicates.append(member)
            else:
                resource_ids.append(resource_id)

        if duplicates:
            logger.warning(
                "library.duplicates_repaired",
                library_id=library_id,
                index=self._index_name,
                duplicates=duplicates,
            )
            for dup_key in self._keys(library_id):
                await self._redis.zrem(dup_key, *duplicates)

        return resource_ids, next_token

    # ── Rebuild ─────────────────────────────────────────────────────────

    async def rebuild(
        self,
        library_id: str,
        authz: AuthzAPI,
        repository: MeetingRepository,
        batch_size: int = 100,
    ) -> int:
        """Recreate a library from the owner's meeting roles.

        Returns:
            Number of meetings indexed.
        """
        await self.purge(library_id)
        indexed = 0
        start: str | None = None
        while True:
            roles, start = await authz.get_roles_for_principal_and_resource_type(
                library_id, RESOURCE_TYPE, start, batch_size
            )
            meetings = await repository.get_meetings_by_id([r["id"] for r in roles])
            entries = [
                LibraryEntry(library_id=library_id, resource=meeting, rank=meeting.last_modified)
                for meeting in meetings
                if meeting is not None
            ]
            await self.insert(entries)
            indexed += len(entries)
            if not start:
                break

        logger.info("library.rebuilt", library_id=library_id, index=self._index_name, indexed=indexed)
        return indexed
