"""Meeting event bus: in-process subscribers plus a Redis Stream.

Subscribers register per event name and are awaited in registration
order. The stream copy lets other services (activity feeds, search
indexers) consume the same events.

Stream key pattern: t:{tenant_alias}:events:meetings

Emitting is always best-effort: a failing subscriber or an unreachable
Redis is logged and never reaches the operation that emitted.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

import redis.asyncio as aioredis
import structlog

from src.bbb_meetings.core.context import RequestContext
from src.bbb_meetings.core.monitoring import meeting_events_total
from src.bbb_meetings.events.schemas import MeetingEvent, MeetingEventName

logger = structlog.get_logger(__name__)

EventHandler = Callable[[MeetingEvent], Awaitable[None]]

STREAM_NAME = "meetings"


class MeetingEventBus:
    """Publish meeting events to local handlers and a tenant stream.

    Args:
        redis: Raw async Redis client, or None to skip stream publishing.
        maxlen: Approximate stream length cap.
    """

    def __init__(self, redis: aioredis.Redis | None = None, maxlen: int = 1000) -> None:
        self._redis = redis
        self._maxlen = maxlen
        self._handlers: dict[MeetingEventName, list[EventHandler]] = defaultdict(list)

    @staticmethod
    def stream_key(tenant_alias: str) -> str:
        return f"t:{tenant_alias}:events:{STREAM_NAME}"

    def subscribe(self, name: MeetingEventName, handler: EventHandler) -> None:
        self._handlers[name].append(handler)

    async def emit(
        self,
        name: MeetingEventName,
        ctx: RequestContext,
        resource_id: str | None = None,
        **data: Any,
    ) -> MeetingEvent:
        """Build and deliver an event.

        Args:
            name: Event name.
            ctx: Request the event originates from.
            resource_id: Meeting or group id the event is about.
            **data: Event payload; must be JSON-serializable.

        Returns:
            The delivered MeetingEvent.
        """
        event = MeetingEvent(
            name=name,
            tenant_alias=ctx.tenant.alias,
            actor_id=ctx.user.id if ctx.user else None,
            resource_id=resource_id,
            data=data,
        )
        meeting_events_total.labels(event=name.value, tenant=event.tenant_alias).inc()

        for handler in self._handlers.get(name, []):
            try:
                await handler(event)
            except Exception:
                logger.exception(
                    "events.handler_failed",
                    event_name=name.value,
                    event_id=event.event_id,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                )

        if self._redis is not None:
            await self._publish(event)
        return event

    async def _publish(self, event: MeetingEvent) -> None:
        stream_key = self.stream_key(event.tenant_alias)
        try:
            message_id = await self._redis.xadd(
                stream_key,
                event.to_stream_dict(),
                maxlen=self._maxlen,
                approximate=True,
            )
        except aioredis.RedisError as exc:
            logger.warning(
                "events.publish_failed",
                stream=stream_key,
                event_name=event.name.value,
                error=str(exc),
            )
            return

        logger.debug(
            "event_published",
            stream=stream_key,
            event_name=event.name.value,
            event_id=event.event_id,
            message_id=message_id,
        )
