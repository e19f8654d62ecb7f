"""Meeting events: typed payloads and the bus that delivers them.

Exports:
    MeetingEvent: Event Pydantic model with tenant and actor attribution.
    MeetingEventName: Enum of event names emitted by meeting operations.
    MeetingEventBus: Local subscribers plus tenant-scoped Redis Stream.
"""

from __future__ import annotations

from src.bbb_meetings.events.schemas import MeetingEvent, MeetingEventName

__all__ = [
    "MeetingEvent",
    "MeetingEventBus",
    "MeetingEventName",
]


def __getattr__(name: str):  # noqa: N807
    """Lazy-load the bus to avoid circular imports."""
    if name == "MeetingEventBus":
        from src.bbb_meetings.events.bus import MeetingEventBus

        return MeetingEventBus
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
