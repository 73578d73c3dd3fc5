"""contextbound event bus."""

from contextbound.events.bus import ContextEvent, EventBus, Handler
from contextbound.events.payloads import (
    CompactionCompletedPayload,
    CompactionFailedPayload,
    CompactionSkippedPayload,
    CompactionTriggeredPayload,
    ContextCreatedPayload,
    ContextResetPayload,
    TurnAppendedPayload,
)

__all__ = [
    "CompactionCompletedPayload",
    "CompactionFailedPayload",
    "CompactionSkippedPayload",
    "CompactionTriggeredPayload",
    "ContextCreatedPayload",
    "ContextEvent",
    "ContextResetPayload",
    "EventBus",
    "Handler",
    "TurnAppendedPayload",
]
