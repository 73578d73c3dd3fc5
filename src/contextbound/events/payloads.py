"""Typed payload definitions for each ContextEvent.

Usage example::

    from contextbound.events.bus import ContextEvent, EventBus
    from contextbound.events.payloads import CompactionCompletedPayload

    def on_compaction(event: ContextEvent, payload: CompactionCompletedPayload) -> None:
        print(f"{payload['tokens_before']} -> {payload['tokens_after']} tokens")

    bus.subscribe(ContextEvent.COMPACTION_COMPLETED, on_compaction)  # type: ignore[arg-type]
"""

from __future__ import annotations

from typing import Literal, TypedDict


class ContextCreatedPayload(TypedDict):
    """Payload for :attr:`ContextEvent.CONTEXT_CREATED`."""

    context_id: str
    owner_kind: Literal["session", "project"]
    owner_id: str
    max_tokens: int


class ContextResetPayload(TypedDict):
    """Payload for :attr:`ContextEvent.CONTEXT_RESET`."""

    context_id: str


class TurnAppendedPayload(TypedDict):
    """Payload for :attr:`ContextEvent.TURN_APPENDED`."""

    context_id: str
    turn_id: str
    role: str
    token_count: int
    total_tokens: int


class CompactionTriggeredPayload(TypedDict):
    """Payload for :attr:`ContextEvent.COMPACTION_TRIGGERED`."""

    context_id: str
    total_tokens: int
    max_tokens: int


class CompactionCompletedPayload(TypedDict):
    """Payload for :attr:`ContextEvent.COMPACTION_COMPLETED` (a dumped ``CompactionResult``)."""

    context_id: str
    outcome: Literal["compacted"]
    summary_turn_id: str
    compacted_turn_count: int
    retained_turn_count: int
    summary_token_count: int
    tokens_before: int
    tokens_after: int
    elapsed_ms: float
    reason: str | None
    error: str | None


class CompactionSkippedPayload(TypedDict):
    """Payload for :attr:`ContextEvent.COMPACTION_SKIPPED`."""

    context_id: str
    reason: str


class CompactionFailedPayload(TypedDict):
    """Payload for :attr:`ContextEvent.COMPACTION_FAILED`."""

    context_id: str
    error: str
