"""Usage and result models returned by the context manager."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from contextbound.models.turn import Turn


class UsageStats(BaseModel):
    """Derived budget view of a context. Computing it has no side effects."""

    total_tokens: int
    max_tokens: int
    percentage_used: float
    needs_compaction: bool
    """Mirrors the compaction guard for display; the guard itself lives in the engine."""
    turn_count: int


class CompactionResult(BaseModel):
    """
    The result of a compaction attempt.

    ``outcome`` is ``"compacted"`` when the log was rewritten, ``"skipped"``
    when there was nothing to do (log within the recency window, or another
    compaction already in flight), and ``"failed"`` when the summary could not
    be produced. A failed compaction leaves the log untouched.
    """

    context_id: str
    outcome: Literal["compacted", "skipped", "failed"]
    summary_turn_id: str | None = None
    compacted_turn_count: int = 0
    """Number of turns folded into the summary (including any prior summary turn)."""
    retained_turn_count: int = 0
    summary_token_count: int = 0
    tokens_before: int = 0
    tokens_after: int = 0
    elapsed_ms: float = 0.0
    reason: str | None = None
    error: str | None = None


class AppendResult(BaseModel):
    """The result of a single ``ContextManager.append_turn()`` call."""

    context_id: str
    turn: Turn
    """The stored turn, carrying its token count."""
    usage: UsageStats
    compaction_triggered: bool = False
    compaction: CompactionResult | None = None
    warnings: list[str] = Field(default_factory=list)
    """Non-fatal problems, e.g. a compaction that could not produce a summary."""


class ContextSummary(BaseModel):
    """Reporting view of a context and its most recent compaction summary."""

    context_id: str
    total_turns: int
    total_tokens: int
    percentage_used: float
    has_summary: bool
    summary: str | None = None
