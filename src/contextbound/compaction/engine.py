"""Compaction engine: threshold guard, summary generation and log rewrite.

Each context moves through a two-state machine:

- ``NORMAL -> COMPACTING`` when an append pushes ``total_tokens / max_tokens``
  to the configured threshold or beyond. The transition is an atomic guard: a
  context that is already ``COMPACTING`` ignores further triggers.
- ``COMPACTING -> NORMAL`` when the attempt ends, whatever its outcome.

A successful pass replaces the log with ``[summary] + last K turns`` and
re-sums the total from the new sequence. A failed pass (generation error,
timeout, blank summary) leaves the log exactly as it was; the context keeps
working over budget and the next threshold-crossing append retries.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum

import structlog

from contextbound.compaction.prompts import render_summary_prompt
from contextbound.events.bus import ContextEvent, EventBus
from contextbound.ids import make_id
from contextbound.llm import TextGenerator
from contextbound.log.turn_log import TurnLog
from contextbound.models.config import ContextManagerConfig
from contextbound.models.results import CompactionResult
from contextbound.models.turn import Context, Turn
from contextbound.tokens.accountant import TokenAccountant

Persist = Callable[[Context], Awaitable[None]]


class CompactionState(StrEnum):
    NORMAL = "normal"
    COMPACTING = "compacting"


class CompactionEngine:
    """
    Decides when a context must be compacted and performs the compaction.

    Guarantees:
    - At most one compaction per context id is in flight at any time.
    - ``compact()`` never raises for generation problems; they are reported
      as ``outcome="failed"`` with the log untouched.
    - Persistence errors raised by ``persist`` propagate after the in-memory
      context and log are restored to their pre-compaction state.
    - ``COMPACTION_COMPLETED`` is published only after ``persist`` succeeds.

    Example::

        engine = CompactionEngine(generator, accountant, event_bus, config)
        if engine.should_compact(context.total_tokens, context.max_tokens):
            result = await engine.compact(context, log, persist=store.save_compacted)
    """

    def __init__(
        self,
        generator: TextGenerator,
        accountant: TokenAccountant,
        event_bus: EventBus,
        config: ContextManagerConfig,
        id_generator: Callable[[str], str] | None = None,
    ) -> None:
        self._generator = generator
        self._accountant = accountant
        self._event_bus = event_bus
        self._config = config
        self._id_gen = id_generator or make_id
        self._states: dict[str, CompactionState] = {}
        self._logger = structlog.get_logger("contextbound.compaction")

    # ── State machine ───────────────────────────────────────────────────────────

    def state(self, context_id: str) -> CompactionState:
        return self._states.get(context_id, CompactionState.NORMAL)

    def is_compacting(self, context_id: str) -> bool:
        return self.state(context_id) is CompactionState.COMPACTING

    def should_compact(self, total_tokens: int, max_tokens: int) -> bool:
        """Return True when ``total_tokens / max_tokens`` reaches the configured threshold."""
        if max_tokens <= 0:
            return False
        return total_tokens / max_tokens >= self._config.context.compaction_threshold

    def _try_begin(self, context_id: str) -> bool:
        # No await between the check and the set: atomic on the event loop.
        if self._states.get(context_id) is CompactionState.COMPACTING:
            return False
        self._states[context_id] = CompactionState.COMPACTING
        return True

    def _finish(self, context_id: str) -> None:
        self._states.pop(context_id, None)

    # ── Compaction ──────────────────────────────────────────────────────────────

    async def compact(self, context: Context, log: TurnLog, persist: Persist) -> CompactionResult:
        """
        Compact ``log`` into ``[summary] + recency window`` and persist it.

        Args:
            context: The context being compacted. Updated in place on success.
            log: The context's turn log. Rewritten in place on success.
            persist: Coroutine that durably saves the compacted context.

        Returns:
            CompactionResult describing what happened.

        Raises:
            Exception: Whatever ``persist`` raises. The context and log are
                restored before the error propagates.
        """
        if not self._try_begin(context.id):
            self._logger.info("compaction_already_in_flight", context_id=context.id)
            return self._skipped(context, log, "already_compacting", time.time() * 1000)
        try:
            return await self._compact_inner(context, log, persist)
        finally:
            self._finish(context.id)

    async def _compact_inner(
        self, context: Context, log: TurnLog, persist: Persist
    ) -> CompactionResult:
        start_ms = time.time() * 1000
        window_size = self._config.context.recency_window_size
        tokens_before = log.total_tokens

        self._logger.info(
            "compaction_triggered",
            context_id=context.id,
            turns=len(log),
            total_tokens=tokens_before,
            max_tokens=context.max_tokens,
        )
        self._event_bus.publish(
            ContextEvent.COMPACTION_TRIGGERED,
            {
                "context_id": context.id,
                "total_tokens": tokens_before,
                "max_tokens": context.max_tokens,
            },
        )

        if len(log) <= window_size:
            return self._skipped(context, log, "within_recency_window", start_ms)

        prompt = render_summary_prompt(log.turns)
        try:
            summary_text = await asyncio.wait_for(
                self._generator.generate(prompt, temperature=self._config.compaction.temperature),
                timeout=self._config.compaction.generation_timeout_secs,
            )
        except Exception as exc:
            return self._failed(context, tokens_before, start_ms, f"{type(exc).__name__}: {exc}")

        summary_text = (summary_text or "").strip()
        if not summary_text:
            return self._failed(context, tokens_before, start_ms, "generation returned an empty summary")

        summary_turn = await self._accountant.count_turn(
            Turn(id=self._id_gen("turn"), role="summary", content=summary_text)
        )
        retained = self._recency_window(log)
        compacted_count = len(log) - len(retained)

        previous_turns = log.turns
        previous_summary = context.summary_text
        previous_total = context.total_tokens
        previous_updated = context.updated_at

        log.replace([summary_turn, *retained])
        context.summary_text = summary_text
        context.sync_from(log)

        try:
            await persist(context)
        except Exception as exc:
            log.replace(previous_turns)
            context.turns = list(previous_turns)
            context.summary_text = previous_summary
            context.total_tokens = previous_total
            context.updated_at = previous_updated
            self._logger.error(
                "compaction_persist_failed", context_id=context.id, error=str(exc)
            )
            self._event_bus.publish(
                ContextEvent.COMPACTION_FAILED,
                {"context_id": context.id, "error": f"persist failed: {exc}"},
            )
            raise

        result = CompactionResult(
            context_id=context.id,
            outcome="compacted",
            summary_turn_id=summary_turn.id,
            compacted_turn_count=compacted_count,
            retained_turn_count=len(retained),
            summary_token_count=summary_turn.token_count or 0,
            tokens_before=tokens_before,
            tokens_after=log.total_tokens,
            elapsed_ms=time.time() * 1000 - start_ms,
        )
        self._logger.info(
            "compaction_completed",
            context_id=context.id,
            turns_compacted=compacted_count,
            tokens_before=tokens_before,
            tokens_after=result.tokens_after,
            elapsed_ms=result.elapsed_ms,
        )
        if result.tokens_after >= context.max_tokens:
            self._logger.warning(
                "compaction_still_over_budget",
                context_id=context.id,
                tokens_after=result.tokens_after,
                max_tokens=context.max_tokens,
            )
        self._event_bus.publish(ContextEvent.COMPACTION_COMPLETED, result.model_dump())
        return result

    def _recency_window(self, log: TurnLog) -> list[Turn]:
        """Last K turns, optionally trimmed from the oldest end to fit ``recency_token_cap``."""
        window = log.window(self._config.context.recency_window_size)
        cap = self._config.compaction.recency_token_cap
        if cap is None:
            return window
        while len(window) > 1 and sum(t.token_count or 0 for t in window) > cap:
            window = window[1:]
        return window

    # ── Outcome helpers ─────────────────────────────────────────────────────────

    def _skipped(
        self, context: Context, log: TurnLog, reason: str, start_ms: float
    ) -> CompactionResult:
        self._logger.info("compaction_skipped", context_id=context.id, reason=reason)
        self._event_bus.publish(
            ContextEvent.COMPACTION_SKIPPED, {"context_id": context.id, "reason": reason}
        )
        return CompactionResult(
            context_id=context.id,
            outcome="skipped",
            retained_turn_count=len(log),
            tokens_before=log.total_tokens,
            tokens_after=log.total_tokens,
            elapsed_ms=time.time() * 1000 - start_ms,
            reason=reason,
        )

    def _failed(
        self, context: Context, tokens_before: int, start_ms: float, error: str
    ) -> CompactionResult:
        self._logger.warning("compaction_failed", context_id=context.id, error=error)
        self._event_bus.publish(
            ContextEvent.COMPACTION_FAILED, {"context_id": context.id, "error": error}
        )
        return CompactionResult(
            context_id=context.id,
            outcome="failed",
            tokens_before=tokens_before,
            tokens_after=tokens_before,
            elapsed_ms=time.time() * 1000 - start_ms,
            error=error,
        )
