"""ContextManager: the public façade over accountant, turn log, compaction and store."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Coroutine
from contextlib import asynccontextmanager
from typing import Any, TypeVar

import structlog

from contextbound.compaction.engine import CompactionEngine
from contextbound.events.bus import ContextEvent, EventBus, Handler
from contextbound.llm import (
    LiteLLMTextGenerator,
    LiteLLMTokenCounter,
    TextGenerator,
    TokenCounter,
)
from contextbound.log.turn_log import TurnLog
from contextbound.models.config import ContextManagerConfig, StoreConfig
from contextbound.models.results import AppendResult, CompactionResult, ContextSummary, UsageStats
from contextbound.models.turn import (
    Context,
    InvalidOwnerError,
    InvalidTurnError,
    OwnerRef,
    Role,
    Turn,
    now_ms,
)
from contextbound.store.context_store import (
    ContextNotFoundError,
    ContextStore,
    DuplicateContextError,
    OwnerNotFoundError,
)
from contextbound.store.pool import StorePool
from contextbound.tokens.accountant import TokenAccountant

T = TypeVar("T")


def new_turn(role: Role, content: str, **fields: Any) -> Turn:
    """Build an uncounted caller turn, e.g. ``new_turn("user", "hello")``."""
    return Turn(role=role, content=content, **fields)


class ContextManager:
    """
    Bounded conversation contexts for sessions and projects.

    Each owner (a chat session or a project) holds exactly one context. Every
    append counts the new turn, adds it to the log, compacts the log when the
    budget threshold is crossed, and persists the result before returning.

    Concurrency:
    - Mutations on one context (append, compact, reset) are serialized by a
      per-context ``asyncio.Lock``. Unrelated contexts never wait on each other.
    - The lock is held across append and compaction, so two appends that both
      cross the threshold produce exactly one compaction.
    - Every mutation runs as its own task awaited through ``asyncio.shield``.
      Cancelling the caller abandons the wait, never the write.

    Usage::

        async with ContextManager.open(db_path="/tmp/contexts.db") as manager:
            ctx = await manager.get_or_create(OwnerRef.session("sess_01"))
            result = await manager.append_turn(ctx.id, new_turn("user", "Hello!"))
            print(result.usage.percentage_used)
    """

    def __init__(
        self,
        store: ContextStore,
        accountant: TokenAccountant,
        engine: CompactionEngine,
        event_bus: EventBus,
        config: ContextManagerConfig,
    ) -> None:
        self._store = store
        self._accountant = accountant
        self._engine = engine
        self._event_bus = event_bus
        self._config = config
        self._locks: dict[str, asyncio.Lock] = {}
        self._owner_locks: dict[str, asyncio.Lock] = {}
        self._inflight: set[asyncio.Task[Any]] = set()
        self._closed = False
        self._logger = structlog.get_logger("contextbound.manager")

    # ── Construction ───────────────────────────────────────────────────────────

    @classmethod
    async def create(
        cls,
        *,
        config: ContextManagerConfig | None = None,
        db_path: str | None = None,
        pool: StorePool | None = None,
        counter: TokenCounter | None = None,
        generator: TextGenerator | None = None,
        event_bus: EventBus | None = None,
    ) -> ContextManager:
        """
        Build a manager and its collaborators from configuration.

        Args:
            config: Manager configuration. Defaults to ``ContextManagerConfig()``.
            db_path: Override database path (useful for testing). Raises
                ``ValueError`` if ``config.store.db_path`` was also changed.
            pool: Optional shared connection pool. The caller closes it.
            counter: Token counting capability. Defaults to litellm's tokenizer
                for ``config.counting_model``.
            generator: Summary generation capability. Defaults to litellm
                completion with ``config.compaction.model``.
            event_bus: Bus to publish lifecycle events on. A new one by default.

        Returns:
            An initialized ContextManager.

        Raises:
            ValueError: If both ``db_path`` and ``config.store.db_path`` are supplied.
            aiosqlite.Error: If the database cannot be initialized.
        """
        cfg = config or ContextManagerConfig()
        if db_path is not None:
            if config is not None and cfg.store.db_path != StoreConfig().db_path:
                raise ValueError(
                    "Specify db_path either via db_path= or config.store.db_path, not both."
                )
            cfg = cfg.model_copy(
                update={"store": cfg.store.model_copy(update={"db_path": db_path})}
            )

        store = ContextStore(cfg.store, pool=pool)
        await store.initialize()

        bus = event_bus or EventBus()
        accountant = TokenAccountant(
            counter or LiteLLMTokenCounter(cfg.counting_model), cfg.accountant
        )
        engine = CompactionEngine(
            generator
            or LiteLLMTextGenerator(
                cfg.compaction.model, max_output_tokens=cfg.compaction.max_output_tokens
            ),
            accountant,
            bus,
            cfg,
        )
        return cls(store, accountant, engine, bus, cfg)

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        *,
        config: ContextManagerConfig | None = None,
        db_path: str | None = None,
        pool: StorePool | None = None,
        counter: TokenCounter | None = None,
        generator: TextGenerator | None = None,
        event_bus: EventBus | None = None,
    ) -> AsyncGenerator[ContextManager, None]:
        """
        Create a manager and close it when the ``async with`` block exits.

        All parameters are identical to :meth:`create`.
        """
        manager = await cls.create(
            config=config,
            db_path=db_path,
            pool=pool,
            counter=counter,
            generator=generator,
            event_bus=event_bus,
        )
        try:
            yield manager
        finally:
            await manager.close()

    async def close(self) -> None:
        """Wait for in-flight mutations to finish, then release the store."""
        if self._closed:
            return
        self._closed = True
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        await self._store.close()
        self._logger.info("manager_closed")

    async def __aenter__(self) -> ContextManager:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    # ── Public operations ──────────────────────────────────────────────────────

    async def get_or_create(self, owner: OwnerRef) -> Context:
        """
        Return the context held by ``owner``, creating an empty one if needed.

        Calling this twice for the same owner always yields the same context id.

        Raises:
            InvalidOwnerError: If ``owner`` is not an ``OwnerRef``.
            OwnerNotFoundError: If the owner's session/project record does not exist.
        """
        if not isinstance(owner, OwnerRef):
            raise InvalidOwnerError(f"expected an OwnerRef, got {type(owner).__name__}")
        return await self._run_shielded(self._get_or_create(owner))

    async def append_turn(
        self, context_id: str, turn: Turn, *, owner: OwnerRef | None = None
    ) -> AppendResult:
        """
        Count ``turn``, append it, compact if the budget threshold is crossed, and persist.

        Any ``token_count`` already on ``turn`` is ignored; the stored turn is
        always counted by the token accountant.

        Args:
            context_id: Target context.
            turn: The new turn. Its role must not be ``summary``.
            owner: When given, must match the context's owner.

        Returns:
            AppendResult with the stored turn, fresh usage and any compaction outcome.
            A compaction that could not produce a summary is reported in
            ``warnings``; the turn is still appended.

        Raises:
            InvalidTurnError: If ``turn`` is not a caller turn.
            InvalidOwnerError: If ``owner`` does not own the context.
            ContextNotFoundError: If the context does not exist.
            ContextStoreError: If persisting fails. Nothing is stored in that case.
        """
        if not isinstance(turn, Turn):
            raise InvalidTurnError(f"expected a Turn, got {type(turn).__name__}")
        if turn.is_summary:
            raise InvalidTurnError("summary turns are produced by compaction only")
        return await self._run_shielded(self._append(context_id, turn, owner))

    def usage_stats(self, context: Context) -> UsageStats:
        """Budget view of ``context``. Has no side effects."""
        return UsageStats(
            total_tokens=context.total_tokens,
            max_tokens=context.max_tokens,
            percentage_used=context.total_tokens / context.max_tokens * 100,
            needs_compaction=self._engine.should_compact(context.total_tokens, context.max_tokens),
            turn_count=len(context.turns),
        )

    async def reset(self, context_id: str) -> Context:
        """
        Clear all turns and the summary. Id, owner and ``max_tokens`` are kept.

        Only the context row is rewritten; the owner record keeps its last
        summary and token total.

        Raises:
            ContextNotFoundError: If the context does not exist.
        """
        return await self._run_shielded(self._reset(context_id))

    async def compact(self, context_id: str) -> CompactionResult:
        """
        Compact a context now, regardless of the threshold.

        Raises:
            ContextNotFoundError: If the context does not exist.
        """
        return await self._run_shielded(self._compact(context_id))

    async def get_context(self, context_id: str) -> Context:
        """
        Fetch a context by id.

        Raises:
            ContextNotFoundError: If the context does not exist.
        """
        context = await self._store.get(context_id)
        if context is None:
            raise ContextNotFoundError(context_id)
        return context

    async def turns_for_generation(self, context_id: str, limit: int | None = None) -> list[Turn]:
        """Turns to send for generation, including the summary turn if present.

        ``limit`` keeps only the most recent turns; ``None`` returns them all.
        """
        context = await self.get_context(context_id)
        log = TurnLog(context.turns)
        if limit is None:
            return list(log.turns)
        return log.window(limit)

    async def context_summary(self, context_id: str) -> ContextSummary:
        context = await self.get_context(context_id)
        usage = self.usage_stats(context)
        return ContextSummary(
            context_id=context.id,
            total_turns=usage.turn_count,
            total_tokens=usage.total_tokens,
            percentage_used=usage.percentage_used,
            has_summary=bool(context.summary_text),
            summary=context.summary_text,
        )

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def config(self) -> ContextManagerConfig:
        return self._config

    @property
    def store(self) -> ContextStore:
        return self._store

    def subscribe(self, event: ContextEvent, handler: Handler) -> None:
        """Shorthand for ``manager.event_bus.subscribe(event, handler)``."""
        self._event_bus.subscribe(event, handler)

    def is_compacting(self, context_id: str) -> bool:
        return self._engine.is_compacting(context_id)

    # ── Mutations (run inside shielded tasks) ──────────────────────────────────

    async def _get_or_create(self, owner: OwnerRef) -> Context:
        async with self._owner_lock(owner.key):
            existing = await self._store.load(owner)
            if existing is not None:
                return existing
            try:
                context = await self._store.create(owner, self._config.context.max_tokens)
            except OwnerNotFoundError:
                self._owner_locks.pop(owner.key, None)
                raise
            except DuplicateContextError:
                # Another manager on the same database won the race.
                context = await self._store.load(owner)
                if context is None:
                    raise
                return context

        self._logger.info(
            "context_created",
            context_id=context.id,
            owner=owner.key,
            max_tokens=context.max_tokens,
        )
        self._event_bus.publish(
            ContextEvent.CONTEXT_CREATED,
            {
                "context_id": context.id,
                "owner_kind": owner.kind,
                "owner_id": owner.owner_id,
                "max_tokens": context.max_tokens,
            },
        )
        return context

    async def _append(
        self, context_id: str, turn: Turn, owner: OwnerRef | None
    ) -> AppendResult:
        logger = self._logger.bind(context_id=context_id)
        async with self._context_lock(context_id):
            context = await self._load_locked(context_id)
            if owner is not None and owner != context.owner:
                raise InvalidOwnerError(
                    f"{owner.key} does not own context {context_id} (owner is {context.owner.key})"
                )

            counted = await self._accountant.count_turn(turn)
            log = TurnLog(context.turns)
            log.append(counted)
            context.sync_from(log)

            compaction: CompactionResult | None = None
            warnings: list[str] = []
            triggered = self._config.compaction.auto and self._engine.should_compact(
                context.total_tokens, context.max_tokens
            )
            if triggered:
                compaction = await self._engine.compact(
                    context, log, persist=self._store.save_compacted
                )
                if compaction.outcome == "failed":
                    warnings.append(f"compaction failed: {compaction.error}")
            if compaction is None or compaction.outcome != "compacted":
                await self._store.save(context)

        logger.debug(
            "turn_appended",
            turn_id=counted.id,
            role=counted.role,
            token_count=counted.token_count,
            total_tokens=context.total_tokens,
        )
        self._event_bus.publish(
            ContextEvent.TURN_APPENDED,
            {
                "context_id": context_id,
                "turn_id": counted.id,
                "role": counted.role,
                "token_count": counted.token_count or 0,
                "total_tokens": context.total_tokens,
            },
        )
        return AppendResult(
            context_id=context_id,
            turn=counted,
            usage=self.usage_stats(context),
            compaction_triggered=triggered,
            compaction=compaction,
            warnings=warnings,
        )

    async def _compact(self, context_id: str) -> CompactionResult:
        async with self._context_lock(context_id):
            context = await self._load_locked(context_id)
            self._logger.info("manual_compaction_triggered", context_id=context_id)
            return await self._engine.compact(
                context, TurnLog(context.turns), persist=self._store.save_compacted
            )

    async def _reset(self, context_id: str) -> Context:
        async with self._context_lock(context_id):
            context = await self._load_locked(context_id)
            context.turns = []
            context.summary_text = None
            context.total_tokens = 0
            context.updated_at = now_ms()
            await self._store.save(context)

        self._logger.info("context_reset", context_id=context_id)
        self._event_bus.publish(ContextEvent.CONTEXT_RESET, {"context_id": context_id})
        return context

    # ── Helpers ────────────────────────────────────────────────────────────────

    def _context_lock(self, context_id: str) -> asyncio.Lock:
        return self._locks.setdefault(context_id, asyncio.Lock())

    def _owner_lock(self, key: str) -> asyncio.Lock:
        return self._owner_locks.setdefault(key, asyncio.Lock())

    async def _load_locked(self, context_id: str) -> Context:
        """Load a context while holding its lock; unknown ids do not keep a lock entry."""
        try:
            return await self.get_context(context_id)
        except ContextNotFoundError:
            self._locks.pop(context_id, None)
            raise

    async def _run_shielded(self, coro: Coroutine[Any, Any, T]) -> T:
        """Run ``coro`` as a tracked task; cancelling the caller leaves the task running."""
        if self._closed:
            coro.close()
            raise RuntimeError("ContextManager is closed")
        task = asyncio.get_running_loop().create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._mutation_done)
        return await asyncio.shield(task)

    def _mutation_done(self, task: asyncio.Task[Any]) -> None:
        self._inflight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.debug("mutation_failed", error=f"{type(exc).__name__}: {exc}")
