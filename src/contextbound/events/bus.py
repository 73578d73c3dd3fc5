"""In-process pub/sub event bus for context lifecycle events."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any

import structlog

Handler = Callable[["ContextEvent", dict[str, Any]], None | Awaitable[None]]


class ContextEvent(StrEnum):
    """All event types published by contextbound components.

    Typed payload definitions for each event live in
    :mod:`contextbound.events.payloads`.

    ``CONTEXT_CREATED``
        ``context_id``, ``owner_kind``, ``owner_id``, ``max_tokens``

    ``TURN_APPENDED``
        ``context_id``, ``turn_id``, ``role``, ``token_count``, ``total_tokens``

    ``CONTEXT_RESET``
        ``context_id``

    ``COMPACTION_TRIGGERED``
        ``context_id``, ``total_tokens``, ``max_tokens``

    ``COMPACTION_COMPLETED``
        all fields of :class:`~contextbound.models.results.CompactionResult`.
        Published only after the compacted context has been persisted.

    ``COMPACTION_SKIPPED``
        ``context_id``, ``reason``

    ``COMPACTION_FAILED``
        ``context_id``, ``error``
    """

    CONTEXT_CREATED = "context.created"
    CONTEXT_RESET = "context.reset"

    TURN_APPENDED = "turn.appended"

    COMPACTION_TRIGGERED = "compaction.triggered"
    COMPACTION_COMPLETED = "compaction.completed"
    COMPACTION_SKIPPED = "compaction.skipped"
    COMPACTION_FAILED = "compaction.failed"


class EventBus:
    """
    Simple in-process pub/sub event bus.

    - Sync handlers are called inline within ``publish()``.
    - Async handlers are scheduled via ``loop.create_task()``.
    - Handler exceptions are logged and never reach the publisher.

    Example::

        bus = EventBus()

        def on_compaction(event, payload):
            print(f"Compacted {payload['compacted_turn_count']} turns")

        bus.subscribe(ContextEvent.COMPACTION_COMPLETED, on_compaction)
    """

    def __init__(self, logger: structlog.BoundLogger | None = None) -> None:
        self._handlers: dict[ContextEvent, list[Handler]] = {}
        self._global_handlers: list[Handler] = []
        self._pending: set[asyncio.Task[Any]] = set()
        self._logger = logger or structlog.get_logger("contextbound.events")

    def subscribe(self, event: ContextEvent, handler: Handler) -> None:
        """Register a handler for a specific event type. May be sync or async."""
        self._handlers.setdefault(event, []).append(handler)

    def subscribe_all(self, handler: Handler) -> None:
        """Register a handler for every event type."""
        self._global_handlers.append(handler)

    def unsubscribe(self, event: ContextEvent, handler: Handler) -> None:
        """Remove a previously registered handler. No-op if not found."""
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: ContextEvent, payload: dict[str, Any]) -> None:
        """
        Publish an event to all registered handlers.

        Args:
            event: The event type to publish.
            payload: Event-specific data dictionary.
        """
        all_handlers = list(self._handlers.get(event, [])) + list(self._global_handlers)
        for handler in all_handlers:
            try:
                result = handler(event, payload)
                if asyncio.iscoroutine(result):
                    self._schedule(result, event, handler)
            except Exception as exc:
                self._log_handler_error(event, handler, exc)

    def _schedule(self, coro: Any, event: ContextEvent, handler: Handler) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            self._logger.warning("event_handler_skipped_no_loop", event_type=str(event))
            return
        task = loop.create_task(coro)
        self._pending.add(task)

        def _done(t: asyncio.Task[Any]) -> None:
            self._pending.discard(t)
            if not t.cancelled() and t.exception() is not None:
                self._log_handler_error(event, handler, t.exception())

        task.add_done_callback(_done)

    def _log_handler_error(self, event: ContextEvent, handler: Handler, exc: BaseException | None) -> None:
        self._logger.error(
            "event_handler_error",
            event_type=str(event),
            handler=getattr(handler, "__qualname__", repr(handler)),
            error=str(exc),
        )
