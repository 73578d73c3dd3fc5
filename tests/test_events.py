"""Tests for the EventBus."""

from __future__ import annotations

import asyncio

from structlog.testing import capture_logs

from contextbound.events.bus import ContextEvent, EventBus


class TestEventBus:
    def test_sync_handler_called_inline(self):
        bus = EventBus()
        seen = []
        bus.subscribe(ContextEvent.TURN_APPENDED, lambda e, p: seen.append((e, p)))
        bus.publish(ContextEvent.TURN_APPENDED, {"context_id": "ctx_1"})
        assert seen == [(ContextEvent.TURN_APPENDED, {"context_id": "ctx_1"})]

    def test_handler_only_receives_its_event(self):
        bus = EventBus()
        seen = []
        bus.subscribe(ContextEvent.CONTEXT_RESET, lambda e, p: seen.append(e))
        bus.publish(ContextEvent.TURN_APPENDED, {})
        assert seen == []

    def test_unsubscribe(self):
        bus = EventBus()
        seen = []

        def handler(e, p):
            seen.append(e)

        bus.subscribe(ContextEvent.CONTEXT_RESET, handler)
        bus.unsubscribe(ContextEvent.CONTEXT_RESET, handler)
        bus.unsubscribe(ContextEvent.CONTEXT_RESET, handler)
        bus.publish(ContextEvent.CONTEXT_RESET, {})
        assert seen == []

    def test_handler_error_does_not_reach_publisher(self):
        bus = EventBus()
        seen = []

        def broken(e, p):
            raise RuntimeError("boom")

        bus.subscribe(ContextEvent.CONTEXT_CREATED, broken)
        bus.subscribe_all(lambda e, p: seen.append(e))
        bus.publish(ContextEvent.CONTEXT_CREATED, {})
        assert seen == [ContextEvent.CONTEXT_CREATED]

    def test_handler_error_is_logged_with_event_type(self):
        bus = EventBus()

        def broken(e, p):
            raise RuntimeError("boom")

        bus.subscribe(ContextEvent.TURN_APPENDED, broken)
        with capture_logs() as logs:
            bus.publish(ContextEvent.TURN_APPENDED, {})
        errors = [entry for entry in logs if entry["event"] == "event_handler_error"]
        assert len(errors) == 1
        assert errors[0]["event_type"] == "turn.appended"
        assert errors[0]["error"] == "boom"

    async def test_async_handler_error_is_logged(self):
        bus = EventBus()

        async def broken(e, p):
            raise RuntimeError("late boom")

        bus.subscribe(ContextEvent.COMPACTION_COMPLETED, broken)
        with capture_logs() as logs:
            bus.publish(ContextEvent.COMPACTION_COMPLETED, {})
            for _ in range(3):
                await asyncio.sleep(0)
        assert [entry["error"] for entry in logs if entry["event"] == "event_handler_error"] == [
            "late boom"
        ]

    def test_async_handler_without_loop_is_skipped(self):
        bus = EventBus()

        async def handler(e, p):
            raise AssertionError("never runs")

        bus.subscribe(ContextEvent.CONTEXT_RESET, handler)
        with capture_logs() as logs:
            bus.publish(ContextEvent.CONTEXT_RESET, {})
        skipped = [entry for entry in logs if entry["event"] == "event_handler_skipped_no_loop"]
        assert skipped[0]["event_type"] == "context.reset"

    async def test_async_handler_scheduled(self):
        bus = EventBus()
        done = asyncio.Event()

        async def handler(e, p):
            done.set()

        bus.subscribe(ContextEvent.COMPACTION_COMPLETED, handler)
        bus.publish(ContextEvent.COMPACTION_COMPLETED, {})
        await asyncio.wait_for(done.wait(), timeout=1)

    def test_event_values(self):
        assert ContextEvent.COMPACTION_FAILED == "compaction.failed"
        assert ContextEvent.CONTEXT_CREATED == "context.created"
