"""Tests for ContextStore and StorePool."""

from __future__ import annotations

import pytest

from contextbound.log.turn_log import TurnLog
from contextbound.models.config import StoreConfig
from contextbound.models.turn import OwnerRef, Turn
from contextbound.store.context_store import (
    ContextNotFoundError,
    ContextStore,
    ContextStoreError,
    DuplicateContextError,
    OwnerNotFoundError,
    StoreNotInitializedError,
)
from contextbound.store.pool import StorePool
from tests.conftest import counted


class TestContextRows:
    async def test_create_and_load(self, store, owner):
        ctx = await store.create(owner, max_tokens=500)
        assert ctx.id.startswith("ctx_")
        assert ctx.turns == []
        assert ctx.total_tokens == 0

        loaded = await store.load(owner)
        assert loaded is not None
        assert loaded.id == ctx.id
        assert loaded.owner == owner
        assert loaded.max_tokens == 500

    async def test_load_missing_returns_none(self, store, owner):
        assert await store.load(owner) is None
        assert await store.get("ctx_missing") is None

    async def test_duplicate_owner_raises(self, store, owner):
        await store.create(owner, max_tokens=100)
        with pytest.raises(DuplicateContextError):
            await store.create(owner, max_tokens=100)

    async def test_missing_owner_record_raises(self, store):
        with pytest.raises(OwnerNotFoundError):
            await store.create(OwnerRef.session("sess_NOPE"), max_tokens=100)

    async def test_session_and_project_contexts_are_independent(self, store, owner):
        await store.create_project("proj_01", name="Demo", path="/tmp/demo")
        project = OwnerRef.project("proj_01")
        s_ctx = await store.create(owner, max_tokens=100)
        p_ctx = await store.create(project, max_tokens=200)
        assert s_ctx.id != p_ctx.id
        assert (await store.load(project)).id == p_ctx.id

    async def test_save_round_trips_turns(self, store, owner):
        ctx = await store.create(owner, max_tokens=100)
        turns = [
            counted(3, "user"),
            Turn(role="assistant", content="ls -la", kind="command", language="bash").with_token_count(2),
        ]
        ctx.sync_from(TurnLog(turns))
        await store.save(ctx)

        loaded = await store.get(ctx.id)
        assert loaded.turns == turns
        assert loaded.total_tokens == 5
        assert loaded.turns[1].kind == "command"

    async def test_save_missing_row_raises(self, store, owner):
        ctx = await store.create(owner, max_tokens=100)
        await store.delete_session(owner.session_id)
        with pytest.raises(ContextNotFoundError):
            await store.save(ctx)

    async def test_save_compacted_updates_owner_fields(self, store, owner):
        ctx = await store.create(owner, max_tokens=100)
        summary = Turn(role="summary", content="We agreed on SQLite.").with_token_count(5)
        ctx.sync_from(TurnLog([summary, counted(10)]))
        ctx.summary_text = summary.content
        await store.save_compacted(ctx)

        record = await store.get_owner_record(owner)
        assert record.context_summary == "We agreed on SQLite."
        assert record.total_tokens == 15
        assert (await store.get(ctx.id)).summary_text == "We agreed on SQLite."

    async def test_save_compacted_missing_row_commits_nothing(self, store, owner):
        ctx = await store.create(owner, max_tokens=100)
        await store.delete_session(owner.session_id)
        await store.create_session(owner.session_id, title="Recreated")
        ctx.summary_text = "should not land"
        with pytest.raises(ContextNotFoundError):
            await store.save_compacted(ctx)
        record = await store.get_owner_record(owner)
        assert record.context_summary is None


class TestOwnerRecords:
    async def test_delete_session_cascades(self, store, owner):
        ctx = await store.create(owner, max_tokens=100)
        assert await store.delete_session(owner.session_id)
        assert await store.get(ctx.id) is None
        assert await store.get_owner_record(owner) is None

    async def test_delete_project_cascades(self, store):
        await store.create_project("proj_01", name="Demo", path="/tmp/demo")
        project = OwnerRef.project("proj_01")
        ctx = await store.create(project, max_tokens=100)
        assert await store.delete_project("proj_01")
        assert await store.get(ctx.id) is None

    async def test_delete_missing_returns_false(self, store):
        assert not await store.delete_session("sess_missing")

    async def test_project_path_unique(self, store):
        await store.create_project("proj_01", name="A", path="/same")
        with pytest.raises(ContextStoreError):
            await store.create_project("proj_02", name="B", path="/same")

    async def test_project_record_fields(self, store):
        await store.create_project(
            "proj_01", name="Demo", path="/tmp/demo", description="d", metadata={"lang": "py"}
        )
        record = await store.get_owner_record(OwnerRef.project("proj_01"))
        assert record.title == "Demo"
        assert record.path == "/tmp/demo"
        assert record.metadata == {"lang": "py"}
        assert record.owner == OwnerRef.project("proj_01")


class TestLifecycle:
    async def test_uninitialized_store_raises(self, config):
        s = ContextStore(config.store)
        with pytest.raises(StoreNotInitializedError):
            await s.load(OwnerRef.session("sess_X"))

    async def test_private_connection_survives_reopen(self, tmp_path):
        cfg = StoreConfig(db_path=str(tmp_path / "private.db"))
        first = ContextStore(cfg)
        await first.initialize()
        await first.create_session("sess_A")
        ctx = await first.create(OwnerRef.session("sess_A"), max_tokens=10)
        await first.close()

        second = ContextStore(cfg)
        await second.initialize()
        try:
            assert (await second.load(OwnerRef.session("sess_A"))).id == ctx.id
        finally:
            await second.close()

    async def test_pool_shares_connection(self, config):
        pool = StorePool()
        try:
            a = ContextStore(config.store, pool=pool)
            b = ContextStore(config.store, pool=pool)
            await a.initialize()
            await b.initialize()
            assert a._conn is b._conn
            assert a._write_lock is b._write_lock
            await a.close()
            await b.create_session("sess_B")
            assert await b.get_owner_record(OwnerRef.session("sess_B")) is not None
        finally:
            await pool.close_all()
